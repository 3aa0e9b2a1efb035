"""App configuration: LLM connection, retry policy, validation vocabulary.

Resolution order (later wins):
  1. Defaults declared on the models below.
  2. {data_dir}/config.json, written by update_config(), partial merge.
  3. Environment: VOICEFORGE_DATA_DIR, LLM_PROVIDER_URL, LLM_API_KEY,
     LLM_MODEL, LLM_TIMEOUT.

The validation vocabulary is English and hand-curated; it is configuration,
not code, so other languages or domains can swap it out per deployment.
"""

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

DEFAULT_DATA_DIR = Path(__file__).parent.parent / "data"


class LLMSettings(BaseModel):
    provider_url: str = "https://api.openai.com"
    api_key: str = ""
    model: str = "gpt-4o"
    timeout: float = 60.0
    max_retries: int = 3
    initial_delay: float = 1.0
    max_delay: float = 10.0
    backoff_multiplier: float = 2.0


class ValidationRules(BaseModel):
    """Vocabulary consumed by the humanizer and the two-stage validator."""

    # Hard reject on case-insensitive substring match (unioned with the
    # fingerprint's own forbidden phrases).
    hard_reject_phrases: list[str] = Field(default_factory=lambda: [
        "faced a challenge",
        "faced a real technical challenge",
        "needed an overhaul",
        "needed a complete overhaul",
        "things imploded",
        "no longer viable",
        "revamping the system",
        "robust product",
        "robust solution",
        "real-world loads with grace",
        "handling real-world loads",
        "tackling unforeseen",
        "accommodate high-volume",
        "unforeseen limitations",
        "key takeaways",
        "what i discovered:",
        "what i implemented:",
        "here's what broke:",
        "badges of experience",
        "push through",
        "endless planning",
        "it's gratifying",
        "the progress is real",
        "contemplating whether",
        "inquiries about",
        "suggesting a deeper",
    ])
    # Hard reject on whole-word match.
    corporate_denylist: list[str] = Field(default_factory=lambda: [
        "viable",
        "accommodate",
        "revamp",
        "unforeseen",
        "tackling",
        "overhaul",
        "imploded",
        "contemplating",
        "gratifying",
    ])
    # soft phrase -> direct alternative; -1 per hit during soft scoring.
    softened_phrases: dict[str, str] = Field(default_factory=lambda: {
        "challenge": "problem",
        "needed": "had to",
        "inquiries": "questions",
        "suggesting": "said",
    })
    failure_vocabulary: list[str] = Field(default_factory=lambda: [
        "broke", "failed", "died", "crashed", "exploded",
    ])
    # Words in a topic/angle that mark a failure narrative.
    failure_markers: list[str] = Field(default_factory=lambda: [
        "fail", "broke", "break", "crash", "mistake", "disaster", "outage",
        "lesson", "went wrong", "post-mortem", "postmortem",
    ])
    # Humanizer whole-word substitutions, corporate -> plain.
    corporate_substitutions: dict[str, str] = Field(default_factory=lambda: {
        "viable": "working",
        "accommodate": "handle",
        "revamp": "fix",
        "revamping": "fixing",
        "implement": "add",
        "implemented": "added",
        "tackling": "dealing with",
        "unforeseen": "unexpected",
        "inquiries": "questions",
        "suggesting": "asking about",
        "contemplating": "thinking about",
        "gratifying": "satisfying",
    })
    # Humanizer phrase substitutions, softened -> direct.
    softened_substitutions: dict[str, str] = Field(default_factory=lambda: {
        "faced a real technical challenge": "failed",
        "faced a challenge": "broke",
        "needed an overhaul": "broke",
        "things imploded": "everything broke",
        "no longer viable": "wasn't working",
        "real-world loads": "real users",
        "with grace": "",
    })
    sentence_length_tolerance: float = 5.0
    expect_numbers: bool = True


class Settings(BaseModel):
    data_dir: Path = DEFAULT_DATA_DIR
    llm: LLMSettings = Field(default_factory=LLMSettings)
    validation: ValidationRules = Field(default_factory=ValidationRules)


def _config_path(data_dir: Path) -> Path:
    return data_dir / "config.json"


def _apply_env(config: dict[str, Any], env: Mapping[str, str]) -> None:
    llm = config.setdefault("llm", {})
    if env.get("LLM_PROVIDER_URL"):
        llm["provider_url"] = env["LLM_PROVIDER_URL"]
    if env.get("LLM_API_KEY"):
        llm["api_key"] = env["LLM_API_KEY"]
    if env.get("LLM_MODEL"):
        llm["model"] = env["LLM_MODEL"]
    if env.get("LLM_TIMEOUT"):
        llm["timeout"] = float(env["LLM_TIMEOUT"])


def get_config(
    data_dir: Path | None = None, env: Mapping[str, str] | None = None,
) -> Settings:
    """Read settings, returning defaults merged with stored values and env overrides."""
    env = os.environ if env is None else env
    if data_dir is None:
        data_dir = Path(env["VOICEFORGE_DATA_DIR"]) if env.get("VOICEFORGE_DATA_DIR") else DEFAULT_DATA_DIR

    config: dict[str, Any] = {"data_dir": data_dir}
    path = _config_path(data_dir)
    if path.is_file():
        stored = json.loads(path.read_text())
        if isinstance(stored.get("llm"), dict):
            config["llm"] = dict(stored["llm"])
        if isinstance(stored.get("validation"), dict):
            config["validation"] = dict(stored["validation"])
    _apply_env(config, env)
    return Settings.model_validate(config)


def update_config(
    data_dir: Path, fields: dict[str, Any], env: Mapping[str, str] | None = None,
) -> Settings:
    """Merge fields into the stored config and persist. Returns the full settings,
    environment overrides included.

    llm and validation sections are merged key-by-key; unknown sections are ignored.
    """
    path = _config_path(data_dir)
    stored: dict[str, Any] = json.loads(path.read_text()) if path.is_file() else {}
    for section in ("llm", "validation"):
        if isinstance(fields.get(section), dict):
            stored.setdefault(section, {}).update(fields[section])
    # validate before writing so a bad patch never lands on disk
    Settings.model_validate({"data_dir": data_dir, **stored})
    data_dir.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(stored, indent=2))
    return get_config(data_dir, env)
