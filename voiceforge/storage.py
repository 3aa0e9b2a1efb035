"""JSON file storage.

All state is stored in flat JSON files under a configurable base directory.
There is no database or ORM; reads and writes go through plain helper
methods that load and dump JSON. Every write lands in a temporary file
first and is committed with os.replace, so a crash mid-write leaves the
previous version intact.

Directory layout:

    {base}/
      users/
        {user_id}/
          profile.json          ← UserProfile
          exemplars.json        ← list of ExemplarText, keyed by id
          artifacts/
            {name}.json         ← CachedArtifact (fingerprint, knowledge_map)
      patterns.json             ← list of Pattern, keyed by id
      conversations/
        {id}.json               ← Conversation metadata and running totals
        {id}/
          turns.json            ← append-only ConversationTurn log
          summaries.json        ← SummaryRecord list
      logs/
        tool_calls.json         ← ToolCallRecord list
        agent_runs.json         ← AgentRun list

The core depends on the narrow Protocols below rather than on Storage
itself, so any of them can be backed by something else.
"""

from __future__ import annotations

import json
import os
import re
import tempfile
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Literal, Protocol

from voiceforge.models import (
    AgentRun,
    CachedArtifact,
    Conversation,
    ConversationTurn,
    ExemplarText,
    Pattern,
    PatternType,
    SummaryRecord,
    ToolCallRecord,
    TurnRole,
    UserProfile,
    utcnow,
)
from voiceforge.text import estimate_tokens

_ID_RE = re.compile(r"^[A-Za-z0-9_-][A-Za-z0-9_.-]*$")

OrderBy = Literal["engagement", "recency"]


# ---------------------------------------------------------------------------
# Collaborator contracts
# ---------------------------------------------------------------------------

class CorpusSource(Protocol):
    def list_exemplar_texts(
        self, user_id: str, order_by: OrderBy = "engagement", limit: int | None = None,
    ) -> list[ExemplarText]: ...


class PatternStore(Protocol):
    def list_patterns(
        self, user_id: str, types: list[PatternType] | None = None, limit: int | None = None,
    ) -> list[Pattern]: ...

    def get_pattern(self, pattern_id: str) -> Pattern | None: ...

    def upsert_pattern(self, pattern: Pattern) -> None: ...

    def bump_success_rate(self, pattern_id: str, delta: float) -> Pattern | None: ...


class ArtifactStore(Protocol):
    def get_artifact(self, user_id: str, name: str) -> CachedArtifact | None: ...

    def put_artifact(self, user_id: str, name: str, artifact: CachedArtifact) -> None: ...

    def delete_artifact(self, user_id: str, name: str) -> None: ...


class ConversationStore(Protocol):
    def get_conversation(self, conversation_id: str) -> Conversation | None: ...

    def append_turn(self, conversation_id: str, role: TurnRole, content: str) -> ConversationTurn: ...

    def list_turns(
        self, conversation_id: str, limit: int | None = None, role: TurnRole | None = None,
    ) -> list[ConversationTurn]: ...

    def set_total_tokens(self, conversation_id: str, total: int) -> None: ...

    def list_summaries(self, conversation_id: str) -> list[SummaryRecord]: ...

    def append_summary(self, conversation_id: str, record: SummaryRecord) -> None: ...

    def replace_summaries(self, conversation_id: str, records: list[SummaryRecord]) -> None: ...


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------

class Storage:
    def __init__(self, base_path: Path) -> None:
        self._base = base_path
        self._users_root = base_path / "users"
        self._conv_root = base_path / "conversations"
        self._logs_root = base_path / "logs"
        for d in (self._users_root, self._conv_root, self._logs_root):
            d.mkdir(parents=True, exist_ok=True)

    @property
    def base_path(self) -> Path:
        return self._base

    # ------------------------------------------------------------------
    # Internal path helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _check_id(value: str) -> str:
        if not _ID_RE.match(value):
            raise ValueError(f"Invalid identifier: {value!r}")
        return value

    def _user_dir(self, user_id: str) -> Path:
        return self._users_root / self._check_id(user_id)

    def _conv_file(self, conversation_id: str) -> Path:
        return self._conv_root / f"{self._check_id(conversation_id)}.json"

    def _conv_dir(self, conversation_id: str) -> Path:
        return self._conv_root / self._check_id(conversation_id)

    def _read_json(self, path: Path, default: Any = None) -> Any:
        if not path.exists():
            return default
        return json.loads(path.read_text())

    def _write_json(self, path: Path, data: Any) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(data, f, indent=2, default=str)
            os.replace(tmp, path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    def save_profile(self, profile: UserProfile) -> None:
        self._write_json(self._user_dir(profile.user_id) / "profile.json", profile.model_dump(mode="json"))

    def get_profile(self, user_id: str) -> UserProfile | None:
        data = self._read_json(self._user_dir(user_id) / "profile.json")
        return UserProfile.model_validate(data) if data is not None else None

    # ------------------------------------------------------------------
    # Corpus
    # ------------------------------------------------------------------

    def _all_exemplars(self, user_id: str) -> list[ExemplarText]:
        data = self._read_json(self._user_dir(user_id) / "exemplars.json", [])
        return [ExemplarText.model_validate(e) for e in data]

    def add_exemplar_texts(self, user_id: str, texts: list[ExemplarText]) -> int:
        """Upsert texts by id. Returns the resulting corpus size."""
        existing = {e.id: e for e in self._all_exemplars(user_id)}
        for text in texts:
            existing[text.id] = text
        self._write_json(
            self._user_dir(user_id) / "exemplars.json",
            [e.model_dump(mode="json") for e in existing.values()],
        )
        return len(existing)

    def list_exemplar_texts(
        self, user_id: str, order_by: OrderBy = "engagement", limit: int | None = None,
    ) -> list[ExemplarText]:
        """Engagement ordering drops texts without a signal; recency is newest first."""
        texts = self._all_exemplars(user_id)
        if order_by == "engagement":
            texts = [t for t in texts if t.engagement is not None]
            texts.sort(key=lambda t: t.engagement, reverse=True)
        else:
            texts.sort(key=lambda t: t.posted_at, reverse=True)
        return texts[:limit] if limit is not None else texts

    # ------------------------------------------------------------------
    # Patterns
    # ------------------------------------------------------------------

    def _patterns_file(self) -> Path:
        return self._base / "patterns.json"

    def _all_patterns(self) -> list[Pattern]:
        return [Pattern.model_validate(p) for p in self._read_json(self._patterns_file(), [])]

    def _save_patterns(self, patterns: list[Pattern]) -> None:
        self._write_json(self._patterns_file(), [p.model_dump(mode="json") for p in patterns])

    def list_patterns(
        self, user_id: str, types: list[PatternType] | None = None, limit: int | None = None,
    ) -> list[Pattern]:
        patterns = [
            p for p in self._all_patterns()
            if p.user_id == user_id and (types is None or p.type in types)
        ]
        patterns.sort(key=lambda p: p.success_rate, reverse=True)
        return patterns[:limit] if limit is not None else patterns

    def get_pattern(self, pattern_id: str) -> Pattern | None:
        for p in self._all_patterns():
            if p.id == pattern_id:
                return p
        return None

    def upsert_pattern(self, pattern: Pattern) -> None:
        """Upsert a pattern by id."""
        patterns = self._all_patterns()
        for i, p in enumerate(patterns):
            if p.id == pattern.id:
                patterns[i] = pattern
                break
        else:
            patterns.append(pattern)
        self._save_patterns(patterns)

    def bump_success_rate(self, pattern_id: str, delta: float) -> Pattern | None:
        """Add delta to the success rate (clamped 0-100) and count one more use."""
        patterns = self._all_patterns()
        for i, p in enumerate(patterns):
            if p.id == pattern_id:
                patterns[i] = p.model_copy(update={
                    "success_rate": min(100.0, max(0.0, p.success_rate + delta)),
                    "times_used": p.times_used + 1,
                    "last_used_at": utcnow(),
                })
                self._save_patterns(patterns)
                return patterns[i]
        return None

    # ------------------------------------------------------------------
    # Cached artifacts
    # ------------------------------------------------------------------

    def _artifact_file(self, user_id: str, name: str) -> Path:
        return self._user_dir(user_id) / "artifacts" / f"{self._check_id(name)}.json"

    def get_artifact(self, user_id: str, name: str) -> CachedArtifact | None:
        data = self._read_json(self._artifact_file(user_id, name))
        return CachedArtifact.model_validate(data) if data is not None else None

    def put_artifact(self, user_id: str, name: str, artifact: CachedArtifact) -> None:
        self._write_json(self._artifact_file(user_id, name), artifact.model_dump(mode="json"))

    def delete_artifact(self, user_id: str, name: str) -> None:
        self._artifact_file(user_id, name).unlink(missing_ok=True)

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    def create_conversation(
        self, user_id: str, title: str = "", conversation_id: str | None = None,
    ) -> Conversation:
        conv = Conversation(
            id=conversation_id or uuid.uuid4().hex,
            user_id=self._check_id(user_id),
            title=title,
        )
        self.save_conversation(conv)
        return conv

    def get_conversation(self, conversation_id: str) -> Conversation | None:
        data = self._read_json(self._conv_file(conversation_id))
        return Conversation.model_validate(data) if data is not None else None

    def save_conversation(self, conv: Conversation) -> None:
        self._write_json(self._conv_file(conv.id), conv.model_dump(mode="json"))

    def _require_conversation(self, conversation_id: str) -> Conversation:
        conv = self.get_conversation(conversation_id)
        if conv is None:
            raise KeyError(f"Conversation {conversation_id!r} not found")
        return conv

    def _all_turns(self, conversation_id: str) -> list[ConversationTurn]:
        data = self._read_json(self._conv_dir(conversation_id) / "turns.json", [])
        return [ConversationTurn.model_validate(t) for t in data]

    def append_turn(self, conversation_id: str, role: TurnRole, content: str) -> ConversationTurn:
        """Append one turn, bumping the conversation's turn count and token total."""
        conv = self._require_conversation(conversation_id)
        turns = self._all_turns(conversation_id)
        turn = ConversationTurn(seq=(turns[-1].seq if turns else 0) + 1, role=role, content=content)
        turns.append(turn)
        self._write_json(
            self._conv_dir(conversation_id) / "turns.json",
            [t.model_dump(mode="json") for t in turns],
        )
        self.save_conversation(conv.model_copy(update={
            "turn_count": conv.turn_count + 1,
            "total_tokens": conv.total_tokens + estimate_tokens(content),
            "last_turn_at": turn.created_at,
        }))
        return turn

    def list_turns(
        self, conversation_id: str, limit: int | None = None, role: TurnRole | None = None,
    ) -> list[ConversationTurn]:
        """Turns in chronological order; limit keeps the most recent N after filtering."""
        turns = self._all_turns(conversation_id)
        if role is not None:
            turns = [t for t in turns if t.role == role]
        if limit is not None:
            turns = turns[-limit:] if limit > 0 else []
        return turns

    def set_total_tokens(self, conversation_id: str, total: int) -> None:
        conv = self._require_conversation(conversation_id)
        self.save_conversation(conv.model_copy(update={"total_tokens": total}))

    # ------------------------------------------------------------------
    # Summaries
    # ------------------------------------------------------------------

    def list_summaries(self, conversation_id: str) -> list[SummaryRecord]:
        data = self._read_json(self._conv_dir(conversation_id) / "summaries.json", [])
        return [SummaryRecord.model_validate(s) for s in data]

    def append_summary(self, conversation_id: str, record: SummaryRecord) -> None:
        records = self.list_summaries(conversation_id)
        records.append(record)
        self.replace_summaries(conversation_id, records)

    def replace_summaries(self, conversation_id: str, records: list[SummaryRecord]) -> None:
        self._write_json(
            self._conv_dir(conversation_id) / "summaries.json",
            [r.model_dump(mode="json") for r in records],
        )

    # ------------------------------------------------------------------
    # Observability sink
    # ------------------------------------------------------------------

    def append_tool_calls(self, records: list[ToolCallRecord]) -> None:
        if not records:
            return
        path = self._logs_root / "tool_calls.json"
        existing = self._read_json(path, [])
        existing.extend(r.model_dump(mode="json") for r in records)
        self._write_json(path, existing)

    def list_tool_calls(self, user_id: str | None = None) -> list[ToolCallRecord]:
        records = [
            ToolCallRecord.model_validate(r)
            for r in self._read_json(self._logs_root / "tool_calls.json", [])
        ]
        return [r for r in records if user_id is None or r.user_id == user_id]

    def append_agent_run(self, run: AgentRun) -> None:
        path = self._logs_root / "agent_runs.json"
        existing = self._read_json(path, [])
        existing.append(run.model_dump(mode="json"))
        self._write_json(path, existing)

    def list_agent_runs(self, user_id: str, since: datetime | None = None) -> list[AgentRun]:
        runs = [AgentRun.model_validate(r) for r in self._read_json(self._logs_root / "agent_runs.json", [])]
        return [
            r for r in runs
            if r.user_id == user_id and (since is None or r.created_at >= since)
        ]
