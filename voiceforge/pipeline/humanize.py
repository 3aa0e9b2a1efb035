"""Deterministic post-processing of generated text.

An ordered list of (pattern, replacement) rules applied as one pure pass.
Order matters: bullets (including line-leading em-dashes) are normalised
before stray asterisks are removed and inline dashes are rewritten,
and phrase substitutions run before single-word ones.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass

from voiceforge.config import ValidationRules
from voiceforge.models import StyleFingerprint
from voiceforge.text import EMOJI_RE

Replacement = str | Callable[[re.Match], str]


@dataclass(frozen=True)
class Rule:
    name: str
    pattern: re.Pattern
    replacement: Replacement

    def apply(self, text: str) -> str:
        return self.pattern.sub(self.replacement, text)


def _keep_case(replacement: str) -> Callable[[re.Match], str]:
    def sub(m: re.Match) -> str:
        if replacement and m.group(0)[:1].isupper():
            return replacement[0].upper() + replacement[1:]
        return replacement
    return sub


def _substitutions(prefix: str, table: dict[str, str]) -> list[Rule]:
    return [
        Rule(
            f"{prefix}:{source}",
            re.compile(rf"\b{re.escape(source)}\b", re.IGNORECASE),
            _keep_case(target),
        )
        for source, target in sorted(table.items(), key=lambda kv: len(kv[0]), reverse=True)
    ]


_PREAMBLE = re.compile(
    r"\A\s*(?:(?:sure|okay|ok|absolutely)[,!.]?\s*)?"
    r"here(?:'s| is)\s+(?:your|the|a|an)\s+(?:[\w-]+\s+){0,3}?(?:post|draft|version)\b[^:\n]*:\s*",
    re.IGNORECASE,
)


def rules_for(fingerprint: StyleFingerprint, rules: ValidationRules | None = None) -> list[Rule]:
    """Build the ordered rule list for one fingerprint."""
    rules = rules or ValidationRules()
    glyph = fingerprint.bullet_glyph or "-"

    ordered = [
        Rule("meta_preamble", _PREAMBLE, ""),
        Rule(
            "bullet_glyph",
            re.compile(r"^([ \t]*)(?:[*•·–-][ \t]+|[—―][ \t]*)", re.MULTILINE),
            lambda m: f"{m.group(1)}{glyph} ",
        ),
        Rule("heading", re.compile(r"^#{1,6}[ \t]+", re.MULTILINE), ""),
        Rule("bold", re.compile(r"\*\*(.+?)\*\*|__(.+?)__", re.DOTALL), lambda m: m.group(1) or m.group(2)),
        Rule(
            "italic",
            re.compile(r"(?<![\w*])\*(?![\s*])([^*\n]+?)(?<!\s)\*(?![\w*])"),
            r"\1",
        ),
        # keep "* " only as a line-start bullet, drop every other asterisk
        Rule(
            "stray_asterisk",
            re.compile(r"^([ \t]*\*[ \t]+)|\*", re.MULTILINE),
            lambda m: m.group(1) if m.group(1) and glyph == "*" else "",
        ),
        Rule("em_dash", re.compile(r"[ \t]*[—―][ \t]*|[ \t]+–[ \t]+"), " - "),
        Rule("semicolon", re.compile(r"[ \t]*;[ \t]*(\w?)"), lambda m: ". " + m.group(1).upper()),
        *_substitutions("softened", rules.softened_substitutions),
        *_substitutions("corporate", rules.corporate_substitutions),
    ]
    if not fingerprint.uses_emoji:
        ordered.append(Rule("emoji", EMOJI_RE, ""))
    ordered += [
        Rule("space_runs", re.compile(r"[ \t]{2,}"), " "),
        Rule("space_before_punctuation", re.compile(r"[ \t]+([.,!?])"), r"\1"),
        Rule("trailing_space", re.compile(r"[ \t]+$", re.MULTILINE), ""),
        Rule("blank_lines", re.compile(r"\n{3,}"), "\n\n"),
    ]
    return ordered


def humanize(
    text: str, fingerprint: StyleFingerprint, rules: ValidationRules | None = None,
) -> str:
    for rule in rules_for(fingerprint, rules):
        text = rule.apply(text)
    return text.strip()
