"""Keep credentials and control characters out of checkpoint summaries.

Summaries end up in a tab-delimited, line-oriented log that operators grep and
share, so every summary is flattened to one line, scrubbed of anything that
looks like an agent credential and clamped in size.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

SUMMARY_MAX_CHARS = 500
TOKEN_MASK = "[redacted-token]"
SECRET_MASK = "[redacted-secret]"

# Everything str.splitlines() treats as a boundary, plus tabs.
_LINE_BREAKS_AND_TABS = re.compile(r"[\t\n\v\f\r\x1c\x1d\x1e\x85\u2028\u2029]+")


@dataclass(frozen=True, slots=True)
class RedactionRule:
    """One credential shape and the text that replaces it."""

    name: str
    pattern: re.Pattern[str]
    replacement: str


REDACTION_RULES: tuple[RedactionRule, ...] = (
    RedactionRule(
        name="authorization_header",
        pattern=re.compile(r"(?i)\b(bearer)\s+[a-z0-9._~+/\-]{8,}=*"),
        replacement=rf"\1 {TOKEN_MASK}",
    ),
    RedactionRule(
        name="secret_key_literal",
        pattern=re.compile(r"(?i)\bsk-[a-z0-9_\-]{8,}"),
        replacement=TOKEN_MASK,
    ),
    RedactionRule(
        name="credential_assignment",
        pattern=re.compile(
            r"(?i)\b([a-z0-9_]*(?:api_?key|token|secret|password))\s*[:=]\s*['\"]?[^'\"\s&]+['\"]?",
        ),
        replacement=rf"\1={SECRET_MASK}",
    ),
    RedactionRule(
        name="url_userinfo",
        pattern=re.compile(r"(?i)\b(https?://)[^/\s:@]+:[^/\s@]+@"),
        replacement=rf"\1{SECRET_MASK}@",
    ),
)


def sanitize_summary(text: str, *, max_chars: int = SUMMARY_MAX_CHARS) -> str:
    """Return ``text`` as one redacted line of at most ``max_chars`` characters."""

    flattened = _LINE_BREAKS_AND_TABS.sub(" ", text).strip()
    for rule in REDACTION_RULES:
        flattened = rule.pattern.sub(rule.replacement, flattened)
    if len(flattened) > max_chars:
        return flattened[: max(max_chars - 3, 0)] + "..."
    return flattened
