from __future__ import annotations

import re

_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    # Common API key shapes (best-effort).
    (re.compile(r"\bsk-[A-Za-z0-9_-]{16,}\b"), "sk-REDACTED"),
    (re.compile(r"\bAKIA[0-9A-Z]{16}\b"), "AKIA_REDACTED"),
    (re.compile(r"\bgh[pousr]_[A-Za-z0-9]{20,}\b"), "gh_REDACTED"),
    (re.compile(r"(?i)\b(authorization:\s*bearer)\s+\S+"), r"\1 REDACTED"),
]


def redact_text(s: str, *, max_len: int = 400) -> str:
    """Redact common secret patterns and truncate.

    Agent and sudo stderr can echo tokens from the CI environment, so anything
    bound for telemetry goes through here first.
    """
    if not s:
        return ""
    out = s
    for pat, repl in _PATTERNS:
        out = pat.sub(repl, out)
    out = out.strip()
    if len(out) > max_len:
        out = out[:max_len] + "...(truncated)"
    return out
