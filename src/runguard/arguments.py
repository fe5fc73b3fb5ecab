"""Parsing helpers for CLI option values."""

from __future__ import annotations

import json
import shlex

from .errors import ValidationError


def parse_extra_args(value: str | None) -> list[str]:
    """Tokenize pass-through arguments.

    A value starting with ``[`` is read as a JSON array of strings; anything
    else is split with shell quoting rules. Empty input yields no arguments.
    """
    if value is None:
        return []
    value = value.strip()
    if not value:
        return []

    if value.startswith("["):
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError as e:
            raise ValidationError(f"Invalid JSON array for extra args: {e}") from e
        if not isinstance(parsed, list) or not all(isinstance(a, str) for a in parsed):
            raise ValidationError("Extra args JSON must be an array of strings")
        return parsed

    try:
        return shlex.split(value)
    except ValueError as e:
        raise ValidationError(f"Could not tokenize extra args: {e}") from e


def empty_as_none(value: str | None) -> str | None:
    if value is None or not value.strip():
        return None
    return value
