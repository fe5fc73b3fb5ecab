"""Safety-strategy validation and sandbox-mode resolution."""

from __future__ import annotations

import sys

from .errors import ValidationError
from .types import SAFETY_STRATEGIES, SANDBOX_MODES

WINDOWS_PLATFORM = "win32"


def normalize_strategy(value: str) -> str:
    """Map a user-supplied token onto a known strategy name.

    Underscore spellings (``drop_sudo``) are accepted as aliases.
    """
    token = value.strip().lower().replace("_", "-")
    if token not in SAFETY_STRATEGIES:
        allowed = ", ".join(f"'{s}'" for s in SAFETY_STRATEGIES)
        raise ValidationError(f"Invalid safety strategy: {value}. Must be one of {allowed}.")
    return token


def allowed_strategies(platform: str | None = None) -> tuple[str, ...]:
    platform = platform or sys.platform
    if platform == WINDOWS_PLATFORM:
        return ("unsafe",)
    return SAFETY_STRATEGIES


def validate_strategy(value: str, platform: str | None = None) -> str:
    """Return the normalized strategy or raise before anything is spawned."""
    platform = platform or sys.platform
    strategy = normalize_strategy(value)
    if strategy not in allowed_strategies(platform):
        raise ValidationError(
            f"Safety strategy '{strategy}' is not supported on Windows; "
            "only 'unsafe' may be used there."
        )
    return strategy


def validate_sandbox_mode(value: str) -> str:
    token = value.strip().lower()
    if token not in SANDBOX_MODES:
        allowed = ", ".join(f"'{s}'" for s in SANDBOX_MODES)
        raise ValidationError(f"Invalid sandbox mode: {value}. Must be one of {allowed}.")
    return token


def determine_sandbox_mode(strategy: str, requested: str) -> str:
    """The read-only strategy pins the sandbox; others pass the request through."""
    if strategy == "read-only":
        return "read-only"
    return requested
