"""Error taxonomy for runguard.

Validation and privilege errors halt immediately. Agent and final-read errors
propagate to the CLI. Cleanup problems are reported as warnings only.
"""

from __future__ import annotations


class RunguardError(RuntimeError):
    """Base class for every error surfaced to the top-level caller."""


class ValidationError(RunguardError):
    """Bad strategy/OS combination or missing required input. Nothing was mutated."""


class PrivilegeOperationError(RunguardError):
    """A privilege-revocation step failed. Earlier steps are not rolled back."""


class AgentProcessError(RunguardError):
    """The agent process could not be spawned or exited non-zero."""

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        self.exit_code = exit_code


class FinalReadError(RunguardError):
    """The agent succeeded but its final message could not be read back."""


class ResourceError(RunguardError):
    """A (possibly impersonated) file operation failed."""


class CommandError(RunguardError):
    """An external command exited non-zero."""

    def __init__(
        self,
        argv: list[str],
        exit_code: int | None,
        stdout: str = "",
        stderr: str = "",
        message: str | None = None,
    ):
        self.argv = list(argv)
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr
        if message is None:
            message = f"Command failed: {' '.join(self.argv)} (exit code {exit_code})"
        super().__init__(message)


class CommandTimeoutError(CommandError):
    pass


class CommandCancelledError(CommandError):
    pass


class ResourceCleanupWarning(UserWarning):
    """Best-effort release of a temporary file or directory failed."""
