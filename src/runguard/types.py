"""Core data types for runguard."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

SAFETY_STRATEGIES = ("drop-sudo", "read-only", "unprivileged-user", "unsafe")
SANDBOX_MODES = ("read-only", "workspace-write", "danger-full-access")

CALLER_PHASE = "caller"
ROOT_PHASE = "root"


@dataclass(frozen=True)
class PromptSource:
    """Prompt given either inline or as a file path, never both."""

    content: str | None = None
    path: str | None = None

    def __post_init__(self) -> None:
        if (self.content is None) == (self.path is None):
            raise ValueError("Exactly one of prompt content or prompt file must be given")

    def resolve(self) -> str:
        if self.content is not None:
            return self.content
        return Path(self.path).read_text(encoding="utf-8")  # type: ignore[arg-type]


@dataclass(frozen=True)
class SchemaSource:
    """Output schema given inline or as an existing file."""

    content: str | None = None
    path: str | None = None

    def __post_init__(self) -> None:
        if (self.content is None) == (self.path is None):
            raise ValueError("Exactly one of schema content or schema file must be given")

    @property
    def is_inline(self) -> bool:
        return self.content is not None


@dataclass(frozen=True)
class DropSudoRequest:
    """Parameters for one phase of the drop-sudo protocol."""

    user: str
    group: str
    phase: str = CALLER_PHASE

    def __post_init__(self) -> None:
        if self.phase not in (CALLER_PHASE, ROOT_PHASE):
            raise ValueError(f"Invalid phase: {self.phase}. Must be '{CALLER_PHASE}' or '{ROOT_PHASE}'")
        if not self.user or not self.group:
            raise ValueError("user and group must be non-empty")


@dataclass(frozen=True)
class SudoersEditResult:
    """Outcome of stripping one user's entries from a sudoers file."""

    file_path: Path
    status: str  # "changed", "unchanged", "failed"
    description: str
    removed_lines: int = 0

    def __post_init__(self) -> None:
        if self.status not in {"changed", "unchanged", "failed"}:
            raise ValueError(f"Invalid status: {self.status}")

    @property
    def changed(self) -> bool:
        return self.status == "changed"

    @property
    def failed(self) -> bool:
        return self.status == "failed"


@dataclass
class DropSudoReport:
    """What the root phase did, for logging and tests."""

    user: str
    group: str
    group_removed: bool = False
    removal_command: list[str] = field(default_factory=list)
    sudoers_results: list[SudoersEditResult] = field(default_factory=list)
    groups_after: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return self.group_removed or any(r.changed for r in self.sudoers_results)

    @property
    def failures(self) -> list[SudoersEditResult]:
        return [r for r in self.sudoers_results if r.failed]


@dataclass(frozen=True)
class ManagedResource:
    """A file the agent reads or writes.

    Explicit resources belong to the caller and are never deleted. Temporary
    resources are removed (together with `cleanup_path`) once the run ends.
    """

    kind: str  # "explicit" or "temporary"
    path: str
    owner: str | None = None  # impersonated user that created it, if any
    cleanup_path: str | None = None

    @property
    def is_temporary(self) -> bool:
        return self.kind == "temporary"


@dataclass
class ExecutionPlan:
    """Fully resolved agent invocation."""

    argv: list[str]
    env_overrides: dict[str, str]
    cwd: str
    sandbox_mode: str
    input_text: str
    output: ManagedResource
    schema: ManagedResource | None = None
    run_as_user: str | None = None


@dataclass
class CommandResult:
    """Result of one external command."""

    argv: list[str]
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    truncated: bool = False
    duration_s: float = 0.0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0
