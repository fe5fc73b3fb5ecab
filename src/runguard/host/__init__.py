"""Host-level primitives: command execution, sudoers editing, privileged files, telemetry."""

from .commands import CommandRunner
from .resources import PrivilegedResourceManager, impersonation_prefix
from .sudoers import SudoersTextEditor

__all__ = ["CommandRunner", "PrivilegedResourceManager", "SudoersTextEditor", "impersonation_prefix"]
