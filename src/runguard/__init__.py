"""runguard - run an untrusted coding agent on a shared CI host with minimal privilege."""

from .drop_sudo import PrivilegeRevoker
from .errors import (
    AgentProcessError,
    CommandError,
    FinalReadError,
    PrivilegeOperationError,
    ResourceCleanupWarning,
    RunguardError,
    ValidationError,
)
from .exec_runner import AgentExecRequest, AgentExecutor

__version__ = "0.1.0"

__all__ = [
    "AgentExecRequest",
    "AgentExecutor",
    "AgentProcessError",
    "CommandError",
    "FinalReadError",
    "PrivilegeOperationError",
    "PrivilegeRevoker",
    "ResourceCleanupWarning",
    "RunguardError",
    "ValidationError",
]
