"""Configuration schema for runguard.

Configuration is loaded from .runguard.yml in the working directory.
"""

from __future__ import annotations

import os
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

CONFIG_FILENAME = ".runguard.yml"


class DropSudoConfig(BaseModel):
    """Privilege revocation targets."""

    model_config = ConfigDict(validate_assignment=True)

    user: str = "runner"
    group: str = "sudo"
    sudoers_file: str = "/etc/sudoers"
    sudoers_dir: str = "/etc/sudoers.d"
    atomic_rewrite: bool = True

    @field_validator("user", "group")
    @classmethod
    def validate_name(cls, v: str) -> str:
        v = v.strip()
        if not v or any(ch.isspace() for ch in v):
            raise ValueError("user/group names must be non-empty and contain no whitespace")
        return v


class AgentConfig(BaseModel):
    """How the agent executable is invoked."""

    model_config = ConfigDict(validate_assignment=True)

    executable: str = "codex"
    subcommand: list[str] = Field(default_factory=lambda: ["exec"])
    originator_env: str = "CODEX_INTERNAL_ORIGINATOR_OVERRIDE"
    originator: str = "codex_github_action"
    home_env: str = "CODEX_HOME"
    output_filename: str = "output.md"
    schema_filename: str = "schema.json"
    output_dir_prefix: str = "codex-exec-"
    schema_dir_prefix: str = "codex-output-schema-"

    @field_validator("executable")
    @classmethod
    def validate_executable(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("agent executable must not be empty")
        return v.strip()


class ExecutionConfig(BaseModel):
    """Subprocess limits."""

    model_config = ConfigDict(validate_assignment=True)

    timeout_seconds: int = 0  # 0 means no timeout
    max_capture_bytes: int = 1024 * 1024
    impersonation_command: list[str] = Field(default_factory=lambda: ["sudo", "-n"])

    @field_validator("max_capture_bytes")
    @classmethod
    def validate_capture(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("max_capture_bytes must be positive")
        return v

    @field_validator("timeout_seconds")
    @classmethod
    def validate_timeout(cls, v: int) -> int:
        if v < 0:
            raise ValueError("timeout_seconds must be >= 0")
        return v

    @property
    def timeout_s(self) -> float | None:
        return float(self.timeout_seconds) if self.timeout_seconds > 0 else None


class TelemetryConfig(BaseModel):
    """Structured event log."""

    model_config = ConfigDict(validate_assignment=True)

    enabled: bool = False
    log_path: str = ".runguard/telemetry.jsonl"


class RunguardConfig(BaseModel):
    """Complete runguard configuration."""

    drop_sudo: DropSudoConfig = Field(default_factory=DropSudoConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    telemetry: TelemetryConfig = Field(default_factory=TelemetryConfig)

    @classmethod
    def load_from_file(cls, config_path: Path | str) -> RunguardConfig:
        """Load configuration from YAML file."""
        config_path = Path(config_path)
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        with open(config_path) as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)

    @classmethod
    def load_from_dir(cls, base_dir: Path | str) -> RunguardConfig:
        """Load .runguard.yml from base_dir, or defaults if there is none."""
        config_path = Path(base_dir) / CONFIG_FILENAME
        if not config_path.exists():
            return cls()
        return cls.load_from_file(config_path)

    def apply_env_overrides(self) -> None:
        """Apply environment variable overrides to configuration."""
        if user := os.getenv("RUNGUARD_DROP_SUDO_USER"):
            self.drop_sudo.user = user
        if group := os.getenv("RUNGUARD_DROP_SUDO_GROUP"):
            self.drop_sudo.group = group
        if path := os.getenv("RUNGUARD_SUDOERS_FILE"):
            self.drop_sudo.sudoers_file = path
        if path := os.getenv("RUNGUARD_SUDOERS_DIR"):
            self.drop_sudo.sudoers_dir = path

        if exe := os.getenv("RUNGUARD_AGENT_EXECUTABLE"):
            self.agent.executable = exe

        if timeout := os.getenv("RUNGUARD_TIMEOUT_SECONDS"):
            self.execution.timeout_seconds = int(timeout)
        if cap := os.getenv("RUNGUARD_MAX_CAPTURE_BYTES"):
            self.execution.max_capture_bytes = int(cap)

        if log_path := os.getenv("RUNGUARD_TELEMETRY_PATH"):
            self.telemetry.log_path = log_path
            self.telemetry.enabled = True
        if os.getenv("RUNGUARD_TELEMETRY_DISABLED") == "1":
            self.telemetry.enabled = False


def load_config(base_dir: Path | str, config_path: Path | str | None = None) -> RunguardConfig:
    """
    Load configuration for an invocation.

    Args:
        base_dir: Directory searched for .runguard.yml
        config_path: Explicit config file; must exist when given

    Returns:
        Loaded and validated configuration with env overrides applied
    """
    if config_path:
        config = RunguardConfig.load_from_file(config_path)
    else:
        config = RunguardConfig.load_from_dir(base_dir)
    config.apply_env_overrides()
    return config
