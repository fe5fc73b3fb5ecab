"""Agent execution orchestrator.

Resolves the prompt, output target, schema, sandbox mode and impersonation
context, runs the agent once, reads its final message back and releases every
temporary resource on the way out:

1. Validate strategy/OS, sandbox token, and impersonation user (no side effects)
2. Resolve the prompt text
3. Allocate or accept the output target and the schema target
4. Compose the command (sandbox flag last) and environment
5. Run the agent with the prompt on stdin
6. Read the final message, then clean up temporaries in all cases
"""

from __future__ import annotations

import os
import shlex
import shutil
import sys
from collections.abc import Callable, Mapping
from contextlib import ExitStack
from dataclasses import dataclass, field
from pathlib import Path

import click

from .config import RunguardConfig
from .errors import AgentProcessError, CommandError, FinalReadError, ResourceError, ValidationError
from .host.commands import CommandRunner
from .host.redaction import redact_text
from .host.resources import PrivilegedResourceManager, impersonation_prefix
from .host.telemetry import TelemetrySink, disabled_sink
from .strategy import determine_sandbox_mode, validate_sandbox_mode, validate_strategy
from .types import ExecutionPlan, ManagedResource, PromptSource, SchemaSource

SKIP_REPO_CHECK_FLAG = "--skip-git-repo-check"


@dataclass
class AgentExecRequest:
    """Inputs for one agent run."""

    prompt: PromptSource
    cd: str
    safety_strategy: str
    sandbox: str
    extra_args: list[str] = field(default_factory=list)
    codex_home: str | None = None
    explicit_output_file: str | None = None
    output_schema: SchemaSource | None = None
    model: str | None = None
    codex_user: str | None = None


@dataclass(frozen=True)
class _Validated:
    strategy: str
    sandbox_mode: str
    run_as_user: str | None


class AgentExecutor:
    def __init__(
        self,
        config: RunguardConfig | None = None,
        runner: CommandRunner | None = None,
        platform: str | None = None,
        telemetry: TelemetrySink | None = None,
        which: Callable[..., str | None] = shutil.which,
        environ: Mapping[str, str] | None = None,
    ):
        self.config = config or RunguardConfig()
        self.runner = runner or CommandRunner(
            max_capture_bytes=self.config.execution.max_capture_bytes,
            timeout_s=self.config.execution.timeout_s,
        )
        self.platform = platform or sys.platform
        self.telemetry = telemetry or disabled_sink()
        self.which = which
        self.environ = environ if environ is not None else os.environ

    def validate(self, request: AgentExecRequest) -> _Validated:
        strategy = validate_strategy(request.safety_strategy, self.platform)
        requested = validate_sandbox_mode(request.sandbox)
        run_as_user = None
        if strategy == "unprivileged-user":
            if not request.codex_user:
                raise ValidationError(
                    "codex_user must be specified when using the 'unprivileged-user' safety strategy."
                )
            run_as_user = request.codex_user
        return _Validated(strategy, determine_sandbox_mode(strategy, requested), run_as_user)

    def run(self, request: AgentExecRequest) -> str:
        """Run the agent and return its final message."""
        checked = self.validate(request)
        try:
            input_text = request.prompt.resolve()
        except OSError as e:
            raise ValidationError(f"Could not read prompt file {request.prompt.path}: {e}") from e

        resources = PrivilegedResourceManager(
            self.runner,
            checked.run_as_user,
            self.config.execution.impersonation_command,
        )
        with ExitStack() as cleanup:
            output = self._resolve_output(request, resources)
            cleanup.callback(self._release, resources, output)
            schema = self._resolve_schema(request, resources)
            cleanup.callback(self._release, resources, schema)

            plan = self.build_plan(request, input_text=input_text, output=output, schema=schema)
            self._spawn(plan)
            return self._read_final_message(plan, resources)

    def build_plan(
        self,
        request: AgentExecRequest,
        *,
        input_text: str,
        output: ManagedResource,
        schema: ManagedResource | None = None,
    ) -> ExecutionPlan:
        checked = self.validate(request)
        agent = self.config.agent

        argv: list[str] = []
        executable = agent.executable
        if checked.run_as_user is not None:
            # The impersonated user has a different PATH; resolve with ours.
            found = self.which(executable, path=self.environ.get("PATH"))
            if not found:
                raise AgentProcessError(f"could not find '{executable}' in PATH")
            executable = found
            argv += impersonation_prefix(checked.run_as_user, self.config.execution.impersonation_command)

        argv += [executable, *agent.subcommand, SKIP_REPO_CHECK_FLAG, "--cd", request.cd]
        argv += ["--output-last-message", output.path]
        if schema is not None:
            argv += ["--output-schema", schema.path]
        if request.model:
            argv += ["--model", request.model]
        argv += list(request.extra_args)
        # Last, so pass-through args cannot override the sandbox policy.
        argv += ["--sandbox", checked.sandbox_mode]

        env_overrides: dict[str, str] = {}
        if not self.environ.get(agent.originator_env):
            env_overrides[agent.originator_env] = agent.originator
        if request.codex_home:
            env_overrides[agent.home_env] = request.codex_home

        return ExecutionPlan(
            argv=argv,
            env_overrides=env_overrides,
            cwd=request.cd,
            sandbox_mode=checked.sandbox_mode,
            input_text=input_text,
            output=output,
            schema=schema,
            run_as_user=checked.run_as_user,
        )

    def _resolve_output(self, request: AgentExecRequest, resources: PrivilegedResourceManager) -> ManagedResource:
        if request.explicit_output_file:
            return ManagedResource("explicit", request.explicit_output_file)
        agent = self.config.agent
        return resources.allocate_temp_file(agent.output_dir_prefix, agent.output_filename)

    def _resolve_schema(
        self, request: AgentExecRequest, resources: PrivilegedResourceManager
    ) -> ManagedResource | None:
        schema = request.output_schema
        if schema is None:
            return None
        if not schema.is_inline:
            return ManagedResource("explicit", schema.path)  # type: ignore[arg-type]
        agent = self.config.agent
        return resources.allocate_temp_file(agent.schema_dir_prefix, agent.schema_filename, schema.content)

    def _spawn(self, plan: ExecutionPlan) -> None:
        env = dict(self.environ)
        env.update(plan.env_overrides)

        extra_env = "".join(f"{k}={v} " for k, v in plan.env_overrides.items() if k == self.config.agent.home_env)
        click.echo(f"Running: {extra_env}{shlex.join(plan.argv)}", err=True)
        self.telemetry.log(
            "agent_started",
            {"argv": plan.argv, "sandbox": plan.sandbox_mode, "run_as_user": plan.run_as_user},
        )

        program = plan.argv[0]
        try:
            result = self.runner.run(plan.argv, input_text=plan.input_text, env=env, stdout_to_stderr=True)
        except CommandError as e:
            self.telemetry.log("agent_exited", {"exit_code": e.exit_code, "error": redact_text(str(e))})
            if e.exit_code is None or type(e) is not CommandError:
                raise AgentProcessError(str(e), e.exit_code) from e
            raise AgentProcessError(f"{program} exited with code {e.exit_code}", e.exit_code) from e
        except OSError as e:
            self.telemetry.log("agent_exited", {"exit_code": None, "error": redact_text(str(e))})
            raise AgentProcessError(f"Failed to start {program}: {e}") from e
        self.telemetry.log("agent_exited", {"exit_code": result.exit_code, "duration_s": result.duration_s})

    def _read_final_message(self, plan: ExecutionPlan, resources: PrivilegedResourceManager) -> str:
        try:
            message = resources.read_file(plan.output.path)
        except ResourceError as e:
            raise FinalReadError(f"Could not read final message from {plan.output.path}: {e}") from e
        self.telemetry.log("final_message_read", {"path": plan.output.path, "chars": len(message)})
        return message

    def _release(self, resources: PrivilegedResourceManager, resource: ManagedResource | None) -> None:
        if resource is None or not resource.is_temporary:
            return
        if not resources.release(resource):
            self.telemetry.log("cleanup_failed", {"path": resource.cleanup_path or resource.path})


def write_github_output(name: str, value: str, environ: Mapping[str, str] | None = None) -> bool:
    """Append a step output to $GITHUB_OUTPUT using the heredoc delimiter form.

    Returns False when no GITHUB_OUTPUT file is configured.
    """
    environ = environ if environ is not None else os.environ
    target = environ.get("GITHUB_OUTPUT")
    if not target:
        return False
    delimiter = f"ghadelimiter_{os.urandom(8).hex()}"
    with open(Path(target), "a", encoding="utf-8") as f:
        f.write(f"{name}<<{delimiter}\n{value}\n{delimiter}\n")
    return True
