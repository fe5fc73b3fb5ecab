"""Command-line interface for runguard.

Commands:
- runguard drop-sudo: Remove the runner user's passwordless sudo access
- runguard run-exec: Run the coding agent under the selected safety strategy
- runguard check-strategy <strategy>: Validate a safety strategy for this host
- runguard doctor: Preflight checks for the host and agent executable
"""

from __future__ import annotations

import shutil
import sys
from pathlib import Path

import click

from . import __version__
from .arguments import empty_as_none, parse_extra_args
from .config import RunguardConfig, load_config
from .drop_sudo import PrivilegeRevoker
from .errors import AgentProcessError, RunguardError
from .exec_runner import AgentExecRequest, AgentExecutor, write_github_output
from .host.commands import CommandRunner, cancel_on_signals
from .host.sudoers import SudoersTextEditor
from .host.telemetry import TelemetrySink
from .strategy import allowed_strategies, validate_strategy
from .types import CALLER_PHASE, ROOT_PHASE, SANDBOX_MODES, DropSudoRequest, PromptSource, SchemaSource


class AgentFailedException(click.ClickException):
    """Exit with the agent's own status when it is a usable exit code."""

    def __init__(self, error: AgentProcessError):
        super().__init__(str(error))
        code = error.exit_code
        self.exit_code = code if isinstance(code, int) and 0 < code < 256 else 1


def _load(config_path: str | None) -> RunguardConfig:
    try:
        return load_config(Path.cwd(), config_path)
    except (FileNotFoundError, ValueError) as e:
        raise click.ClickException(f"Invalid configuration: {e}") from e


def _runner(cfg: RunguardConfig, timeout: int | None = None) -> CommandRunner:
    timeout_s = float(timeout) if timeout else cfg.execution.timeout_s
    return CommandRunner(max_capture_bytes=cfg.execution.max_capture_bytes, timeout_s=timeout_s)


def _telemetry(cfg: RunguardConfig) -> TelemetrySink:
    return TelemetrySink(enabled=cfg.telemetry.enabled, path=Path(cfg.telemetry.log_path))


@click.group()
@click.version_option(version=__version__, prog_name="runguard")
def cli() -> None:
    """runguard - privilege-aware runner for coding agents on CI hosts."""
    pass


@cli.command("drop-sudo")
@click.option("--user", default=None, help="User to modify (default: runner).")
@click.option("--group", default=None, help="Group granting sudo privileges (default: sudo).")
@click.option("--root-phase", is_flag=True, hidden=True)
@click.option("--sudoers-file", default=None, hidden=True)
@click.option("--sudoers-dir", default=None, hidden=True)
@click.option("--atomic-rewrite/--no-atomic-rewrite", default=None, hidden=True)
@click.option("--telemetry-path", default=None, hidden=True)
@click.option("--config", "-c", "config_path", type=click.Path(), help="Config file path")
def drop_sudo(
    user: str | None,
    group: str | None,
    root_phase: bool,
    sudoers_file: str | None,
    sudoers_dir: str | None,
    atomic_rewrite: bool | None,
    telemetry_path: str | None,
    config_path: str | None,
) -> None:
    """Drop sudo privileges for the configured user.

    Example:
        runguard drop-sudo --user runner --group sudo
    """
    cfg = _load(config_path)
    # Set by the caller phase when it re-invokes itself under sudo.
    if sudoers_file:
        cfg.drop_sudo.sudoers_file = sudoers_file
    if sudoers_dir:
        cfg.drop_sudo.sudoers_dir = sudoers_dir
    if atomic_rewrite is not None:
        cfg.drop_sudo.atomic_rewrite = atomic_rewrite
    if telemetry_path:
        cfg.telemetry.log_path = telemetry_path
        cfg.telemetry.enabled = True

    try:
        request = DropSudoRequest(
            user=user or cfg.drop_sudo.user,
            group=group or cfg.drop_sudo.group,
            phase=ROOT_PHASE if root_phase else CALLER_PHASE,
        )
    except ValueError as e:
        raise click.ClickException(str(e)) from e

    runner = _runner(cfg)
    revoker = PrivilegeRevoker(
        runner,
        sudoers_file=cfg.drop_sudo.sudoers_file,
        sudoers_dir=cfg.drop_sudo.sudoers_dir,
        editor=SudoersTextEditor(atomic=cfg.drop_sudo.atomic_rewrite),
        telemetry=_telemetry(cfg),
        config_path=str(Path(config_path).resolve()) if config_path else None,
    )
    try:
        with cancel_on_signals(runner):
            revoker.run(request)
    except RunguardError as e:
        raise click.ClickException(str(e)) from e


@cli.command("run-exec")
@click.option("--prompt", default=None, help="Prompt to pass to the agent.")
@click.option("--prompt-file", default=None, help="File containing the prompt.")
@click.option("--codex-home", default=None, help="Agent home directory (where config files are stored).")
@click.option("--cd", "cd", required=True, help="Working directory for the agent.")
@click.option(
    "--extra-args",
    default="",
    help="Additional args to pass through, as a JSON array or a shell string.",
)
@click.option("--output-file", default=None, help="Where the final message is written (kept after the run).")
@click.option("--output-schema", default=None, help="Inline output schema.")
@click.option("--output-schema-file", default=None, help="Path to an output schema file.")
@click.option("--model", default=None, help="Model override.")
@click.option(
    "--safety-strategy",
    default="drop-sudo",
    show_default=True,
    help="One of 'drop-sudo', 'read-only', 'unprivileged-user', or 'unsafe'.",
)
@click.option("--codex-user", default=None, help="User to run as under the 'unprivileged-user' strategy.")
@click.option(
    "--sandbox",
    type=click.Choice(list(SANDBOX_MODES)),
    default="workspace-write",
    show_default=True,
    help="Requested sandbox mode.",
)
@click.option("--timeout", type=int, default=None, help="Kill the agent after this many seconds.")
@click.option("--config", "-c", "config_path", type=click.Path(), help="Config file path")
def run_exec(
    prompt: str | None,
    prompt_file: str | None,
    codex_home: str | None,
    cd: str,
    extra_args: str,
    output_file: str | None,
    output_schema: str | None,
    output_schema_file: str | None,
    model: str | None,
    safety_strategy: str,
    codex_user: str | None,
    sandbox: str,
    timeout: int | None,
    config_path: str | None,
) -> None:
    """Invoke the agent with the resolved safety settings.

    The final message is printed to stdout and, on GitHub Actions, exported
    as the `final-message` step output.

    Example:
        runguard run-exec --cd . --prompt "Fix the tests" --safety-strategy read-only
    """
    prompt, prompt_file = empty_as_none(prompt), empty_as_none(prompt_file)
    output_schema, output_schema_file = empty_as_none(output_schema), empty_as_none(output_schema_file)

    if prompt is not None and prompt_file is not None:
        raise click.ClickException("Only one of --prompt or --prompt-file may be specified.")
    if prompt is None and prompt_file is None:
        raise click.ClickException("Either --prompt or --prompt-file must be specified.")
    if output_schema is not None and output_schema_file is not None:
        raise click.ClickException("Only one of --output-schema or --output-schema-file may be specified.")

    schema = None
    if output_schema is not None:
        schema = SchemaSource(content=output_schema)
    elif output_schema_file is not None:
        schema = SchemaSource(path=output_schema_file)

    cfg = _load(config_path)
    try:
        request = AgentExecRequest(
            prompt=PromptSource(content=prompt) if prompt is not None else PromptSource(path=prompt_file),
            cd=cd,
            safety_strategy=safety_strategy,
            sandbox=sandbox,
            extra_args=parse_extra_args(extra_args),
            codex_home=empty_as_none(codex_home),
            explicit_output_file=empty_as_none(output_file),
            output_schema=schema,
            model=empty_as_none(model),
            codex_user=empty_as_none(codex_user),
        )
        runner = _runner(cfg, timeout)
        executor = AgentExecutor(cfg, runner=runner, telemetry=_telemetry(cfg))
        with cancel_on_signals(runner):
            message = executor.run(request)
    except AgentProcessError as e:
        raise AgentFailedException(e) from e
    except RunguardError as e:
        raise click.ClickException(str(e)) from e

    click.echo(message, nl=not message.endswith("\n"))
    write_github_output("final-message", message)


@cli.command("check-strategy")
@click.argument("strategy")
def check_strategy(strategy: str) -> None:
    """Validate a safety strategy for this host's OS."""
    try:
        normalized = validate_strategy(strategy)
    except RunguardError as e:
        raise click.ClickException(str(e)) from e
    click.echo(f"Safety strategy '{normalized}' is supported on {sys.platform}.")


@cli.command()
@click.option("--config", "-c", "config_path", type=click.Path(), help="Config file path")
def doctor(config_path: str | None) -> None:
    """Preflight: platform, strategies, agent executable, and passwordless sudo."""
    cfg = _load(config_path)
    click.echo(f"Platform: {sys.platform}")
    click.echo(f"Supported strategies: {', '.join(allowed_strategies())}")

    agent_path = shutil.which(cfg.agent.executable)
    if agent_path:
        click.echo(f"  ✓ agent executable: {agent_path}")
    else:
        click.echo(f"  ✗ agent executable '{cfg.agent.executable}' not found on PATH")

    runner = _runner(cfg)
    try:
        probe = runner.run(["sudo", "-n", "true"], capture=True, check=False)
        sudo_ok = probe.exit_code == 0
    except OSError:
        sudo_ok = False
    mark = "✓" if sudo_ok else "✗"
    click.echo(f"  {mark} passwordless sudo {'available' if sudo_ok else 'not available'}")

    if not agent_path:
        raise click.ClickException(f"Doctor failed: '{cfg.agent.executable}' not found")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
