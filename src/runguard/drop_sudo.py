"""Two-phase removal of a user's passwordless sudo access.

The caller phase runs with whatever privilege the session has. It checks that
passwordless sudo works, re-invokes runguard under sudo for the root phase,
and invalidates the sudo ticket on both sides of that call. The root phase
does the actual mutation: group membership first, then sudoers.d, then the
main sudoers file.
"""

from __future__ import annotations

import os
import shutil
import sys
from collections.abc import Callable
from pathlib import Path

import click

from .errors import CommandError, PrivilegeOperationError
from .host.commands import CommandRunner
from .host.sudoers import SudoersTextEditor
from .host.telemetry import TelemetrySink, disabled_sink
from .types import CALLER_PHASE, ROOT_PHASE, DropSudoReport, DropSudoRequest, SudoersEditResult

LINUX_PLATFORM = "linux"
MACOS_PLATFORM = "darwin"
SUPPORTED_PLATFORMS = (LINUX_PLATFORM, MACOS_PLATFORM)


def _log(message: str) -> None:
    click.echo(message, err=True)


class PrivilegeRevoker:
    def __init__(
        self,
        runner: CommandRunner,
        sudoers_file: Path | str = "/etc/sudoers",
        sudoers_dir: Path | str = "/etc/sudoers.d",
        editor: SudoersTextEditor | None = None,
        platform: str | None = None,
        telemetry: TelemetrySink | None = None,
        config_path: str | None = None,
        which: Callable[[str], str | None] = shutil.which,
    ):
        self.runner = runner
        self.sudoers_file = Path(sudoers_file)
        self.sudoers_dir = Path(sudoers_dir)
        self.editor = editor or SudoersTextEditor()
        self.platform = platform or sys.platform
        self.telemetry = telemetry or disabled_sink()
        self.config_path = config_path
        self.which = which
        self._phases: dict[str, Callable[[DropSudoRequest], DropSudoReport | None]] = {
            CALLER_PHASE: self.run_caller_phase,
            ROOT_PHASE: self.run_root_phase,
        }

    def run(self, request: DropSudoRequest) -> DropSudoReport | None:
        """Dispatch to the phase named by the request."""
        if self.platform not in SUPPORTED_PLATFORMS:
            raise PrivilegeOperationError(f"Unsupported OS for drop-sudo safety strategy: {self.platform}")
        self.telemetry.log("drop_sudo_phase", {"phase": request.phase, "user": request.user, "group": request.group})
        return self._phases[request.phase](request)

    # -- caller phase --------------------------------------------------------

    def run_caller_phase(self, request: DropSudoRequest) -> None:
        self.ensure_passwordless_sudo()
        # `sudo -K` exits non-zero on runners that never had a ticket.
        self.invalidate_ticket()
        try:
            self.runner.run(self.root_phase_argv(request))
        except CommandError as e:
            raise PrivilegeOperationError(f"drop-sudo root phase failed (exit code {e.exit_code})") from e
        except OSError as e:
            raise PrivilegeOperationError(f"Could not re-invoke runguard under sudo: {e}") from e
        finally:
            self.invalidate_ticket()
        return None

    def ensure_passwordless_sudo(self) -> None:
        try:
            self.runner.run(["sudo", "-n", "true"], capture=True)
        except (CommandError, OSError) as e:
            raise PrivilegeOperationError("Unexpected: passwordless sudo not available.") from e

    def invalidate_ticket(self) -> None:
        try:
            self.runner.run(["sudo", "-K"], capture=True, check=False, cancellable=False)
        except OSError:
            pass

    def root_phase_argv(self, request: DropSudoRequest) -> list[str]:
        argv = [
            "sudo",
            "-n",
            sys.executable,
            "-m",
            "runguard",
            "drop-sudo",
            "--root-phase",
            "--user",
            request.user,
            "--group",
            request.group,
            # sudo resets the environment, so RUNGUARD_* overrides are passed as options.
            "--sudoers-file",
            str(self.sudoers_file),
            "--sudoers-dir",
            str(self.sudoers_dir),
        ]
        if not self.editor.atomic:
            argv.append("--no-atomic-rewrite")
        if self.telemetry.enabled:
            argv += ["--telemetry-path", str(self.telemetry.path)]
        if self.config_path:
            argv += ["--config", self.config_path]
        return argv

    # -- root phase ----------------------------------------------------------

    def run_root_phase(self, request: DropSudoRequest) -> DropSudoReport:
        if hasattr(os, "geteuid") and os.geteuid() != 0:
            raise PrivilegeOperationError("drop-sudo root phase must run as root.")

        user, group = request.user, request.group
        report = DropSudoReport(user=user, group=group)

        if group in self.user_groups(user):
            report.removal_command = self._removal_command(user, group)
            try:
                self.runner.run(report.removal_command)
            except (CommandError, OSError) as e:
                raise PrivilegeOperationError(f"Failed to remove {user} from {group}: {e}") from e
            report.group_removed = True
            _log(f"Used '{' '.join(report.removal_command)}' to drop sudo privilege.")
            self.telemetry.log("group_membership_removed", {"user": user, "group": group})
        else:
            _log(f"{user} is not a member of the {group} group.")

        dir_results = self.editor.strip_directory(self.sudoers_dir, user)
        self._report_sudoers(dir_results, user, f"{self.sudoers_dir}")
        file_result = self.editor.strip_user_entries(self.sudoers_file, user)
        self._report_sudoers([file_result], user, f"{self.sudoers_file}")
        report.sudoers_results = [*dir_results, file_result]

        if not report.changed:
            _log(f"{user} already lacks sudo privileges.")

        report.groups_after = self.user_groups(user)
        _log(f"Groups for {user} after cleanup: {' '.join(report.groups_after)}")

        if report.failures:
            paths = ", ".join(str(r.file_path) for r in report.failures)
            raise PrivilegeOperationError(f"Could not remove {user} entries from: {paths}")
        return report

    def user_groups(self, user: str) -> list[str]:
        """Group names for `user`; empty if the user cannot be looked up."""
        result = self.runner.run(["id", "-nG", user], capture=True, check=False)
        if result.exit_code != 0:
            return []
        return result.stdout.split()

    def _removal_command(self, user: str, group: str) -> list[str]:
        if self.platform == LINUX_PLATFORM:
            if self.which("deluser"):
                return ["deluser", user, group]
            if self.which("gpasswd"):
                return ["gpasswd", "-d", user, group]
            raise PrivilegeOperationError("Neither deluser nor gpasswd available.")
        if self.platform == MACOS_PLATFORM:
            if self.which("dseditgroup"):
                return ["dseditgroup", "-o", "edit", "-d", user, "-t", "user", group]
            raise PrivilegeOperationError("dseditgroup not available.")
        raise PrivilegeOperationError(f"Unsupported OS for drop-sudo safety strategy: {self.platform}")

    def _report_sudoers(self, results: list[SudoersEditResult], user: str, location: str) -> None:
        changed = [r for r in results if r.changed]
        for r in results:
            self.telemetry.log(
                "sudoers_edit",
                {"path": str(r.file_path), "status": r.status, "removed_lines": r.removed_lines},
            )
            if r.changed or r.failed:
                _log(r.description)
        if not changed:
            _log(f"No {user} entries found in {location} requiring changes.")
