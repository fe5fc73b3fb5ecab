"""Temporary files and directories, optionally owned by an impersonated user.

Without a `run_as_user` every operation is a direct filesystem call. With one,
every operation is a command run through the impersonation prefix so it
executes with that user's identity and permissions.
"""

from __future__ import annotations

import os
import shutil
import tempfile
import warnings
from pathlib import Path

import click

from ..errors import CommandError, ResourceCleanupWarning, ResourceError
from ..types import ManagedResource
from .commands import CommandRunner

DEFAULT_IMPERSONATION_COMMAND = ["sudo", "-n"]


def _stdin_to_file(path: str) -> list[str]:
    # Writes stdin to path without echoing it back into the capture buffer.
    return ["sh", "-c", 'cat > "$1"', "sh", path]


def impersonation_prefix(user: str, command: list[str] | None = None) -> list[str]:
    """argv prefix that runs the rest of the command as `user`."""
    base = list(command or DEFAULT_IMPERSONATION_COMMAND)
    return [*base, "-u", user, "--"]


class PrivilegedResourceManager:
    def __init__(
        self,
        runner: CommandRunner,
        run_as_user: str | None = None,
        impersonation_command: list[str] | None = None,
    ):
        self.runner = runner
        self.run_as_user = run_as_user
        self.impersonation_command = list(impersonation_command or DEFAULT_IMPERSONATION_COMMAND)

    @property
    def impersonating(self) -> bool:
        return self.run_as_user is not None

    def _as_user(self, argv: list[str], input_text: str | None = None, cancellable: bool = True) -> str:
        assert self.run_as_user is not None
        full = impersonation_prefix(self.run_as_user, self.impersonation_command) + argv
        try:
            result = self.runner.run(full, capture=True, input_text=input_text, cancellable=cancellable)
        except CommandError as e:
            detail = e.stderr.strip() or str(e)
            raise ResourceError(f"{' '.join(argv)} as {self.run_as_user} failed: {detail}") from e
        except OSError as e:
            raise ResourceError(f"Could not run {full[0]}: {e}") from e
        if result.truncated:
            raise ResourceError(f"Output of {' '.join(argv)} exceeded the capture limit")
        return result.stdout

    def make_temp_dir(self, prefix: str) -> str:
        if not self.impersonating:
            try:
                return tempfile.mkdtemp(prefix=prefix)
            except OSError as e:
                raise ResourceError(f"Could not create temp dir: {e}") from e
        path = self._as_user(["mktemp", "-d", "-t", f"{prefix}.XXXXXX"]).strip()
        if not path:
            raise ResourceError("mktemp returned an empty path")
        return path

    def make_dir(self, path: str) -> None:
        if not self.impersonating:
            Path(path).mkdir(parents=True, exist_ok=True)
            return
        self._as_user(["mkdir", "-p", path])

    def write_file(self, path: str, content: str) -> None:
        """Write content to path; the impersonated path writes a sibling and renames it."""
        if not self.impersonating:
            try:
                with open(path, "w", encoding="utf-8", newline="") as f:
                    f.write(content)
            except OSError as e:
                raise ResourceError(f"Could not write {path}: {e}") from e
            return
        staging = f"{path}.partial"
        self._as_user(_stdin_to_file(staging), input_text=content)
        self.move_file(staging, path)

    def move_file(self, src: str, dst: str) -> None:
        if not self.impersonating:
            os.replace(src, dst)
            return
        self._as_user(["mv", "-f", src, dst])

    def read_file(self, path: str) -> str:
        if not self.impersonating:
            try:
                return Path(path).read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as e:
                raise ResourceError(f"Could not read {path}: {e}") from e
        return self._as_user(["cat", path])

    def remove_path(self, path: str, cancellable: bool = True) -> None:
        if not self.impersonating:
            p = Path(path)
            if p.is_dir() and not p.is_symlink():
                shutil.rmtree(p)
            else:
                p.unlink(missing_ok=True)
            return
        self._as_user(["rm", "-rf", path], cancellable=cancellable)

    def allocate_temp_file(self, dir_prefix: str, filename: str, content: str | None = None) -> ManagedResource:
        """Create a fresh temp dir holding `filename` (written only if content is given)."""
        directory = self.make_temp_dir(dir_prefix)
        path = os.path.join(directory, filename)
        resource = ManagedResource("temporary", path, owner=self.run_as_user, cleanup_path=directory)
        if content is not None:
            try:
                self.write_file(path, content)
            except BaseException:
                self.release(resource)
                raise
        return resource

    def release(self, resource: ManagedResource | None) -> bool:
        """Delete a temporary resource. Failures are warned about, never raised."""
        if resource is None or not resource.is_temporary:
            return True
        target = resource.cleanup_path or resource.path
        try:
            self.remove_path(target, cancellable=False)
        except (OSError, ResourceError) as e:
            message = f"Failed to clean up {target}: {e}"
            click.echo(f"Warning: {message}", err=True)
            warnings.warn(message, ResourceCleanupWarning, stacklevel=2)
            return False
        return True
