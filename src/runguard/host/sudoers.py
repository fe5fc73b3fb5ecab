from __future__ import annotations

import os
import re
import stat
import tempfile
from pathlib import Path

from ..types import SudoersEditResult

_LINE_SPLIT = re.compile(r"\r?\n")


def strip_user_lines(text: str, user: str) -> tuple[str, int]:
    """Remove non-comment lines whose first token is `user`.

    Comments and blank lines are kept verbatim. The newline style and the
    presence of a trailing newline are preserved. Returns (new_text, removed).
    """
    newline = "\r\n" if "\r\n" in text else "\n"
    ends_with_newline = text.endswith("\n")
    lines = _LINE_SPLIT.split(text)
    if lines and lines[-1] == "":
        lines.pop()

    kept: list[str] = []
    removed = 0
    for line in lines:
        stripped = line.lstrip()
        if not stripped or stripped.startswith("#"):
            kept.append(line)
            continue
        if stripped.split()[0] == user:
            removed += 1
            continue
        kept.append(line)

    if not removed:
        return text, 0
    rebuilt = newline.join(kept) + (newline if ends_with_newline else "")
    return rebuilt, removed


class SudoersTextEditor:
    """
    Line-level rewrite of sudoers files.

    Strategy:
      - strip lines whose first token matches the target user, keeping
        comments/blank lines intact
      - rewrite only when something was removed, keeping mode bits
      - with `atomic`, write a sibling temp file and rename it over the target
    """

    def __init__(self, atomic: bool = True):
        self.atomic = atomic

    def strip_user_entries(self, file_path: Path | str, user: str) -> SudoersEditResult:
        path = Path(file_path)
        try:
            st = path.stat()
            with open(path, encoding="utf-8", newline="") as f:
                original = f.read()
        except FileNotFoundError:
            return SudoersEditResult(path, "unchanged", f"{path} does not exist")
        except (OSError, UnicodeDecodeError) as e:
            return SudoersEditResult(path, "failed", f"Could not read {path}: {e}")

        rebuilt, removed = strip_user_lines(original, user)
        if not removed:
            return SudoersEditResult(path, "unchanged", f"No {user} entries found in {path} requiring changes.")

        try:
            if self.atomic:
                self._replace_atomic(path, rebuilt, st)
            else:
                with open(path, "w", encoding="utf-8", newline="") as f:
                    f.write(rebuilt)
                os.chmod(path, stat.S_IMODE(st.st_mode))
        except OSError as e:
            return SudoersEditResult(path, "failed", f"Could not rewrite {path}: {e}")

        return SudoersEditResult(path, "changed", f"Removed {user} entry from {path}", removed_lines=removed)

    def strip_directory(self, dir_path: Path | str, user: str) -> list[SudoersEditResult]:
        """Apply strip_user_entries to every regular file in dir_path.

        A missing directory yields an empty list.
        """
        directory = Path(dir_path)
        try:
            entries = sorted(p for p in directory.iterdir() if p.is_file() and not p.is_symlink())
        except FileNotFoundError:
            return []
        return [self.strip_user_entries(p, user) for p in entries]

    def _replace_atomic(self, path: Path, content: str, st: os.stat_result) -> None:
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp_name, stat.S_IMODE(st.st_mode))
            if hasattr(os, "chown"):
                try:
                    os.chown(tmp_name, st.st_uid, st.st_gid)
                except PermissionError:
                    # Only root can hand a file to another owner.
                    if os.geteuid() == 0:
                        raise
            os.replace(tmp_name, path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise
