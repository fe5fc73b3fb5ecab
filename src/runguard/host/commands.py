from __future__ import annotations

import signal
import subprocess
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from typing import IO

from ..errors import CommandCancelledError, CommandError, CommandTimeoutError
from ..types import CommandResult

DEFAULT_MAX_CAPTURE_BYTES = 1024 * 1024
_CHUNK = 64 * 1024
_STDERR_FD = 2


class _BoundedReader(threading.Thread):
    """Drain a pipe, keeping at most `limit` bytes; the rest is discarded."""

    def __init__(self, stream: IO[bytes], limit: int):
        super().__init__(daemon=True)
        self.stream = stream
        self.limit = limit
        self.truncated = False
        self._buf = bytearray()

    def run(self) -> None:
        with self.stream:
            while True:
                chunk = self.stream.read(_CHUNK)
                if not chunk:
                    break
                room = self.limit - len(self._buf)
                if room > 0:
                    self._buf += chunk[:room]
                if len(chunk) > room:
                    self.truncated = True

    def text(self) -> str:
        return self._buf.decode("utf-8", errors="replace")


class _StdinWriter(threading.Thread):
    def __init__(self, stream: IO[bytes], data: bytes):
        super().__init__(daemon=True)
        self.stream = stream
        self.data = data

    def run(self) -> None:
        # The child may exit without reading its input.
        try:
            self.stream.write(self.data)
        except (BrokenPipeError, ValueError):
            pass
        finally:
            try:
                self.stream.close()
            except BrokenPipeError:
                pass


class CommandRunner:
    """
    Runs external commands.

    Key properties:
    - Executes an argv list (no shell).
    - Passthrough mode inherits stdout/stderr; capture mode buffers them up to
      `max_capture_bytes` each and flags the result as truncated past that.
    - Every wait honours an optional timeout and the shared cancel event.
    """

    def __init__(
        self,
        max_capture_bytes: int = DEFAULT_MAX_CAPTURE_BYTES,
        timeout_s: float | None = None,
        cancel_event: threading.Event | None = None,
        poll_interval_s: float = 0.1,
        kill_grace_s: float = 5.0,
    ):
        self.max_capture_bytes = max_capture_bytes
        self.timeout_s = timeout_s
        self.cancel_event = cancel_event or threading.Event()
        self.poll_interval_s = poll_interval_s
        self.kill_grace_s = kill_grace_s

    def cancel(self) -> None:
        self.cancel_event.set()

    def run(
        self,
        argv: list[str],
        *,
        capture: bool = False,
        check: bool = True,
        input_text: str | None = None,
        env: dict[str, str] | None = None,
        cwd: str | None = None,
        timeout_s: float | None = None,
        cancellable: bool = True,
        stdout_to_stderr: bool = False,
    ) -> CommandResult:
        """Run argv to completion.

        Raises CommandError on non-zero exit unless `check` is False. Timeouts
        and cancellation always raise, even when `check` is False. Cleanup
        commands pass ``cancellable=False`` so they still run after a cancel.
        In passthrough mode ``stdout_to_stderr`` sends the child's stdout to
        our stderr, leaving stdout free for the caller's own result.
        """
        if not argv:
            raise ValueError("Empty argv")
        if cancellable and self.cancel_event.is_set():
            raise CommandCancelledError(argv, None, message=f"Cancelled before start: {argv[0]}")

        t0 = time.monotonic()
        timeout_s = timeout_s if timeout_s is not None else self.timeout_s

        if input_text is not None:
            stdin = subprocess.PIPE
        else:
            stdin = subprocess.DEVNULL if capture else None
        pipe = subprocess.PIPE if capture else None
        stdout_target = pipe if capture or not stdout_to_stderr else _STDERR_FD

        proc = subprocess.Popen(
            argv,
            stdin=stdin,
            stdout=stdout_target,
            stderr=pipe,
            cwd=cwd,
            env=env,
        )

        threads: list[threading.Thread] = []
        readers: list[_BoundedReader] = []
        if capture:
            assert proc.stdout is not None and proc.stderr is not None
            readers = [
                _BoundedReader(proc.stdout, self.max_capture_bytes),
                _BoundedReader(proc.stderr, self.max_capture_bytes),
            ]
            threads.extend(readers)
        if input_text is not None:
            assert proc.stdin is not None
            threads.append(_StdinWriter(proc.stdin, input_text.encode("utf-8")))
        for t in threads:
            t.start()

        stopped = self._wait(proc, t0, timeout_s, cancellable)

        for t in threads:
            t.join(timeout=self.kill_grace_s)

        stdout = readers[0].text() if readers else ""
        stderr = readers[1].text() if readers else ""
        result = CommandResult(
            argv=list(argv),
            exit_code=proc.returncode if proc.returncode is not None else -1,
            stdout=stdout,
            stderr=stderr,
            truncated=any(r.truncated for r in readers),
            duration_s=round(time.monotonic() - t0, 3),
        )

        if stopped == "timeout":
            raise CommandTimeoutError(
                argv,
                result.exit_code,
                stdout,
                stderr,
                message=f"Command timed out after {timeout_s}s: {' '.join(argv)}",
            )
        if stopped == "cancelled":
            raise CommandCancelledError(
                argv,
                result.exit_code,
                stdout,
                stderr,
                message=f"Command cancelled: {' '.join(argv)}",
            )
        if result.exit_code != 0 and check:
            raise CommandError(argv, result.exit_code, stdout, stderr)
        return result

    def _wait(
        self, proc: subprocess.Popen[bytes], t0: float, timeout_s: float | None, cancellable: bool
    ) -> str | None:
        deadline = t0 + timeout_s if timeout_s else None
        while True:
            try:
                proc.wait(timeout=self.poll_interval_s)
                return None
            except subprocess.TimeoutExpired:
                pass
            if cancellable and self.cancel_event.is_set():
                self._terminate(proc)
                return "cancelled"
            if deadline is not None and time.monotonic() >= deadline:
                self._terminate(proc)
                return "timeout"

    def _terminate(self, proc: subprocess.Popen[bytes]) -> None:
        proc.terminate()
        try:
            proc.wait(timeout=self.kill_grace_s)
        except subprocess.TimeoutExpired:
            proc.kill()
            proc.wait()


def check_output(runner: CommandRunner, argv: list[str], input_text: str | None = None) -> str:
    """Run argv in capture mode and return stdout."""
    return runner.run(argv, capture=True, input_text=input_text).stdout


@contextmanager
def cancel_on_signals(runner: CommandRunner, signals=(signal.SIGINT, signal.SIGTERM)) -> Iterator[CommandRunner]:
    """Cancel the runner's in-flight commands when one of `signals` arrives.

    Previous handlers are restored on exit. Outside the main thread no
    handlers can be installed and this is a no-op.
    """

    def _on_signal(signum, _frame):
        runner.cancel()

    previous = {}
    for sig in signals:
        try:
            previous[sig] = signal.signal(sig, _on_signal)
        except ValueError:
            break
    try:
        yield runner
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)
