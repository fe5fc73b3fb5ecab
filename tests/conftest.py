"""Global pytest configuration for hermetic test runs."""

from __future__ import annotations

import os

import pytest

from runguard.errors import CommandError
from runguard.types import CommandResult


@pytest.fixture(autouse=True)
def _hermetic_env(monkeypatch):
    # Host or CI settings must not leak into config loading or step outputs.
    for key in list(os.environ):
        if key.startswith("RUNGUARD_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.delenv("GITHUB_OUTPUT", raising=False)


class RecordingRunner:
    """Stands in for CommandRunner; records argv and replays canned results.

    Responses are matched by argv prefix, first match wins. `once=True`
    responses are consumed when used. Unmatched commands succeed silently.
    """

    def __init__(self):
        self.calls: list[dict] = []
        self._responses: list[dict] = []

    def on(self, prefix, *, exit_code=0, stdout="", stderr="", raises=None, once=False):
        self._responses.append(
            {
                "prefix": list(prefix),
                "exit_code": exit_code,
                "stdout": stdout,
                "stderr": stderr,
                "raises": raises,
                "once": once,
            }
        )
        return self

    def run(
        self,
        argv,
        *,
        capture=False,
        check=True,
        input_text=None,
        env=None,
        cwd=None,
        timeout_s=None,
        cancellable=True,
        stdout_to_stderr=False,
    ):
        argv = list(argv)
        self.calls.append(
            {
                "argv": argv,
                "capture": capture,
                "check": check,
                "input_text": input_text,
                "env": env,
                "stdout_to_stderr": stdout_to_stderr,
            }
        )
        for resp in self._responses:
            if argv[: len(resp["prefix"])] != resp["prefix"]:
                continue
            if resp["once"]:
                self._responses.remove(resp)
            if resp["raises"] is not None:
                raise resp["raises"]
            if resp["exit_code"] != 0 and check:
                raise CommandError(argv, resp["exit_code"], resp["stdout"], resp["stderr"])
            return CommandResult(argv, resp["exit_code"], resp["stdout"], resp["stderr"])
        return CommandResult(argv, 0)

    @property
    def argvs(self) -> list[list[str]]:
        return [c["argv"] for c in self.calls]


@pytest.fixture
def fake_runner():
    return RecordingRunner()
