"""Fixtures for running a stand-in agent executable."""

from __future__ import annotations

import json
import os
import stat
import sys
import textwrap

import pytest

AGENT_SOURCE = textwrap.dedent(
    """
    import json, os, sys, time

    argv = sys.argv[1:]

    def flag(name):
        return argv[argv.index(name) + 1] if name in argv else None

    prompt = sys.stdin.read()
    schema_path = flag("--output-schema")
    schema = open(schema_path, encoding="utf-8").read() if schema_path else None
    log = os.environ.get("FAKE_AGENT_LOG")
    if log:
        with open(log, "w", encoding="utf-8") as f:
            json.dump({"argv": argv, "prompt": prompt, "schema": schema}, f)

    print("agent: thinking", file=sys.stderr)
    print("agent: progress", flush=True)
    time.sleep(float(os.environ.get("FAKE_AGENT_SLEEP", "0")))
    code = int(os.environ.get("FAKE_AGENT_EXIT", "0"))
    if code:
        sys.exit(code)
    with open(flag("--output-last-message"), "w", encoding="utf-8") as f:
        f.write("done: " + prompt)
    """
)


@pytest.fixture
def fake_agent(tmp_path):
    path = tmp_path / "bin" / "codex"
    path.parent.mkdir()
    path.write_text(f"#!{sys.executable}\n{AGENT_SOURCE}")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def agent_log(tmp_path):
    path = tmp_path / "agent_log.json"

    class Log:
        def __init__(self):
            self.path = path

        def read(self):
            return json.loads(path.read_text())

        def flag(self, name):
            argv = self.read()["argv"]
            return argv[argv.index(name) + 1]

    return Log()


@pytest.fixture
def agent_env(agent_log, monkeypatch):
    monkeypatch.setenv("FAKE_AGENT_LOG", str(agent_log.path))
    return dict(os.environ)
