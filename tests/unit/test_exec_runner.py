"""Unit tests for exec_runner.py - agent command composition and lifecycle."""

import pytest

from runguard.config import RunguardConfig
from runguard.errors import AgentProcessError, FinalReadError, ValidationError
from runguard.exec_runner import AgentExecRequest, AgentExecutor, write_github_output
from runguard.types import ManagedResource, PromptSource, SchemaSource

PREFIX = ["sudo", "-n", "-u", "agent", "--"]
OUTPUT = ManagedResource("temporary", "/tmp/o/output.md", cleanup_path="/tmp/o")
SCHEMA = ManagedResource("temporary", "/tmp/s/schema.json", cleanup_path="/tmp/s")


def fake_which(found="/opt/tools/bin/codex"):
    calls = []

    def which(cmd, path=None):
        calls.append((cmd, path))
        return found

    which.calls = calls
    return which


def make_request(**overrides):
    fields = dict(
        prompt=PromptSource(content="Fix the build"),
        cd="/repo",
        safety_strategy="drop-sudo",
        sandbox="workspace-write",
    )
    fields.update(overrides)
    return AgentExecRequest(**fields)


def make_executor(runner, environ=None, which=None, platform="linux"):
    return AgentExecutor(
        RunguardConfig(),
        runner=runner,
        platform=platform,
        which=which or fake_which(),
        environ=environ if environ is not None else {"PATH": "/usr/bin:/opt/tools/bin"},
    )


class TestBuildPlan:
    def test_command_order(self, fake_runner):
        request = make_request(model="o3", extra_args=["--config", "x=1"])
        plan = make_executor(fake_runner).build_plan(request, input_text="p", output=OUTPUT, schema=SCHEMA)

        assert plan.argv == [
            "codex",
            "exec",
            "--skip-git-repo-check",
            "--cd",
            "/repo",
            "--output-last-message",
            "/tmp/o/output.md",
            "--output-schema",
            "/tmp/s/schema.json",
            "--model",
            "o3",
            "--config",
            "x=1",
            "--sandbox",
            "workspace-write",
        ]
        assert plan.run_as_user is None
        assert plan.cwd == "/repo"

    def test_sandbox_flag_is_last_even_if_passed_through(self, fake_runner):
        request = make_request(safety_strategy="read-only", extra_args=["--sandbox", "danger-full-access"])
        plan = make_executor(fake_runner).build_plan(request, input_text="p", output=OUTPUT)

        assert plan.argv[-2:] == ["--sandbox", "read-only"]
        assert plan.sandbox_mode == "read-only"

    def test_optional_flags_omitted(self, fake_runner):
        plan = make_executor(fake_runner).build_plan(make_request(), input_text="p", output=OUTPUT)
        assert "--output-schema" not in plan.argv
        assert "--model" not in plan.argv

    def test_impersonation_prefix_and_caller_path(self, fake_runner):
        which = fake_which()
        executor = make_executor(fake_runner, which=which)
        request = make_request(safety_strategy="unprivileged-user", codex_user="agent")

        plan = executor.build_plan(request, input_text="p", output=OUTPUT)

        assert plan.argv[:6] == PREFIX + ["/opt/tools/bin/codex"]
        assert plan.run_as_user == "agent"
        assert which.calls == [("codex", "/usr/bin:/opt/tools/bin")]

    def test_impersonated_executable_not_found(self, fake_runner):
        executor = make_executor(fake_runner, which=fake_which(None))
        request = make_request(safety_strategy="unprivileged-user", codex_user="agent")
        with pytest.raises(AgentProcessError, match="could not find 'codex' in PATH"):
            executor.build_plan(request, input_text="p", output=OUTPUT)

    def test_codex_user_ignored_for_other_strategies(self, fake_runner):
        request = make_request(codex_user="agent")
        plan = make_executor(fake_runner).build_plan(request, input_text="p", output=OUTPUT)
        assert plan.argv[0] == "codex"
        assert plan.run_as_user is None

    def test_env_overrides(self, fake_runner):
        request = make_request(codex_home="/home/runner/.codex")
        plan = make_executor(fake_runner, environ={}).build_plan(request, input_text="p", output=OUTPUT)
        assert plan.env_overrides == {
            "CODEX_INTERNAL_ORIGINATOR_OVERRIDE": "codex_github_action",
            "CODEX_HOME": "/home/runner/.codex",
        }

    def test_existing_originator_preserved(self, fake_runner):
        executor = make_executor(fake_runner, environ={"CODEX_INTERNAL_ORIGINATOR_OVERRIDE": "custom"})
        plan = executor.build_plan(make_request(), input_text="p", output=OUTPUT)
        assert plan.env_overrides == {}


class TestValidation:
    def test_missing_codex_user_spawns_nothing(self, fake_runner):
        request = make_request(safety_strategy="unprivileged-user")
        with pytest.raises(ValidationError, match="codex_user must be specified"):
            make_executor(fake_runner).run(request)
        assert fake_runner.calls == []

    def test_windows_rejects_before_spawning(self, fake_runner):
        with pytest.raises(ValidationError, match="Windows"):
            make_executor(fake_runner, platform="win32").run(make_request())
        assert fake_runner.calls == []

    def test_unknown_sandbox(self, fake_runner):
        with pytest.raises(ValidationError):
            make_executor(fake_runner).run(make_request(sandbox="wide-open"))
        assert fake_runner.calls == []

    def test_missing_prompt_file(self, fake_runner, tmp_path):
        request = make_request(prompt=PromptSource(path=str(tmp_path / "nope.md")))
        with pytest.raises(ValidationError, match="prompt file"):
            make_executor(fake_runner).run(request)


class TestImpersonatedRun:
    @pytest.fixture
    def runner(self, fake_runner):
        fake_runner.on(PREFIX + ["mktemp", "-d", "-t", "codex-exec-.XXXXXX"], stdout="/tmp/codex-exec-.1\n")
        fake_runner.on(
            PREFIX + ["mktemp", "-d", "-t", "codex-output-schema-.XXXXXX"],
            stdout="/tmp/codex-output-schema-.2\n",
        )
        return fake_runner

    def request(self, **overrides):
        return make_request(safety_strategy="unprivileged-user", codex_user="agent", **overrides)

    def test_success(self, runner):
        runner.on(PREFIX + ["cat"], stdout="all done")
        message = make_executor(runner).run(self.request(output_schema=SchemaSource(content='{"a":1}')))

        assert message == "all done"
        argvs = runner.argvs
        agent_call = next(c for c in runner.calls if c["argv"][5:6] == ["/opt/tools/bin/codex"])
        assert agent_call["input_text"] == "Fix the build"
        assert agent_call["stdout_to_stderr"] is True
        assert agent_call["env"]["CODEX_INTERNAL_ORIGINATOR_OVERRIDE"] == "codex_github_action"
        assert PREFIX + ["sh", "-c", 'cat > "$1"', "sh", "/tmp/codex-output-schema-.2/schema.json.partial"] in argvs
        # Schema released before output, both impersonated.
        assert argvs[-2:] == [
            PREFIX + ["rm", "-rf", "/tmp/codex-output-schema-.2"],
            PREFIX + ["rm", "-rf", "/tmp/codex-exec-.1"],
        ]

    def test_agent_failure_still_cleans_up(self, runner):
        runner.on(PREFIX + ["/opt/tools/bin/codex"], exit_code=2)
        with pytest.raises(AgentProcessError) as exc:
            make_executor(runner).run(self.request())

        assert exc.value.exit_code == 2
        assert "exited with code 2" in str(exc.value)
        assert runner.argvs[-1] == PREFIX + ["rm", "-rf", "/tmp/codex-exec-.1"]
        assert not any(argv[5:6] == ["cat"] for argv in runner.argvs)

    def test_final_read_failure_is_distinct(self, runner):
        runner.on(PREFIX + ["cat"], exit_code=1, stderr="No such file")
        with pytest.raises(FinalReadError, match="No such file"):
            make_executor(runner).run(self.request())
        assert runner.argvs[-1] == PREFIX + ["rm", "-rf", "/tmp/codex-exec-.1"]

    def test_explicit_output_not_removed(self, runner):
        runner.on(PREFIX + ["cat"], stdout="kept")
        message = make_executor(runner).run(self.request(explicit_output_file="/work/out.md"))

        assert message == "kept"
        assert PREFIX + ["cat", "/work/out.md"] in runner.argvs
        assert not any("rm" in argv for argv in runner.argvs)
        assert not any("mktemp" in argv for argv in runner.argvs)

    def test_cleanup_failure_does_not_mask_result(self, runner):
        runner.on(PREFIX + ["cat"], stdout="result")
        runner.on(PREFIX + ["rm"], exit_code=1, stderr="busy")
        with pytest.warns(UserWarning, match="Failed to clean up"):
            assert make_executor(runner).run(self.request()) == "result"

    def test_spawn_failure(self, runner):
        runner.on(PREFIX + ["/opt/tools/bin/codex"], raises=FileNotFoundError("sudo"))
        with pytest.raises(AgentProcessError, match="Failed to start sudo"):
            make_executor(runner).run(self.request())
        assert runner.argvs[-1] == PREFIX + ["rm", "-rf", "/tmp/codex-exec-.1"]


class TestGithubOutput:
    def test_writes_delimited_output(self, tmp_path):
        out = tmp_path / "gh_output"
        assert write_github_output("final-message", "line 1\nline 2", {"GITHUB_OUTPUT": str(out)})
        lines = out.read_text().splitlines()
        assert lines[0].startswith("final-message<<ghadelimiter_")
        delimiter = lines[0].split("<<", 1)[1]
        assert lines[1:] == ["line 1", "line 2", delimiter]

    def test_noop_without_env(self):
        assert write_github_output("final-message", "x", {}) is False
