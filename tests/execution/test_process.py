"""Tests for Process / PythonProcess — subprocess-backed handles.

Tests:
    - Output capture (stdout + stderr) and streaming callback
    - Exit codes and is_successful()
    - Lifecycle misuse (start twice, wait before start)
    - Spawn failure finishes the handle instead of raising
    - Environment, working directory and decoding
"""

import shutil
import sys
import time

import pytest

from procspine.core.errors import InvalidInputError, ProcessStateError
from procspine.execution.process import (
    DRAIN_GRACE_SECONDS,
    EXIT_CODE_NOT_FOUND,
    Process,
    PythonProcess,
)
from procspine.execution.protocol import OutputStream, RunnableProcess
from procspine.execution.runner import run_parallel


def _wait_until_finished(proc, timeout=10.0):
    deadline = time.monotonic() + timeout
    while proc.is_running():
        if time.monotonic() > deadline:
            pytest.fail(f"{proc!r} did not finish within {timeout}s")
        time.sleep(0.01)


class TestConstruction:
    """Argument checks happen in the constructor."""

    def test_satisfies_protocol(self):
        assert isinstance(Process([sys.executable, "-V"]), RunnableProcess)
        assert isinstance(PythonProcess("pass"), RunnableProcess)

    def test_empty_command_raises(self):
        with pytest.raises(InvalidInputError):
            Process([])

    def test_string_command_raises(self):
        with pytest.raises(InvalidInputError):
            Process("echo foo")

    def test_not_started_state(self):
        proc = Process([sys.executable, "-V"])
        assert proc.is_started() is False
        assert proc.is_running() is False
        assert proc.exit_code is None
        assert proc.pid is None
        assert proc.output == ""

    def test_command_line_is_quoted(self):
        proc = Process(["echo", "hello world"])
        assert proc.command_line == "echo 'hello world'"
        assert proc.command == ["echo", "hello world"]


class TestRun:
    """Start, poll, wait."""

    def test_captures_stdout(self):
        proc = PythonProcess("print('hello from local')")
        proc.start()
        assert proc.wait() == 0
        assert proc.output == "hello from local\n"
        assert proc.error_output == ""
        assert proc.is_successful()

    def test_captures_stderr(self):
        proc = PythonProcess("import sys; sys.stderr.write('err_msg')")
        proc.run_to_completion()
        assert proc.error_output == "err_msg"
        assert proc.output == ""

    def test_non_zero_exit(self):
        proc = PythonProcess("raise SystemExit(42)").run_to_completion()
        assert proc.exit_code == 42
        assert not proc.is_successful()

    def test_is_running_turns_false(self):
        proc = PythonProcess("import time; time.sleep(0.2)")
        proc.start()
        assert proc.is_running() is True
        _wait_until_finished(proc)
        assert proc.exit_code == 0
        assert proc.pid is not None

    def test_timestamps_recorded(self):
        proc = PythonProcess("pass").run_to_completion()
        assert proc.started_at is not None
        assert proc.finished_at is not None
        assert proc.duration_seconds >= 0

    def test_wait_after_poll_finished(self):
        proc = PythonProcess("print('x')")
        proc.start()
        _wait_until_finished(proc)
        assert proc.wait() == 0

    def test_callback_receives_tagged_chunks(self):
        received = []
        proc = PythonProcess(
            "import sys; sys.stdout.write('out'); sys.stdout.flush(); sys.stderr.write('err')"
        )
        proc.run_to_completion(lambda stream, chunk: received.append((stream, chunk)))

        out = "".join(chunk for stream, chunk in received if stream is OutputStream.OUT)
        err = "".join(chunk for stream, chunk in received if stream is OutputStream.ERR)
        assert out == "out"
        assert err == "err"

    def test_callback_failure_does_not_lose_output(self):
        def broken(stream, chunk):
            raise RuntimeError("sink exploded")

        proc = PythonProcess("print('still captured')").run_to_completion(broken)
        assert proc.output == "still captured\n"
        assert proc.exit_code == 0

    def test_large_output_does_not_block(self):
        proc = PythonProcess("import sys; sys.stdout.write('x' * 1_000_000)").run_to_completion()
        assert len(proc.output) == 1_000_000


class TestLifecycleErrors:
    """Out-of-order calls raise ProcessStateError."""

    def test_start_twice_raises(self):
        proc = PythonProcess("pass")
        proc.start()
        with pytest.raises(ProcessStateError, match="already started"):
            proc.start()
        proc.wait()

    def test_wait_before_start_raises(self):
        with pytest.raises(ProcessStateError):
            PythonProcess("pass").wait()


class TestSpawnFailure:
    """A command that cannot be spawned finishes instead of raising."""

    def test_missing_binary(self):
        received = []
        proc = Process(["procspine-definitely-not-a-binary"])
        proc.start(lambda stream, chunk: received.append(stream))

        assert proc.is_running() is False
        assert proc.exit_code == EXIT_CODE_NOT_FOUND
        assert isinstance(proc.start_error, FileNotFoundError)
        assert "procspine-definitely-not-a-binary" in proc.error_output
        assert received == [OutputStream.ERR]
        assert proc.wait() == EXIT_CODE_NOT_FOUND

    def test_missing_cwd(self, tmp_path):
        proc = Process([sys.executable, "-V"], cwd=tmp_path / "does-not-exist")
        proc.start()
        assert proc.is_running() is False
        assert proc.exit_code == EXIT_CODE_NOT_FOUND


class TestEnvironment:
    """Environment, working directory and decoding."""

    def test_env_overlay(self):
        proc = PythonProcess(
            "import os; print(os.environ['MY_VAR'])",
            env={"MY_VAR": "procspine-test-value"},
        ).run_to_completion()
        assert proc.output == "procspine-test-value\n"

    def test_env_inherited(self, monkeypatch):
        monkeypatch.setenv("PROCSPINE_TEST_INHERITED", "yes")
        proc = PythonProcess(
            "import os; print(os.environ.get('PROCSPINE_TEST_INHERITED'))",
            env={"OTHER": "1"},
        ).run_to_completion()
        assert proc.output == "yes\n"

    def test_no_inherit_env(self, monkeypatch):
        monkeypatch.setenv("PROCSPINE_TEST_INHERITED", "yes")
        proc = PythonProcess(
            "import os; print(os.environ.get('PROCSPINE_TEST_INHERITED'))",
            env={"ONLY": "this"},
            inherit_env=False,
        ).run_to_completion()
        assert proc.output == "None\n"

    def test_working_directory(self, tmp_path):
        proc = PythonProcess("import os; print(os.getcwd())", cwd=tmp_path).run_to_completion()
        assert proc.output.strip() == str(tmp_path.resolve())

    def test_multibyte_character_split_across_reads(self):
        script = (
            "import sys, time\n"
            "sys.stdout.buffer.write(b'\\xc3'); sys.stdout.flush()\n"
            "time.sleep(0.05)\n"
            "sys.stdout.buffer.write(b'\\xa9'); sys.stdout.flush()\n"
        )
        proc = PythonProcess(script).run_to_completion()
        assert proc.output == "é"

    def test_custom_interpreter(self):
        proc = PythonProcess("print('ok')", python=sys.executable).run_to_completion()
        assert proc.command[0] == sys.executable
        assert proc.output == "ok\n"


@pytest.mark.skipif(shutil.which("sh") is None, reason="sh not available")
class TestDetachedChild:
    """A background child holding the pipes open does not keep the handle running."""

    def test_is_running_false_after_parent_exit(self):
        proc = Process(["sh", "-c", "sleep 3 & echo parent-done"])
        started = time.monotonic()
        proc.start()
        _wait_until_finished(proc, timeout=2.5)

        assert time.monotonic() - started < 1.5
        assert proc.exit_code == 0
        assert proc.output == "parent-done\n"

    def test_wait_returns_after_grace(self):
        proc = Process(["sh", "-c", "sleep 3 & echo parent-done"])
        started = time.monotonic()
        proc.start()

        assert proc.wait() == 0
        assert time.monotonic() - started < 1.5 + DRAIN_GRACE_SECONDS

    def test_on_finish_not_held_by_background_sleep(self):
        proc = Process(["sh", "-c", "sleep 3 & echo parent-done"])
        started = time.monotonic()
        finished_after = []
        chunks = []

        run_parallel(
            [proc], 1, poll=0.01,
            on_output=lambda stream, chunk, p: chunks.append(chunk),
            on_finish=lambda p: finished_after.append(time.monotonic() - started),
        )

        assert finished_after[0] < 1.0
        assert "".join(chunks) == "parent-done\n"

    def test_late_output_buffered_not_delivered(self):
        received = []
        proc = Process(["sh", "-c", "(sleep 0.8; echo late) & echo early"])
        proc.start(lambda stream, chunk: received.append(chunk))
        _wait_until_finished(proc, timeout=2.0)
        assert proc.output == "early\n"

        deadline = time.monotonic() + 5.0
        while "late" not in proc.output and time.monotonic() < deadline:
            time.sleep(0.05)

        assert proc.output == "early\nlate\n"
        assert "".join(received) == "early\n"


class TestStateGuards:
    """Internal state checks raise instead of relying on assert."""

    def test_spawn_failure_wait_returns_code_without_popen(self):
        proc = Process(["procspine-definitely-not-a-binary"])
        proc.start()
        assert proc.pid is None
        assert proc.wait() == EXIT_CODE_NOT_FOUND

    def test_missing_os_process_raises_state_error(self):
        proc = PythonProcess("pass")
        # started flag set but no OS process attached
        proc._started = True
        with pytest.raises(ProcessStateError, match="no OS process"):
            proc.wait()
