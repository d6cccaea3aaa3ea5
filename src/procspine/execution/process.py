"""Process handles — external commands run as local OS subprocesses.

A ``Process`` wraps one command invocation.  It is built up front (not
started), handed to :func:`~procspine.execution.runner.run_parallel`,
and inspected by the caller afterwards for exit code and output.

Architecture:

    .. code-block:: text

        Process(["echo", "foo"])
        ┌──────────────────────────────────────────────────────────────┐
        │  start(callback)                                             │
        │    └─ subprocess.Popen(argv, stdout=PIPE, stderr=PIPE)       │
        │         ├─ reader thread "out" ─┐                            │
        │         └─ reader thread "err" ─┤                            │
        │                                 ▼                            │
        │              _emit(stream, chunk)  ── per-process lock ──    │
        │                ├─ append to output / error_output            │
        │                └─ callback(stream, chunk)                    │
        │                                                              │
        │  is_running()  ─ False once the OS process exited AND both   │
        │                  readers drained, or DRAIN_GRACE_SECONDS     │
        │                  passed since exit (detached child)          │
        └──────────────────────────────────────────────────────────────┘

    A command that cannot be spawned (binary missing, not executable)
    does not raise: the handle finishes immediately with exit code 127
    (not found) or 126 (any other OS error), and the reason is written
    to ``error_output``.

Example:
    >>> from procspine.execution.process import Process, PythonProcess
    >>>
    >>> proc = Process(["echo", "foo"])
    >>> proc.start()
    >>> proc.wait()
    0
    >>> proc.output
    'foo\\n'
    >>> PythonProcess("print('Hello World', end='')").run_to_completion().output
    'Hello World'

Tags:
    procspine, execution, process, subprocess, streaming-output

Doc-Types:
    api-reference
"""

from __future__ import annotations

import codecs
import os
import shlex
import subprocess
import sys
import threading
import time
from collections.abc import Mapping, Sequence
from datetime import UTC, datetime
from pathlib import Path
from typing import IO

from procspine.core.errors import InvalidInputError, ProcessStateError
from procspine.core.logging import get_logger
from procspine.execution.protocol import OutputCallback, OutputStream

logger = get_logger(__name__)

_CHUNK_SIZE = 64 * 1024

# How long readers may keep draining after the OS process exited. A pipe
# still open past this is held by a detached child; the handle finishes anyway.
DRAIN_GRACE_SECONDS = 0.25

EXIT_CODE_NOT_FOUND = 127
EXIT_CODE_CANNOT_EXECUTE = 126


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Process:
    """One external command, started at most once.

    Output is delivered in chunks as soon as the OS hands them over, not
    line-buffered. Each chunk is decoded incrementally, so a multi-byte
    character split across two reads is never mangled.

    Args:
        command: argv list; the first item is the executable.
        cwd: Working directory for the child. Defaults to the current one.
        env: Environment variables for the child.
        inherit_env: If True, ``env`` is overlaid on ``os.environ``.
            If False, only ``env`` is passed.
        encoding: Codec used to decode both pipes.

    Raises:
        InvalidInputError: If ``command`` is empty or a bare string.
    """

    def __init__(
        self,
        command: Sequence[str | os.PathLike[str]],
        *,
        cwd: str | Path | None = None,
        env: Mapping[str, str] | None = None,
        inherit_env: bool = True,
        encoding: str = "utf-8",
    ) -> None:
        if isinstance(command, (str, bytes)) or not command:
            raise InvalidInputError(
                "Process command must be a non-empty argv sequence"
            ).with_context(command=repr(command))

        self._command = [os.fspath(part) for part in command]
        self._cwd = Path(cwd) if cwd is not None else None
        self._env = dict(env or {})
        self._inherit_env = inherit_env
        self._encoding = codecs.lookup(encoding).name

        self._popen: subprocess.Popen[bytes] | None = None
        self._readers: list[threading.Thread] = []
        self._callback: OutputCallback | None = None

        # Guards the output buffers and serializes callback delivery.
        self._output_lock = threading.RLock()
        self._state_lock = threading.Lock()
        self._output: list[str] = []
        self._error_output: list[str] = []

        self._started = False
        self._finished = threading.Event()
        self._exit_code: int | None = None
        self._exited_at: float | None = None

        self.start_error: OSError | None = None
        self.started_at: datetime | None = None
        self.finished_at: datetime | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, callback: OutputCallback | None = None) -> None:
        """Spawn the command and return immediately.

        Args:
            callback: Called with ``(stream, chunk)`` for every chunk of
                output. Runs on a reader thread.

        Raises:
            ProcessStateError: If the process was already started.
        """
        with self._state_lock:
            if self._started:
                raise ProcessStateError("Process is already started").with_context(
                    command=self.command_line, pid=self.pid,
                )
            self._started = True

        self._callback = callback
        self.started_at = _utcnow()

        try:
            self._popen = subprocess.Popen(
                self._command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=str(self._cwd) if self._cwd else None,
                env=self._build_env(),
            )
        except OSError as exc:
            self._fail_to_spawn(exc)
            return

        for stream, pipe in (
            (OutputStream.OUT, self._popen.stdout),
            (OutputStream.ERR, self._popen.stderr),
        ):
            reader = threading.Thread(
                target=self._pump,
                args=(stream, pipe),
                name=f"procspine-{stream.value}-{self._popen.pid}",
                daemon=True,
            )
            reader.start()
            self._readers.append(reader)

        logger.debug("process.spawned", pid=self._popen.pid, command=self.command_line)

    def is_running(self) -> bool:
        """Non-blocking liveness check.

        Returns False before ``start()`` and once the process has exited
        and its output has been delivered. Readers get at most
        :data:`DRAIN_GRACE_SECONDS` after exit to drain; a pipe held open
        by a background child does not keep the handle running.
        """
        if not self._started or self._finished.is_set():
            return False
        if self._popen is None or self._popen.poll() is None:
            return True
        if self._exited_at is None:
            self._exited_at = time.monotonic()
        if self._readers_alive() and time.monotonic() - self._exited_at < DRAIN_GRACE_SECONDS:
            return True
        self._finalize()
        return False

    def wait(self) -> int:
        """Block until the process has finished; return its exit code.

        Raises:
            ProcessStateError: If the process was never started.
        """
        if not self._started:
            raise ProcessStateError("Process must be started before waiting").with_context(
                command=self.command_line,
            )
        if not self._finished.is_set():
            self._require_popen().wait()
            if self._exited_at is None:
                self._exited_at = time.monotonic()
            deadline = self._exited_at + DRAIN_GRACE_SECONDS
            for reader in self._readers:
                reader.join(max(0.0, deadline - time.monotonic()))
        return self._finalize()

    def run_to_completion(self, callback: OutputCallback | None = None) -> Process:
        """Start, wait, and return ``self`` for chaining."""
        self.start(callback)
        self.wait()
        return self

    # ------------------------------------------------------------------
    # Post-exit state
    # ------------------------------------------------------------------

    @property
    def exit_code(self) -> int | None:
        """Exit status, or None until the process is finished.

        Negative values mean the child was killed by that signal number.
        """
        return self._exit_code

    def is_successful(self) -> bool:
        return self._exit_code == 0

    def is_started(self) -> bool:
        return self._started

    @property
    def output(self) -> str:
        """Everything written to standard output so far."""
        with self._output_lock:
            return "".join(self._output)

    @property
    def error_output(self) -> str:
        """Everything written to standard error so far."""
        with self._output_lock:
            return "".join(self._error_output)

    @property
    def pid(self) -> int | None:
        return self._popen.pid if self._popen is not None else None

    @property
    def command(self) -> list[str]:
        return list(self._command)

    @property
    def command_line(self) -> str:
        """Shell-quoted command, for logs and error messages."""
        return shlex.join(self._command)

    @property
    def duration_seconds(self) -> float | None:
        if self.started_at and self.finished_at:
            return (self.finished_at - self.started_at).total_seconds()
        return None

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}({self.command_line!r}, "
            f"pid={self.pid}, exit_code={self._exit_code})"
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _build_env(self) -> dict[str, str] | None:
        if self._inherit_env:
            if not self._env:
                return None
            env = dict(os.environ)
        else:
            env = {}
        env.update(self._env)
        return env

    def _pump(self, stream: OutputStream, pipe: IO[bytes]) -> None:
        """Reader thread: forward one pipe until EOF."""
        decoder = codecs.getincrementaldecoder(self._encoding)(errors="replace")
        try:
            while True:
                data = pipe.read1(_CHUNK_SIZE)  # type: ignore[attr-defined]
                if not data:
                    break
                text = decoder.decode(data)
                if text:
                    self._emit(stream, text)
            tail = decoder.decode(b"", final=True)
            if tail:
                self._emit(stream, tail)
        finally:
            pipe.close()

    def _emit(self, stream: OutputStream, chunk: str) -> None:
        with self._output_lock:
            if stream is OutputStream.OUT:
                self._output.append(chunk)
            else:
                self._error_output.append(chunk)
            if self._callback is None:
                return
            try:
                self._callback(stream, chunk)
            except Exception:
                # Reader threads have no caller; keep draining the pipe.
                logger.exception(
                    "process.output_callback_failed",
                    pid=self.pid,
                    command=self.command_line,
                    stream=stream.value,
                )

    def _fail_to_spawn(self, exc: OSError) -> None:
        self.start_error = exc
        code = EXIT_CODE_NOT_FOUND if isinstance(exc, FileNotFoundError) else EXIT_CODE_CANNOT_EXECUTE
        logger.warning(
            "process.spawn_failed",
            command=self.command_line,
            exit_code=code,
            error=str(exc),
        )
        self._emit(OutputStream.ERR, f"Failed to start {self._command[0]}: {exc}\n")
        with self._state_lock:
            self._exit_code = code
            self.finished_at = _utcnow()
            self._finished.set()

    def _require_popen(self) -> subprocess.Popen[bytes]:
        if self._popen is None:
            raise ProcessStateError("Process has no OS process").with_context(
                command=self.command_line,
            )
        return self._popen

    def _readers_alive(self) -> bool:
        return any(reader.is_alive() for reader in self._readers)

    def _finalize(self) -> int:
        """Record the exit code once; return it.

        The callback is detached so nothing is delivered after the handle
        reports finished. Chunks a detached child writes later still land
        in ``output`` / ``error_output``.
        """
        with self._state_lock:
            if self._exit_code is not None:
                return self._exit_code
            popen = self._require_popen()
            code = popen.wait()
            with self._output_lock:
                self._callback = None
            self._exit_code = code
            self.finished_at = _utcnow()
            self._finished.set()

        if self._readers_alive():
            logger.warning(
                "process.output_pipe_held_open",
                pid=popen.pid,
                command=self.command_line,
            )
        logger.debug(
            "process.exited",
            pid=popen.pid,
            exit_code=code,
            duration_seconds=self.duration_seconds,
        )
        return code


class PythonProcess(Process):
    """Run an inline Python script in a fresh interpreter.

    Example:
        >>> proc = PythonProcess("import sys; sys.stdout.write('Hello World')")
        >>> proc.run_to_completion().output
        'Hello World'

    Args:
        script: Source code passed to ``python -c``.
        python: Interpreter to use. Defaults to the running one.
        **kwargs: Forwarded to :class:`Process` (``cwd``, ``env``, ...).
    """

    def __init__(
        self,
        script: str,
        *,
        python: str | os.PathLike[str] | None = None,
        **kwargs,
    ) -> None:
        self.script = script
        super().__init__([python or sys.executable, "-c", script], **kwargs)


__all__ = [
    "DRAIN_GRACE_SECONDS",
    "EXIT_CODE_CANNOT_EXECUTE",
    "EXIT_CODE_NOT_FOUND",
    "Process",
    "PythonProcess",
]
