"""Parallel Runner — run N external processes at a time until all finish.

WHY
───
Build scripts, test shards and data exports often boil down to "run
these 40 commands, 4 at a time, and show me their output as it
happens".  ``run_parallel`` is that loop and nothing more: it admits
processes up to a fixed cap, polls them, replaces finished ones with
queued ones, and reports lifecycle events through four hooks.

ARCHITECTURE
────────────
::

    run_parallel(processes, max_parallel, poll, on_*)
      │
      ├── validate (all-or-nothing, nothing started on failure)
      ├── max_parallel = min(abs(max_parallel), len(processes))
      ├── admission: start the first max_parallel, on_start each
      │
      └── loop until queue and active set are both empty
            ├── wait `poll` seconds, delivering on_output as it arrives
            ├── scan a snapshot of the active set
            │     └── finished? → on_finish, remove,
            │                     start next queued (inline), on_start
            └── on_poll

    Threads
      caller thread   ─ admission, polling, EVERY hook
      reader threads  ─ push (stream, chunk, process) into a SimpleQueue

    Completion is only noticed at a poll tick.  Worst-case detection
    latency for a finished process is one full ``poll`` interval.

Per process, hooks fire in the order::

    on_start → on_output* → on_finish

Processes that exit non-zero (or never spawn) are "finished" like any
other; inspect ``exit_code`` on each handle after the call, or inside
``on_finish``.

Related modules:
    protocol.py ─ RunnableProcess, OutputStream, hook signatures
    process.py  ─ Process / PythonProcess handles

Example::

    from procspine import Process, PythonProcess, run_parallel

    processes = [
        Process(["echo", "foo"]),
        Process(["echo", "bar"]),
        PythonProcess("print('Hello World', end='')"),
    ]
    run_parallel(
        processes,
        max_parallel=2,
        poll=0.001,
        on_output=lambda stream, chunk, proc: print(chunk, end=""),
        on_finish=lambda proc: print("exit", proc.exit_code),
    )

Tags:
    procspine, execution, runner, parallel, bounded-concurrency, polling

Doc-Types:
    api-reference
"""

from __future__ import annotations

import math
import operator
import queue
import time
import uuid
from collections import deque
from collections.abc import Iterable
from datetime import timedelta
from typing import Any

from procspine.core.errors import InvalidInputError
from procspine.core.logging import get_logger
from procspine.core.settings import RunnerSettings, get_settings
from procspine.execution.protocol import (
    OutputCallback,
    OutputHook,
    OutputStream,
    PollHook,
    ProcessHook,
    RunnableProcess,
)

logger = get_logger(__name__)

DEFAULT_POLL_SECONDS = 0.001


def _ignore(*args: Any) -> None:
    return None


# ── Validation ───────────────────────────────────────────────────────


def _validate_processes(processes: Iterable[RunnableProcess]) -> list[RunnableProcess]:
    """Materialize and check the input before anything is started."""
    try:
        items = list(processes)
    except TypeError as exc:
        raise InvalidInputError(
            f"processes must be an iterable of process handles, {type(processes).__name__} given",
            cause=exc,
        ) from exc

    if not items:
        raise InvalidInputError("Cannot run in parallel 0 commands")

    seen: set[int] = set()
    for index, process in enumerate(items):
        if not isinstance(process, RunnableProcess):
            raise InvalidInputError(
                f"Process at index {index} must provide start() and is_running(), "
                f"{type(process).__name__} given"
            ).with_context(index=index)

        if id(process) in seen:
            raise InvalidInputError(
                f"Process at index {index} appears more than once"
            ).with_context(index=index)
        seen.add(id(process))

        is_started = getattr(process, "is_started", None)
        if callable(is_started) and is_started():
            raise InvalidInputError(
                f"Process at index {index} has already been started"
            ).with_context(index=index)

    return items


def _normalize_max_parallel(max_parallel: int, count: int) -> int:
    """``min(abs(max_parallel), count)``; the sign is ignored, not rejected."""
    if isinstance(max_parallel, bool):
        raise InvalidInputError("max_parallel must be an integer, bool given")
    try:
        requested = operator.index(max_parallel)
    except TypeError as exc:
        raise InvalidInputError(
            f"max_parallel must be an integer, {type(max_parallel).__name__} given",
            cause=exc,
        ) from exc

    limit = min(abs(requested), count)
    if limit == 0:
        raise InvalidInputError("max_parallel must be non-zero")
    return limit


def _normalize_poll(poll: float | timedelta) -> float:
    """Poll interval in seconds."""
    if isinstance(poll, timedelta):
        seconds = poll.total_seconds()
    elif isinstance(poll, (int, float)) and not isinstance(poll, bool):
        seconds = float(poll)
    else:
        raise InvalidInputError(
            f"poll must be a number of seconds or a timedelta, {type(poll).__name__} given"
        )

    if math.isnan(seconds) or seconds < 0:
        raise InvalidInputError(f"poll must be >= 0 seconds, got {seconds}")
    return seconds


# ── Control loop ─────────────────────────────────────────────────────


class _ParallelRun:
    """State of one ``run_parallel`` call. Touched only by the caller thread,
    except ``_pending`` which reader threads feed."""

    def __init__(
        self,
        processes: list[RunnableProcess],
        max_parallel: int,
        poll: float,
        *,
        on_output: OutputHook,
        on_start: ProcessHook,
        on_poll: PollHook,
        on_finish: ProcessHook,
    ) -> None:
        self.run_id = uuid.uuid4().hex[:12]
        self._max_parallel = max_parallel
        self._poll = poll
        self._on_output = on_output
        self._on_start = on_start
        self._on_poll = on_poll
        self._on_finish = on_finish

        self._queue: deque[RunnableProcess] = deque(processes)
        self._active: list[RunnableProcess] = []
        self._pending: queue.SimpleQueue[tuple[OutputStream, str, RunnableProcess]] = (
            queue.SimpleQueue()
        )
        self._started = 0
        self._finished = 0

    def execute(self) -> None:
        while self._queue and len(self._active) < self._max_parallel:
            self._admit(self._queue.popleft())

        while self._queue or self._active:
            self._wait_for_tick()
            self._reap()
            self._on_poll()

    def _admit(self, process: RunnableProcess) -> None:
        process.start(self._sink_for(process))
        self._active.append(process)
        self._started += 1
        self._on_start(process)
        logger.debug(
            "parallel_runner.process_started",
            run_id=self.run_id,
            process=repr(process),
            active=len(self._active),
            queued=len(self._queue),
        )

    def _reap(self) -> None:
        # Slots freed here are refilled within the same pass; processes
        # admitted during the pass are not in the snapshot.
        for process in list(self._active):
            if process.is_running():
                continue

            self._deliver_pending()
            self._on_finish(process)
            self._active.remove(process)
            self._finished += 1
            logger.debug(
                "parallel_runner.process_finished",
                run_id=self.run_id,
                process=repr(process),
                exit_code=getattr(process, "exit_code", None),
                finished=self._finished,
            )

            if self._queue:
                self._admit(self._queue.popleft())

    def _sink_for(self, process: RunnableProcess) -> OutputCallback:
        pending = self._pending

        def sink(stream: OutputStream, chunk: str) -> None:
            pending.put((stream, chunk, process))

        return sink

    def _wait_for_tick(self) -> None:
        """Sleep ``poll`` seconds, handing output to ``on_output`` meanwhile.

        Process exit does not cut the wait short.
        """
        deadline = time.monotonic() + self._poll
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            try:
                stream, chunk, process = self._pending.get(timeout=remaining)
            except queue.Empty:
                continue
            self._on_output(stream, chunk, process)
        self._deliver_pending()

    def _deliver_pending(self) -> None:
        """Deliver what is queued right now, without waiting for more."""
        for _ in range(self._pending.qsize()):
            try:
                stream, chunk, process = self._pending.get_nowait()
            except queue.Empty:
                break
            self._on_output(stream, chunk, process)


def run_parallel(
    processes: Iterable[RunnableProcess],
    max_parallel: int,
    poll: float | timedelta = DEFAULT_POLL_SECONDS,
    *,
    on_output: OutputHook | None = None,
    on_start: ProcessHook | None = None,
    on_poll: PollHook | None = None,
    on_finish: ProcessHook | None = None,
) -> None:
    """Run ``processes`` with at most ``max_parallel`` alive at once.

    Processes are admitted in input order. Whenever a running one is
    seen finished at a poll tick, the next queued one is started. Returns
    once every process has been started and observed finished.

    Every hook runs on the calling thread, never concurrently with another.
    Exceptions raised by a hook propagate out of this call.

    Args:
        processes: Not-yet-started handles satisfying
            :class:`~procspine.execution.protocol.RunnableProcess`.
        max_parallel: Concurrency cap. Normalized to
            ``min(abs(max_parallel), len(processes))``.
        poll: Seconds (or a ``timedelta``) between liveness checks.
        on_output: ``(stream, chunk, process)`` for each chunk of output.
        on_start: ``(process)`` right after its ``start()`` returns.
        on_poll: ``()`` once per tick, after finished processes were
            reaped and replaced.
        on_finish: ``(process)`` when a process is seen not running.

    Raises:
        InvalidInputError: If ``processes`` is empty, contains an element
            that is not a process handle, repeats a handle or holds one that
            was already started; or if ``max_parallel``/``poll`` is invalid.
            Nothing is started when this is raised.
    """
    items = _validate_processes(processes)
    limit = _normalize_max_parallel(max_parallel, len(items))
    interval = _normalize_poll(poll)

    run = _ParallelRun(
        items,
        limit,
        interval,
        on_output=on_output or _ignore,
        on_start=on_start or _ignore,
        on_poll=on_poll or _ignore,
        on_finish=on_finish or _ignore,
    )

    logger.info(
        "parallel_runner.start",
        run_id=run.run_id,
        total=len(items),
        max_parallel=limit,
        poll_seconds=interval,
    )
    started = time.perf_counter()

    run.execute()

    logger.info(
        "parallel_runner.complete",
        run_id=run.run_id,
        total=len(items),
        duration_seconds=round(time.perf_counter() - started, 6),
    )


class ProcessManager:
    """Facade over :func:`run_parallel` with defaults from settings.

    Holds no state between calls, so one instance can serve many runs,
    including concurrent ones from different threads.

    Example:
        >>> manager = ProcessManager(RunnerSettings(max_parallel=2))
        >>> manager.run_parallel([Process(["echo", "foo"]), Process(["echo", "bar"])])
    """

    def __init__(self, settings: RunnerSettings | None = None) -> None:
        self._settings = settings

    @property
    def settings(self) -> RunnerSettings:
        """Explicit settings, or the cached environment settings."""
        return self._settings if self._settings is not None else get_settings()

    def run_parallel(
        self,
        processes: Iterable[RunnableProcess],
        max_parallel: int | None = None,
        poll: float | timedelta | None = None,
        *,
        on_output: OutputHook | None = None,
        on_start: ProcessHook | None = None,
        on_poll: PollHook | None = None,
        on_finish: ProcessHook | None = None,
    ) -> None:
        """See :func:`run_parallel`. ``None`` means "use the settings value"."""
        settings = self.settings
        run_parallel(
            processes,
            settings.max_parallel if max_parallel is None else max_parallel,
            settings.poll_interval if poll is None else poll,
            on_output=on_output,
            on_start=on_start,
            on_poll=on_poll,
            on_finish=on_finish,
        )


__all__ = ["DEFAULT_POLL_SECONDS", "ProcessManager", "run_parallel"]
