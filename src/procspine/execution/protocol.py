"""RunnableProcess Protocol — what the parallel runner needs from a process.

Manifesto:
The runner only orchestrates.  How a command is spawned, where its
pipes go and how its output is kept are the process handle's business.
``RunnableProcess`` is a ``typing.Protocol`` — any object with
``start()`` and ``is_running()`` satisfies it, no base class required.

ARCHITECTURE
────────────
::

    RunnableProcess (Protocol)
      ├── .start(callback)  ─ begin execution, stream chunks to callback
      └── .is_running()     ─ non-blocking liveness poll

    Implementations:
      Process        ─ subprocess.Popen + reader threads
      PythonProcess  ─ inline Python script (``python -c``)

    Output callback signature:
      callback(stream: OutputStream, chunk: str) -> None

Related modules:
    process.py ─ concrete handles
    runner.py  ─ run_parallel() drives handles to completion

Tags:
    procspine, execution, process, protocol, interface

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import Callable
from enum import Enum
from typing import Any, Protocol, runtime_checkable


class OutputStream(str, Enum):
    """Which pipe an output chunk came from."""

    OUT = "out"
    ERR = "err"


OutputCallback = Callable[[OutputStream, str], None]
"""Sink passed to :meth:`RunnableProcess.start`."""

OutputHook = Callable[[OutputStream, str, Any], None]
"""``on_output(stream, chunk, process)`` hook of ``run_parallel``."""

ProcessHook = Callable[[Any], None]
"""``on_start(process)`` / ``on_finish(process)`` hooks of ``run_parallel``."""

PollHook = Callable[[], None]
"""``on_poll()`` hook of ``run_parallel``."""


@runtime_checkable
class RunnableProcess(Protocol):
    """A not-yet-started external command.

    The handle itself is the process identity: hooks receive it back and
    callers read exit status and output from it after the run.

    Example implementation:
        >>> class EchoProcess:
        ...     def start(self, callback=None):
        ...         if callback:
        ...             callback(OutputStream.OUT, "hi\\n")
        ...
        ...     def is_running(self):
        ...         return False
    """

    def start(self, callback: OutputCallback | None = None) -> None:
        """Begin execution and return without waiting for exit.

        Args:
            callback: Invoked with ``(stream, chunk)`` for every chunk of
                output, in arrival order, from any thread.
        """
        ...

    def is_running(self) -> bool:
        """Return False once the process has exited, successfully or not."""
        ...


__all__ = [
    "OutputStream",
    "OutputCallback",
    "OutputHook",
    "ProcessHook",
    "PollHook",
    "RunnableProcess",
]
