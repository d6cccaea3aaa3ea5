"""procspine -- run external commands N at a time, with live output.

Example:
    >>> from procspine import Process, PythonProcess, run_parallel
    >>> processes = [
    ...     Process(["echo", "foo"]),
    ...     Process(["echo", "bar"]),
    ...     PythonProcess("print('Hello World', end='')"),
    ... ]
    >>> run_parallel(processes, max_parallel=2)
    >>> [p.output for p in processes]
    ['foo\\n', 'bar\\n', 'Hello World']
"""

from procspine.core.errors import InvalidInputError, ProcessStateError, ProcSpineError
from procspine.core.logging import configure_logging, get_logger
from procspine.core.settings import RunnerSettings, get_settings
from procspine.execution import (
    OutputStream,
    Process,
    ProcessManager,
    PythonProcess,
    RunnableProcess,
    run_parallel,
)

__version__ = "0.1.0"

__all__ = [
    "InvalidInputError",
    "OutputStream",
    "Process",
    "ProcessManager",
    "ProcessStateError",
    "ProcSpineError",
    "PythonProcess",
    "RunnableProcess",
    "RunnerSettings",
    "configure_logging",
    "get_logger",
    "get_settings",
    "run_parallel",
]
