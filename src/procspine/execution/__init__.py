"""procspine execution — bounded-concurrency process scheduling.

ARCHITECTURE
────────────
::

    Process / PythonProcess (what to run)
      │
      ▼
    run_parallel(processes, max_parallel, poll, on_*)
      ├── admission   ─ first max_parallel processes start at once
      ├── poll tick   ─ sleep, reap finished, start queued (FIFO)
      └── hooks       ─ on_output / on_start / on_poll / on_finish

MODULE MAP
──────────
  1. protocol.py ─ RunnableProcess, OutputStream, hook signatures
  2. process.py  ─ Process, PythonProcess (subprocess + reader threads)
  3. runner.py   ─ run_parallel(), ProcessManager
"""

from procspine.execution.process import Process, PythonProcess
from procspine.execution.protocol import OutputStream, RunnableProcess
from procspine.execution.runner import ProcessManager, run_parallel

__all__ = [
    "OutputStream",
    "Process",
    "ProcessManager",
    "PythonProcess",
    "RunnableProcess",
    "run_parallel",
]
