"""
Shared pytest fixtures for procspine tests.

This module provides:
- Settings cache isolation between tests
- ``FakeProcess``: a deterministic RunnableProcess driven by poll counts
- ``Recorder``: collects hook calls in order and tracks concurrency

Usage:
    def test_something(make_process, recorder):
        procs = [make_process("a", polls=2), make_process("b")]
        run_parallel(procs, 1, poll=0, **recorder.hooks())
"""

import os
import sys
from pathlib import Path

import pytest

# Ensure procspine package is importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from procspine.core.settings import clear_settings_cache


# =============================================================================
# Fakes
# =============================================================================


class FakeProcess:
    """In-memory process handle.

    ``is_running()`` answers True for the first ``polls`` calls after
    ``start()`` and False afterwards. ``chunks`` are handed to the output
    callback synchronously from ``start()``.
    """

    def __init__(self, name, polls=0, chunks=(), exit_code=0, journal=None):
        self.name = name
        self.polls = polls
        self.chunks = list(chunks)
        self._exit_code = exit_code
        self.journal = journal if journal is not None else []
        self.start_calls = 0
        self.poll_calls = 0
        self._remaining = polls
        self._finished = False

    def start(self, callback=None):
        self.start_calls += 1
        self.journal.append(("start", self.name))
        if callback is not None:
            for stream, chunk in self.chunks:
                callback(stream, chunk)

    def is_running(self):
        self.poll_calls += 1
        if self.start_calls == 0 or self._finished:
            return False
        if self._remaining > 0:
            self._remaining -= 1
            return True
        self._finished = True
        return False

    def is_started(self):
        return self.start_calls > 0

    @property
    def exit_code(self):
        return self._exit_code if self._finished else None

    def __repr__(self):
        return f"FakeProcess({self.name!r})"


def _key(process):
    """Fakes are keyed by name, real handles by identity."""
    return getattr(process, "name", process)


class Recorder:
    """Records every hook call as ``(event, key)`` tuples, in call order."""

    def __init__(self):
        self.events = []
        self.running = set()
        self.peak = 0
        self.finished_while_running = []

    def on_output(self, stream, chunk, process):
        self.events.append(("output", _key(process), stream, chunk))

    def on_start(self, process):
        self.events.append(("start", _key(process)))
        self.running.add(_key(process))
        self.peak = max(self.peak, len(self.running))

    def on_poll(self):
        self.events.append(("poll",))

    def on_finish(self, process):
        self.events.append(("finish", _key(process)))
        if process.is_running():
            self.finished_while_running.append(_key(process))
        self.running.discard(_key(process))

    def hooks(self):
        return {
            "on_output": self.on_output,
            "on_start": self.on_start,
            "on_poll": self.on_poll,
            "on_finish": self.on_finish,
        }

    def names(self, event):
        return [e[1] for e in self.events if e[0] == event]

    def count(self, event):
        return sum(1 for e in self.events if e[0] == event)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def _isolate_settings(monkeypatch):
    """Fresh settings per test; no PROCSPINE_* leakage from the host."""
    for key in list(os.environ):
        if key.startswith("PROCSPINE_"):
            monkeypatch.delenv(key, raising=False)
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def journal():
    """Shared list that fake processes append ``("start", name)`` to."""
    return []


@pytest.fixture
def make_process(journal):
    def factory(name, polls=0, chunks=(), exit_code=0):
        return FakeProcess(name, polls=polls, chunks=chunks, exit_code=exit_code, journal=journal)

    return factory


@pytest.fixture
def recorder():
    return Recorder()

