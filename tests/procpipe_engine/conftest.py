"""Shared fixtures and a recording fake Process for executor tests.

The fake never spawns anything: it records every call into a shared event
log so tests can assert start/wait ordering and teardown precisely.
"""

from __future__ import annotations

import shutil

import pytest

from procpipe import CancelScope, CancelledError, StageFailureError

# ---------------------------------------------------------------------------
# Fake process (no real subprocesses)
# ---------------------------------------------------------------------------


class FakeReader:
    """Stands in for the read end of an OS pipe."""

    def __init__(self, owner: str, log: list):
        self.owner = owner
        self.closed = False
        self._log = log

    def close(self):
        if not self.closed:
            self._log.append(("close-reader", self.owner))
        self.closed = True


class FakeProcess:
    """Records configure/start/wait calls; behaviour is set by the factory."""

    def __init__(self, factory, program, args=(), *, cwd="", env=(), scope=None, config=None):
        self.factory = factory
        self.program = program
        self.args = tuple(args)
        self.cwd = cwd
        self.env = tuple(env)
        self.scope = scope
        self.config = config
        self.stdin = None
        self.stdout = None
        self.stderr = None
        self.reader: FakeReader | None = None
        self.started = False
        self.waited = False
        self.closed = False
        self.cancelled_at_wait: bool | None = None

    def __str__(self):
        return self.program

    def stdout_pipe(self):
        self.reader = FakeReader(self.program, self.factory.log)
        self.stdout = ("pipe-writer", self.program)
        return self.reader

    def start(self):
        self.factory.log.append(("start", self.program))
        if self.scope is not None and self.scope.cancelled:
            raise CancelledError(self.scope.reason)
        if self.program in self.factory.fail_start:
            raise FileNotFoundError(2, "No such file or directory", self.program)
        self.started = True

    def wait(self):
        assert self.started, f"wait() on unstarted {self.program}"
        self.factory.log.append(("wait", self.program))
        self.waited = True
        self.cancelled_at_wait = self.scope.cancelled
        if self.reader is not None:
            self.reader.close()
        if self.program in self.factory.wait_raises:
            raise self.factory.wait_raises[self.program]
        code = self.factory.exit_codes.get(self.program, 0)
        if code != 0:
            raise StageFailureError(self.program, code)
        return 0

    def close(self):
        self.closed = True
        if self.reader is not None:
            self.reader.close()


class FakeFactory:
    """process_factory that builds FakeProcess objects sharing one event log."""

    def __init__(self, fail_start=(), exit_codes=None, wait_raises=None):
        self.fail_start = set(fail_start)
        self.exit_codes = dict(exit_codes or {})
        self.wait_raises = dict(wait_raises or {})
        self.log: list[tuple[str, str]] = []
        self.created: list[FakeProcess] = []

    def __call__(self, program, args=(), **kwargs):
        proc = FakeProcess(self, program, args, **kwargs)
        self.created.append(proc)
        return proc

    def events(self, kind: str) -> list[str]:
        return [program for event, program in self.log if event == kind]

    def by_program(self, program: str) -> FakeProcess:
        return next(p for p in self.created if p.program == program)


def require_tools(*names: str):
    """Skip marker for tests that need real executables on PATH."""
    missing = [n for n in names if shutil.which(n) is None]
    return pytest.mark.skipif(bool(missing), reason=f"missing tools: {missing}")


# ---------------------------------------------------------------------------
# Pytest fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def factory():
    return FakeFactory()


@pytest.fixture
def scope():
    s = CancelScope()
    yield s
    s.cancel()


@pytest.fixture
def fixed_env():
    """A fixed lookup mapping standing in for the ambient environment."""
    return {"HOME": "/home/tester", "USER": "tester", "EMPTY": ""}
