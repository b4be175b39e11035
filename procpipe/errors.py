"""Pipeline error types.

Two families:

- ``PipeError`` — runtime failures the caller is expected to handle
  (bad command lines, spawn failures, stages exiting non-zero).
- ``ConstructionError`` — programmer errors in the code that builds a
  chain.  Not a ``PipeError``, so ``except PipeError`` does not catch it.
"""

from __future__ import annotations

import signal


class PipeError(Exception):
    """Base class for recoverable pipeline failures."""


class MalformedInputError(PipeError, ValueError):
    """A shell line could not be tokenized or contains no command."""

    def __init__(self, message: str, line: str = "") -> None:
        self.line = line
        super().__init__(message)


class CancelledError(PipeError):
    """The execution scope was cancelled before a stage could start."""

    def __init__(self, reason: str = "cancelled") -> None:
        self.reason = reason
        super().__init__(reason)


class StartFailureError(PipeError):
    """Stage *stage* could not be spawned.

    The underlying spawn error is available as ``__cause__``.  Every stage
    started before it has been waited on by the time this is raised.
    """

    def __init__(self, stage: int, program: str) -> None:
        self.stage = stage
        self.program = program
        super().__init__(f"unable to start stage {stage} ({program})")

    def __str__(self) -> str:
        base = super().__str__()
        if self.__cause__ is not None:
            return f"{base}: {self.__cause__}"
        return base


class StageFailureError(PipeError):
    """A started stage exited with a failure status or was terminated.

    ``returncode`` follows ``subprocess`` conventions: negative values mean
    the stage died from that signal.  ``stage`` is the stage's position in
    the pipeline (``None`` until the executor assigns it).
    """

    def __init__(
        self,
        program: str,
        returncode: int,
        *,
        stage: int | None = None,
        cancelled: bool = False,
    ) -> None:
        self.program = program
        self.returncode = returncode
        self.stage = stage
        self.cancelled = cancelled
        super().__init__(program, returncode)

    @property
    def signal_name(self) -> str | None:
        if self.returncode >= 0:
            return None
        try:
            return signal.Signals(-self.returncode).name
        except ValueError:
            return f"signal {-self.returncode}"

    def __str__(self) -> str:
        where = self.program if self.stage is None else f"stage {self.stage} ({self.program})"
        if self.signal_name is not None:
            msg = f"{where} terminated by {self.signal_name}"
        elif self.returncode == 0:
            msg = f"{where} failed to copy its streams"
        else:
            msg = f"{where} exited with status {self.returncode}"
        if self.cancelled:
            msg += " after cancellation"
        return msg


class ConstructionError(Exception):
    """Programmer error while building a chain; fix the calling code."""


class LinkConflictError(ConstructionError):
    """A descriptor already has the upstream or downstream being attached."""


class InvalidCommandLineError(ConstructionError):
    """A literal command line passed to ``shell()`` is malformed.

    The originating ``MalformedInputError`` is available as ``__cause__``.
    """
