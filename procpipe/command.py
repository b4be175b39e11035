"""PipedCommand — one stage of a pipeline and the links between stages."""

from __future__ import annotations

import io
import shlex
import sys
from typing import Any, Iterable, Optional

from .config import ExecutorConfig
from .context import CancelScope
from .errors import LinkConflictError


class PipedCommand:
    """A command stage that can be linked into an ``a | b | c`` chain.

    Build via direct construction or from shell lines, then chain
    fluently; every linking call returns the new tail::

        tail = (
            shell("git log --oneline")
            .shell("grep fix")
            .pipe("wc", "-l")
        )
        tail.run()

    The tail is the entry point for both further linking and execution.
    Its ``dir`` is the working directory of *every* stage when executed;
    the ``dir`` of earlier stages is ignored.
    """

    def __init__(self, program: str, *args: str) -> None:
        self._program = program
        self._args = tuple(args)
        self.env: tuple[str, ...] = ()
        self.dir = ""
        self._upstream: PipedCommand | None = None
        self._downstream: PipedCommand | None = None

    # ------------------------------------------------------------------
    # Fields
    # ------------------------------------------------------------------

    @property
    def program(self) -> str:
        return self._program

    @property
    def args(self) -> tuple[str, ...]:
        return self._args

    @property
    def upstream(self) -> Optional["PipedCommand"]:
        """The stage whose output feeds this one, if any."""
        return self._upstream

    @property
    def downstream(self) -> Optional["PipedCommand"]:
        """The stage consuming this one's output, if any."""
        return self._downstream

    def with_env(self, env: Iterable[str]) -> "PipedCommand":
        """Set ``KEY=VALUE`` environment overrides and return ``self``."""
        self.env = tuple(env)
        return self

    def with_dir(self, path: str) -> "PipedCommand":
        """Set the working directory and return ``self``."""
        self.dir = path
        return self

    # ------------------------------------------------------------------
    # Linking
    # ------------------------------------------------------------------

    def pipe_to(self, into: "PipedCommand") -> "PipedCommand":
        """Feed this stage's output into *into* and return *into*.

        Raises LinkConflictError, without changing either stage, if this
        stage already has a downstream or *into* already has an upstream.
        """
        if into is self:
            raise LinkConflictError(f"cannot pipe {self.program!r} into itself")
        if self._downstream is not None:
            raise LinkConflictError(
                f"{self.program!r} already pipes to {self._downstream.program!r}"
            )
        if into._upstream is not None:
            raise LinkConflictError(
                f"{into.program!r} already reads from {into._upstream.program!r}"
            )
        into._upstream = self
        self._downstream = into
        return into

    def pipe(self, program: str, *args: str) -> "PipedCommand":
        """Append a bare ``program args...`` stage and return it."""
        return self.pipe_to(PipedCommand(program, *args))

    def shell(self, line: str) -> "PipedCommand":
        """Parse *line* (fail-fast) and append it as the next stage."""
        from .shell import shell

        return self.pipe_to(shell(line))

    def stages(self) -> list["PipedCommand"]:
        """Return every stage up to and including this one, first to last."""
        chain: list[PipedCommand] = []
        current: PipedCommand | None = self
        while current is not None:
            chain.append(current)
            current = current._upstream
        chain.reverse()
        return chain

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def execute(
        self,
        scope: Optional[CancelScope] = None,
        stdin: Any = None,
        stdout: Any = None,
        stderr: Any = None,
        config: Optional[ExecutorConfig] = None,
    ) -> None:
        """Run the chain ending at this stage.  See :func:`procpipe.executor.execute`."""
        from .executor import execute

        execute(self, scope, stdin, stdout, stderr, config=config)

    def run(
        self,
        scope: Optional[CancelScope] = None,
        config: Optional[ExecutorConfig] = None,
    ) -> None:
        """Run with no input, writing to the current ``sys.stdout`` / ``sys.stderr``."""
        self.execute(scope, None, sys.stdout, sys.stderr, config=config)

    def output(
        self,
        scope: Optional[CancelScope] = None,
        stdin: Any = None,
        config: Optional[ExecutorConfig] = None,
    ) -> bytes:
        """Run the chain and return what its last stage wrote to stdout."""
        buf = io.BytesIO()
        self.execute(scope, stdin, buf, sys.stderr, config=config)
        return buf.getvalue()

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def _render(self) -> str:
        return shlex.join([*self.env, self._program, *self._args])

    def __str__(self) -> str:
        return " | ".join(stage._render() for stage in self.stages())

    def __repr__(self) -> str:
        return f"PipedCommand({self._render()!r})"


def new_piped(program: str, *args: str) -> PipedCommand:
    """Construct a bare single-stage command."""
    return PipedCommand(program, *args)
