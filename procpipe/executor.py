"""Pipeline executor — start every stage, then reap them in reverse.

Ordering rules:

- Stages start strictly first-to-last.  If stage *k* cannot start, the
  execution scope is cancelled, stages ``0..k-1`` are waited on so nothing
  leaks, and ``StartFailureError`` is raised.  Stages after *k* never start.
- Stages are waited strictly last-to-first.  Waiting on a producer before
  its consumer has drained the pipe between them can deadlock on a full
  pipe buffer.
- Every stage is waited even after a failure; the first failure cancels the
  scope so the remaining stages wind down.
- The reported failure is the one from the earliest stage in pipeline
  order, since an upstream failure is usually the root cause.
"""

from __future__ import annotations

import logging
from typing import Any, BinaryIO, Callable, Optional

from .command import PipedCommand
from .config import ExecutorConfig
from .context import CancelScope
from .errors import StageFailureError, StartFailureError
from .process import Process

logger = logging.getLogger(__name__)

ProcessFactory = Callable[..., Process]


def execute(
    tail: PipedCommand,
    scope: Optional[CancelScope] = None,
    stdin: Any = None,
    stdout: Any = None,
    stderr: Any = None,
    *,
    config: Optional[ExecutorConfig] = None,
    process_factory: ProcessFactory = Process,
) -> None:
    """Run the chain ending at *tail*.

    Args:
        tail: last stage of the chain; its ``dir`` is used for every stage.
        scope: cancelling it terminates every stage still running.
        stdin: input of the first stage (``None`` = null device).
        stdout: output of the last stage (``None`` = null device).
        stderr: shared by all stages; their output interleaves.
        config: process options, see :class:`ExecutorConfig`.
        process_factory: builds one Process per stage (tests inject fakes).

    Raises:
        StartFailureError: a stage could not be spawned.
        StageFailureError: a stage failed; the earliest failing stage wins.
    """
    config = config or ExecutorConfig()
    stages = tail.stages()

    with CancelScope(scope) as exec_scope:
        procs: list[Process] = []
        for cmd in stages:
            proc = process_factory(
                cmd.program,
                cmd.args,
                cwd=tail.dir,
                env=cmd.env,
                scope=exec_scope,
                config=config,
            )
            proc.stderr = stderr
            procs.append(proc)

        # readers[i] carries stage i's output to stage i + 1
        readers: list[Optional[BinaryIO]] = [None] * len(procs)
        for idx, proc in enumerate(procs):
            if idx == 0:
                proc.stdin = stdin
            else:
                readers[idx - 1] = procs[idx - 1].stdout_pipe()
                proc.stdin = readers[idx - 1]
        procs[-1].stdout = stdout

        logger.debug("Executing %d stage(s): %s", len(procs), tail)

        for idx, proc in enumerate(procs):
            try:
                proc.start()
            except Exception as exc:
                logger.debug("Stage %d (%s) failed to start: %s", idx, proc, exc)
                exec_scope.cancel()
                _reap_started(procs[:idx])
                for unstarted in procs[idx + 1 :]:
                    unstarted.close()
                raise StartFailureError(idx, proc.program) from exc
            if idx > 0:
                # The consumer holds its own copy; dropping ours lets the
                # producer see SIGPIPE if the consumer exits early.
                readers[idx - 1].close()

        first_failure: StageFailureError | None = None
        for idx in range(len(procs) - 1, -1, -1):
            try:
                procs[idx].wait()
            except StageFailureError as exc:
                exc.stage = idx
                logger.debug("Stage %d failed: %s", idx, exc)
                # Waits run last-to-first: a later hit is an earlier stage.
                first_failure = exc
                exec_scope.cancel()
            except BaseException:
                exec_scope.cancel()
                _reap_started(procs[:idx])
                raise

    if first_failure is not None:
        raise first_failure


def _reap_started(procs: list[Process]) -> None:
    """Wait on already-started stages during teardown, discarding results."""
    for proc in procs:
        try:
            proc.wait()
        except StageFailureError as exc:
            logger.debug("Discarding outcome of %s during teardown: %s", proc, exc)
