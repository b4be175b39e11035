"""Process — one external command with redirectable standard streams.

Life cycle is configure → ``start()`` → ``wait()``:

- ``stdin`` / ``stdout`` / ``stderr`` are plain attributes bound before
  ``start()``.  ``None`` means the null device.  Anything with a working
  ``fileno()`` is handed to the child directly; any other file-like object
  (``io.BytesIO``, pytest's capture streams, ...) is copied by a helper
  thread.  ``stdin`` may also be ``bytes`` or ``str``.
- ``stdout_pipe()`` creates an OS pipe before start and returns its read
  end, so another Process can consume this one's output.
- ``wait()`` reaps the child, joins the copy threads, releases every
  descriptor this object owns, and raises ``StageFailureError`` on failure.

A Process bound to a ``CancelScope`` is terminated (or killed, see
``ExecutorConfig.kill_on_cancel``) when the scope is cancelled.
"""

from __future__ import annotations

import codecs
import io
import logging
import os
import shlex
import subprocess
import threading
from typing import Any, BinaryIO, Callable, Iterable, Optional

from .config import ExecutorConfig
from .context import CancelScope
from .errors import CancelledError, StageFailureError

logger = logging.getLogger(__name__)

_CHUNK = 64 * 1024


def _fileno(stream: Any) -> int | None:
    """Return the OS descriptor behind *stream*, or None if it has none."""
    try:
        return stream.fileno()
    except (AttributeError, OSError, ValueError):
        return None


class Process:
    """A single external command, started once and waited once."""

    def __init__(
        self,
        program: str,
        args: Iterable[str] = (),
        *,
        cwd: str = "",
        env: Iterable[str] = (),
        scope: Optional[CancelScope] = None,
        config: Optional[ExecutorConfig] = None,
    ) -> None:
        self.program = program
        self.args = tuple(args)
        self.cwd = cwd
        self.env = tuple(env)
        self.scope = scope
        self.config = config or ExecutorConfig()

        self.stdin: Any = None
        self.stdout: Any = None
        self.stderr: Any = None
        self.returncode: int | None = None

        self._popen: subprocess.Popen | None = None
        self._pipe_reader: BinaryIO | None = None
        self._pipe_writer: BinaryIO | None = None
        self._copiers: list[threading.Thread] = []
        self._copy_errors: list[BaseException] = []
        self._cancel_handle: int | None = None
        self._signalled = False
        self._waited = False

    @property
    def pid(self) -> int | None:
        return None if self._popen is None else self._popen.pid

    def __str__(self) -> str:
        return shlex.join([self.program, *self.args])

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def stdout_pipe(self) -> BinaryIO:
        """Return a reader connected to this process's stdout once started."""
        if self._popen is not None:
            raise RuntimeError(f"{self.program}: stdout_pipe() after start()")
        if self.stdout is not None:
            raise RuntimeError(f"{self.program}: stdout already set")
        read_fd, write_fd = os.pipe()
        self._pipe_reader = os.fdopen(read_fd, "rb", buffering=0)
        self._pipe_writer = os.fdopen(write_fd, "wb", buffering=0)
        self.stdout = self._pipe_writer
        return self._pipe_reader

    def _environ(self) -> dict[str, str] | None:
        if not self.env:
            return None
        environ = dict(os.environ) if self.config.inherit_environment else {}
        for entry in self.env:
            key, sep, value = entry.partition("=")
            if not sep or not key:
                logger.warning(
                    "Ignoring malformed environment entry %r for %s", entry, self.program
                )
                continue
            environ[key] = value
        return environ

    @staticmethod
    def _redirect(stream: Any, *, source: bool) -> tuple[Any, Any]:
        """Map a bound stream to ``(popen_argument, object_to_copy_or_None)``."""
        if stream is None:
            return subprocess.DEVNULL, None
        if source and isinstance(stream, (bytes, bytearray, str)):
            return subprocess.PIPE, stream
        fd = _fileno(stream)
        if fd is None:
            return subprocess.PIPE, stream
        if not source and hasattr(stream, "flush"):
            # keep anything Python buffered ahead of the child's output
            stream.flush()
        return fd, None

    # ------------------------------------------------------------------
    # Start
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Spawn the child.

        Raises the underlying ``OSError`` if spawning fails, or
        ``CancelledError`` if the scope is already cancelled.  Either way
        every descriptor owned by this object is released.
        """
        if self._popen is not None:
            raise RuntimeError(f"{self.program}: already started")
        try:
            if self.scope is not None and self.scope.cancelled:
                raise CancelledError(self.scope.reason or "cancelled")
            stdin_arg, feed = self._redirect(self.stdin, source=True)
            stdout_arg, out_sink = self._redirect(self.stdout, source=False)
            stderr_arg, err_sink = self._redirect(self.stderr, source=False)
            self._popen = subprocess.Popen(
                [self.program, *self.args],
                stdin=stdin_arg,
                stdout=stdout_arg,
                stderr=stderr_arg,
                cwd=self.cwd or None,
                env=self._environ(),
            )
        except Exception:
            self.close()
            raise

        # The child holds its own copy of the write end now.
        if self._pipe_writer is not None:
            self._pipe_writer.close()
        logger.debug("Started %s (pid %d)", self, self._popen.pid)

        if feed is not None:
            self._spawn_copier(self._feed, feed, self._popen.stdin)
        if out_sink is not None:
            self._spawn_copier(self._drain, self._popen.stdout, out_sink)
        if err_sink is not None:
            self._spawn_copier(self._drain, self._popen.stderr, err_sink)

        if self.scope is not None:
            self._cancel_handle = self.scope.on_cancel(self._on_cancel)

    def _spawn_copier(self, target: Callable[[Any, Any], None], src: Any, dst: Any) -> None:
        t = threading.Thread(
            target=target, args=(src, dst), daemon=True, name=f"procpipe-copy-{self.program}"
        )
        self._copiers.append(t)
        t.start()

    def _feed(self, src: Any, dst: BinaryIO) -> None:
        """Copy *src* into the child's stdin, then close it."""
        encoding = self.config.encoding
        try:
            if isinstance(src, str):
                dst.write(src.encode(encoding))
            elif isinstance(src, (bytes, bytearray)):
                dst.write(src)
            else:
                while True:
                    chunk = src.read(_CHUNK)
                    if not chunk:
                        break
                    if isinstance(chunk, str):
                        chunk = chunk.encode(encoding)
                    dst.write(chunk)
        except BrokenPipeError:
            pass  # child exited without reading all of its input
        except Exception as exc:
            self._copy_errors.append(exc)
        finally:
            try:
                dst.close()
            except BrokenPipeError:
                pass

    def _drain(self, src: BinaryIO, sink: Any) -> None:
        """Copy a child output pipe into *sink* until EOF.

        After a sink error the pipe is still read to EOF (and discarded) so
        the child never blocks on a full pipe.
        """
        decoder = None
        if isinstance(sink, io.TextIOBase):
            decoder = codecs.getincrementaldecoder(self.config.encoding)(errors="replace")
        failed = False
        try:
            while True:
                chunk = src.read1(_CHUNK)
                if not chunk:
                    break
                if failed:
                    continue
                try:
                    sink.write(decoder.decode(chunk) if decoder else chunk)
                except Exception as exc:
                    self._copy_errors.append(exc)
                    failed = True
            if not failed:
                if decoder is not None:
                    sink.write(decoder.decode(b"", final=True))
                if hasattr(sink, "flush"):
                    sink.flush()
        except Exception as exc:
            self._copy_errors.append(exc)
        finally:
            src.close()

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def _on_cancel(self) -> None:
        popen = self._popen
        if popen is None or popen.poll() is not None:
            return
        self._signalled = True
        logger.debug("Cancelling %s (pid %d)", self, popen.pid)
        try:
            if self.config.kill_on_cancel:
                popen.kill()
            else:
                popen.terminate()
        except ProcessLookupError:
            pass  # exited between poll() and the signal

    # ------------------------------------------------------------------
    # Wait
    # ------------------------------------------------------------------

    def wait(self) -> int:
        """Block until the child exits and its streams are fully copied.

        Returns 0 on success.  Raises ``StageFailureError`` if the child
        exited non-zero, died from a signal, or a stream copy failed.
        """
        if self._popen is None:
            raise RuntimeError(f"{self.program}: wait() before start()")
        if self._waited:
            raise RuntimeError(f"{self.program}: wait() called twice")
        self._waited = True
        try:
            returncode = self._popen.wait()
            for t in self._copiers:
                t.join()
        finally:
            if self.scope is not None:
                self.scope.remove_callback(self._cancel_handle)
            self.close()

        self.returncode = returncode
        logger.debug("%s exited with status %d", self, returncode)
        if returncode != 0:
            raise StageFailureError(self.program, returncode, cancelled=self._signalled)
        if self._copy_errors:
            raise StageFailureError(self.program, returncode) from self._copy_errors[0]
        return returncode

    def close(self) -> None:
        """Release the pipe descriptors this object owns.  Idempotent."""
        for f in (self._pipe_writer, self._pipe_reader):
            if f is not None:
                f.close()
