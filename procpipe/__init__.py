"""Build and run chains of external processes, like ``a | b | c`` without a shell.

Public surface::

    from procpipe import (
        PipedCommand,
        new_piped,
        shell,
        parse_shell,
        execute,
        CancelScope,
        background,
        ExecutorConfig,
        PipeError,
        MalformedInputError,
        StartFailureError,
        StageFailureError,
        CancelledError,
        ConstructionError,
        LinkConflictError,
        InvalidCommandLineError,
    )
"""

from .command import PipedCommand, new_piped
from .config import ExecutorConfig
from .context import CancelScope, background
from .errors import (
    CancelledError,
    ConstructionError,
    InvalidCommandLineError,
    LinkConflictError,
    MalformedInputError,
    PipeError,
    StageFailureError,
    StartFailureError,
)
from .executor import execute
from .process import Process
from .shell import parse_shell, shell

__version__ = "0.1.0"
__all__ = [
    "PipedCommand",
    "new_piped",
    "shell",
    "parse_shell",
    "execute",
    "Process",
    "CancelScope",
    "background",
    "ExecutorConfig",
    # Errors
    "PipeError",
    "MalformedInputError",
    "StartFailureError",
    "StageFailureError",
    "CancelledError",
    "ConstructionError",
    "LinkConflictError",
    "InvalidCommandLineError",
]
