"""Executor configuration."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Optional

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


def _parse_bool(name: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ValueError(f"{name} must be a boolean, got {raw!r}")


@dataclass
class ExecutorConfig:
    """Options applied to every process the executor spawns.

    ``inherit_environment`` controls how a stage's ``KEY=VALUE`` overrides
    combine with the ambient environment: overlaid on top of it (default) or
    used as the complete environment.  A stage with no overrides always
    inherits the ambient environment unchanged.
    """

    inherit_environment: bool = True
    kill_on_cancel: bool = False  # SIGKILL instead of SIGTERM
    encoding: str = "utf-8"  # for text sinks and str stdin

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ExecutorConfig":
        """Build a config from ``PROCPIPE_*`` environment variables."""
        env = os.environ if environ is None else environ
        config = cls()
        if "PROCPIPE_INHERIT_ENV" in env:
            config.inherit_environment = _parse_bool(
                "PROCPIPE_INHERIT_ENV", env["PROCPIPE_INHERIT_ENV"]
            )
        if "PROCPIPE_KILL_ON_CANCEL" in env:
            config.kill_on_cancel = _parse_bool(
                "PROCPIPE_KILL_ON_CANCEL", env["PROCPIPE_KILL_ON_CANCEL"]
            )
        if env.get("PROCPIPE_ENCODING"):
            config.encoding = env["PROCPIPE_ENCODING"]
        return config
