"""Shell-line parser — turn ``"FOO=1 prog $FOO"`` into a PipedCommand.

This is not a shell.  The line is split with POSIX rules
(``shlex``), leading ``KEY=VALUE`` words become environment overrides, and
``$NAME`` / ``${NAME}`` references in the remaining arguments are expanded.
Expansion happens after splitting, so quoting does not protect anything::

    parse_shell("echo '$HOME'")   # -> echo /home/me   (a real shell prints $HOME)

That mismatch is intended.
"""

from __future__ import annotations

import logging
import os
import shlex
from collections.abc import Mapping
from typing import Callable, Optional, Union

from .command import PipedCommand
from .errors import InvalidCommandLineError, MalformedInputError

logger = logging.getLogger(__name__)

Lookup = Union[Callable[[str], Optional[str]], Mapping[str, str]]

# Single-character names: positional and special shell parameters.
_SPECIAL_NAMES = frozenset("*#$@!?-0123456789")


# ---------------------------------------------------------------------------
# Tokenizing
# ---------------------------------------------------------------------------


def split_line(line: str) -> list[str]:
    """Split *line* into words, raising MalformedInputError on bad quoting.

    An unquoted ``#`` at the start of a word begins a comment that runs to
    the end of the line; a ``#`` inside a word is literal.
    """
    lexer = shlex.shlex(line, posix=True)
    lexer.whitespace_split = True
    lexer.commenters = ""
    words: list[str] = []
    try:
        while True:
            pos = lexer.instream.tell()
            rest = line[pos:].lstrip(lexer.whitespace)
            if rest.startswith("#"):
                newline = rest.find("\n")
                if newline == -1:
                    break
                lexer.instream.seek(len(line) - len(rest) + newline)
                continue
            word = lexer.get_token()
            if word is None:
                break
            words.append(word)
    except ValueError as exc:
        raise MalformedInputError(f"cannot tokenize {line!r}: {exc}", line) from exc
    return words


def split_assignment(word: str) -> tuple[str, str] | None:
    """Return ``(key, value)`` if *word* looks like ``KEY=VALUE``, else None."""
    key, sep, value = word.partition("=")
    if not sep or not key:
        return None
    return key, value


# ---------------------------------------------------------------------------
# Expansion
# ---------------------------------------------------------------------------


def _is_name_char(c: str) -> bool:
    return c == "_" or (c.isascii() and c.isalnum())


def _shell_name(s: str) -> tuple[str, int]:
    """Read the variable name following a ``$``.

    Returns ``(name, consumed)``.  An empty name with ``consumed > 0`` is bad
    syntax whose characters are dropped; ``("", 0)`` means the ``$`` is not
    followed by a name and stays literal.
    """
    if s[0] == "{":
        if len(s) > 2 and s[1] in _SPECIAL_NAMES and s[2] == "}":
            return s[1], 3
        end = s.find("}", 1)
        if end == -1:
            return "", 1
        if end == 1:
            return "", 2
        return s[1:end], end + 1
    if s[0] in _SPECIAL_NAMES:
        return s[0], 1
    i = 0
    while i < len(s) and _is_name_char(s[i]):
        i += 1
    return s[:i], i


def expand(text: str, mapping: Callable[[str], str]) -> str:
    """Replace ``$NAME`` and ``${NAME}`` in *text* with ``mapping(name)``.

    Single pass: substituted values are never expanded again.
    """
    parts: list[str] = []
    last = 0
    j = 0
    while j < len(text):
        if text[j] == "$" and j + 1 < len(text):
            parts.append(text[last:j])
            name, width = _shell_name(text[j + 1 :])
            if name:
                parts.append(mapping(name))
            elif width == 0:
                parts.append("$")
            j += width
            last = j + 1
        j += 1
    parts.append(text[last:])
    return "".join(parts)


def _ambient(lookup: Optional[Lookup]) -> Callable[[str], Optional[str]]:
    if lookup is None:
        return os.environ.get
    if isinstance(lookup, Mapping):
        return lookup.get
    return lookup


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def parse_shell(line: str, lookup: Optional[Lookup] = None) -> PipedCommand:
    """Parse one shell-like command line into a PipedCommand.

    Args:
        line: e.g. ``"GOOS=linux go build"`` or
            ``"docker run -v $HOME/.aws:/root/.aws:ro ubuntu"``.
        lookup: ambient variable source used after the line's own
            assignments; a callable or a mapping.  Defaults to ``os.environ``.

    Raises:
        MalformedInputError: the line cannot be tokenized, or nothing but
            assignments remain.
    """
    words = split_line(line)

    env: list[str] = []
    assigned: dict[str, str] = {}
    while words:
        pair = split_assignment(words[0])
        if pair is None:
            break
        env.append(words.pop(0))
        assigned[pair[0]] = pair[1]

    if not words:
        raise MalformedInputError(f"no command given in {line!r}", line)

    ambient = _ambient(lookup)

    def resolve(name: str) -> str:
        if name in assigned:
            return assigned[name]
        return ambient(name) or ""

    program, *raw_args = words
    args = [expand(arg, resolve) for arg in raw_args]
    logger.debug("parsed %r -> program=%r args=%r env=%r", line, program, args, env)
    return PipedCommand(program, *args).with_env(env)


def shell(line: str, lookup: Optional[Lookup] = None) -> PipedCommand:
    """Fail-fast variant of :func:`parse_shell` for literal lines in code.

    A malformed line is a bug in the caller, so it raises
    ``InvalidCommandLineError`` (a ``ConstructionError``) rather than a
    ``PipeError``.
    """
    try:
        return parse_shell(line, lookup)
    except MalformedInputError as exc:
        raise InvalidCommandLineError(str(exc)) from exc
