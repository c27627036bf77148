"""Resolve source globs the way front-end task runners do.

Patterns are posix-style and relative to the project root. They support
``**`` (any depth), brace sets (``*.{jpg,png}``) and exclusions prefixed with
``!``. Every positive pattern has a *base*: the leading directories before
the first wildcard. Output paths keep the part of the source path below its
base, so ``src/views/blog/post.html`` matched by ``src/views/**/*.html``
lands at ``<dest>/blog/post.html``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from wcmatch import glob as wcglob

from .errors import SourceNotFoundError

GLOB_FLAGS = wcglob.GLOBSTAR | wcglob.BRACE | wcglob.NEGATE

_MAGIC_RE = re.compile(r"[*?\[\]{}]")


@dataclass(frozen=True)
class GlobMatch:
    """One resolved source file and the base directory of the glob that found it."""
    path: Path
    base: Path

    @property
    def relative(self) -> str:
        return self.path.relative_to(self.base).as_posix()


def is_negated(pattern: str) -> bool:
    return pattern.startswith("!")


def glob_base(pattern: str) -> str:
    """Return the non-magic directory prefix of *pattern* ('' for the root)."""
    parts = pattern.lstrip("!").split("/")
    base: list[str] = []
    for part in parts[:-1]:
        if _MAGIC_RE.search(part):
            break
        base.append(part)
    return "/".join(p for p in base if p not in ("", "."))


def resolve_globs(patterns: Iterable[str], root: Path, *, must_exist: bool = True) -> list[GlobMatch]:
    """Resolve *patterns* against *root*.

    Files come out grouped by positive pattern (in the order given) and in
    lexical order within each group; a file matched by two patterns is
    reported once, with the base of the first.

    Raises:
        SourceNotFoundError: If *must_exist* and a positive pattern's base
            directory is missing.
    """
    patterns = list(patterns)
    negatives = [p for p in patterns if is_negated(p)]
    root = root.resolve()

    seen: set[Path] = set()
    matches: list[GlobMatch] = []
    for pattern in patterns:
        if is_negated(pattern):
            continue
        base = root / glob_base(pattern) if glob_base(pattern) else root
        if not base.is_dir():
            if must_exist:
                raise SourceNotFoundError(pattern, base)
            continue
        found = wcglob.glob([pattern, *negatives], flags=GLOB_FLAGS, root_dir=str(root))
        for rel in sorted(found):
            path = (root / rel).resolve()
            if path in seen or not path.is_file():
                continue
            seen.add(path)
            matches.append(GlobMatch(path=path, base=base))
    return matches


def matches_any(relative_path: str, patterns: Iterable[str]) -> bool:
    """Return True if the project-relative *relative_path* matches the glob list."""
    patterns = list(patterns)
    if not any(not is_negated(p) for p in patterns):
        return False
    return wcglob.globmatch(relative_path, patterns, flags=GLOB_FLAGS)
