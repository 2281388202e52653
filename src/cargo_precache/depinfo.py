# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Build-output filename conventions and dependency-info (.d) files.

Every artifact Cargo writes under ``build/``, ``deps/`` and ``.fingerprint/``
is named ``<logical name>-<metadata hash>[.<ext>]``. Dependency-info files
are Makefile fragments whose first line is ``<output>: <input> <input> ...``,
where a space inside a path is written as ``\\ ``.
"""

import logging
from pathlib import Path
from typing import List, Optional, Tuple

from cargo_precache.errors import CacheReadError, DepInfoParseError

logger = logging.getLogger(__name__)


def split_name_hash(stem: str) -> Optional[Tuple[str, str]]:
    """Split ``name-hash`` on the last hyphen.

    Returns:
        (name, hash), or None if stem contains no hyphen.
    """
    name, sep, meta_hash = stem.rpartition("-")
    if not sep:
        return None
    return name, meta_hash


def extract_meta_hash(stem: str) -> str:
    """Return the metadata hash embedded in a file stem.

    A stem with no hyphen is returned unchanged.
    """
    parts = split_name_hash(stem)
    if parts is None:
        return stem
    return parts[1]


def meta_hash_of(path: Path) -> str:
    """Metadata hash of a build-output entry, taken from its stem."""
    return extract_meta_hash(path.stem)


def parse_dep_paths(line: str) -> List[str]:
    """Split the right-hand side of a dep-info rule into paths.

    A piece ending in a backslash is an escaped space and is joined with the
    following piece.
    """
    paths: List[str] = []
    pending: Optional[str] = None
    for piece in line.split(" "):
        if pending is not None:
            piece = pending + " " + piece
            pending = None
        if piece.endswith("\\"):
            pending = piece[:-1]
            continue
        if piece:
            paths.append(piece)
    if pending is not None:
        paths.append(pending)
    return paths


def read_dep_paths(dep_file: Path) -> List[str]:
    """Return the input paths on the first line of a dep-info file.

    Raises:
        CacheReadError: If the file cannot be read.
        DepInfoParseError: If the first line is not UTF-8 or has no ``: `` separator.
    """
    try:
        with open(dep_file, encoding="utf-8") as f:
            first_line = f.readline().rstrip("\r\n")
    except OSError as e:
        raise CacheReadError(f"Cannot read dependency-info file {dep_file}: {e}") from e
    except UnicodeDecodeError as e:
        raise DepInfoParseError(f"First line of {dep_file} is not valid UTF-8: {e}") from e

    _, sep, rest = first_line.partition(": ")
    if not sep:
        raise DepInfoParseError(f"No ': ' separator on first line of {dep_file}")
    return parse_dep_paths(rest)


def read_first_dep(dep_file: Path) -> Optional[str]:
    """Return the first input path of a dep-info file, or None if it lists none."""
    paths = read_dep_paths(dep_file)
    if not paths:
        logger.debug(f"Dependency-info file {dep_file} lists no inputs")
        return None
    return paths[0]
