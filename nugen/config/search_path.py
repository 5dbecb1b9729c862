"""File lookup across an explicit, ordered list of candidate directories."""

from __future__ import annotations

import fnmatch
import logging
import os
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

_WILDCARDS = "*?"


def split_path(value: Optional[str]) -> List[str]:
    """Split a colon separated search path, dropping empty entries."""
    if not value:
        return []
    return [entry for entry in value.split(":") if entry]


def find_file(dirs: Sequence[str], name: str) -> Optional[str]:
    """Return the first ``dir/name`` that exists, or ``None``.

    Absolute names are returned as given when they exist. With no directories
    the name is tried relative to the working directory.
    """
    if os.path.isabs(name):
        return name if os.path.exists(name) else None
    for directory in dirs or [""]:
        candidate = Path(directory) / name if directory else Path(name)
        if candidate.exists():
            return str(candidate)
    return None


def find_flux_path(dirs: Sequence[str], pattern: str) -> Tuple[Optional[str], int]:
    """Pick the directory alternative in which ``pattern`` matches most files.

    The wildcard applies to the file name part only. Returns the winning
    ``dir/pattern`` string (ties go to the first directory seen) together with
    the total number of matches over all alternatives.
    """
    path2n: Dict[str, int] = {}
    for directory in dirs or [""]:
        prefix = directory
        if prefix and not prefix.endswith("/"):
            prefix += "/"
        filepatt = prefix + pattern
        dirname, _, basename = filepatt.rpartition("/")
        search_dir = Path(os.path.expanduser(dirname)) if dirname else Path.cwd()
        if not search_dir.is_dir():
            continue
        matches = sum(
            1
            for entry in search_dir.iterdir()
            if entry.name == basename or fnmatch.fnmatchcase(entry.name, basename)
        )
        if matches:
            path2n[filepatt] = path2n.get(filepatt, 0) + matches

    pathmax: Optional[str] = None
    nfmax = 0
    for filepatt, count in path2n.items():
        if count > nfmax:
            pathmax, nfmax = filepatt, count
    nftot = sum(path2n.values())
    if len(path2n) > 1:
        logger.info("found %d files in %d distinct paths", nftot, len(path2n))
        for filepatt, count in path2n.items():
            logger.info("%d files at: %s", count, filepatt)
    return pathmax, nftot


def resolve_flux_files(dirs: Sequence[str], names: Iterable[str]) -> Tuple[List[str], int]:
    """Resolve configured flux file names into an ordered, unique list.

    A single name holding a wildcard is resolved with :func:`find_flux_path`
    and kept as a pattern; other names are looked up with :func:`find_file`.
    Returns the resolved entries and the number of files they stand for.
    """
    names = list(names)
    if len(names) == 1 and any(char in names[0] for char in _WILDCARDS):
        logger.debug("resolving flux pattern %s", names[0])
        pathmax, nftot = find_flux_path(dirs, names[0])
        return ([pathmax] if pathmax else []), nftot

    resolved: List[str] = []
    for index, name in enumerate(names):
        found = find_file(dirs, name)
        if found is None and name.startswith("/"):
            found = name
        if found is None:
            logger.debug("flux file %d %s not found", index, name)
            continue
        logger.debug("flux file %d %s found as %s", index, name, found)
        if found not in resolved:
            resolved.append(found)
    resolved.sort()
    return resolved, len(resolved)


__all__ = ["find_file", "find_flux_path", "resolve_flux_files", "split_path"]
