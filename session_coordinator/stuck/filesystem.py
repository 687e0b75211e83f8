"""
Project tree scanning for the no-progress heuristic.
"""

import asyncio
import logging
import os
from typing import Iterable, Optional


logger = logging.getLogger(__name__)

DEFAULT_IGNORED_DIRS = (
    "node_modules",
    ".git",
    "dist",
    "build",
    ".next",
    "coverage",
    ".agent-memory",
    ".agent-artifacts",
)


def latest_modification_time(root: str, ignored_dirs: Iterable[str] = DEFAULT_IGNORED_DIRS) -> Optional[float]:
    """
    Find the most recent file modification time under a directory.

    Ignored directory names are pruned at every depth. Files that vanish
    or cannot be stat'ed during the walk are skipped.

    Args:
        root: Directory to scan
        ignored_dirs: Directory names to skip

    Returns:
        Latest mtime as a POSIX timestamp, or None if no file was found
    """
    ignored = set(ignored_dirs)
    latest: Optional[float] = None

    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = [d for d in dirnames if d not in ignored]
        for filename in filenames:
            try:
                mtime = os.stat(os.path.join(dirpath, filename)).st_mtime
            except OSError:
                continue
            if latest is None or mtime > latest:
                latest = mtime

    return latest


async def latest_modification_time_async(
    root: str,
    ignored_dirs: Iterable[str] = DEFAULT_IGNORED_DIRS,
) -> Optional[float]:
    """Run :func:`latest_modification_time` in a worker thread."""
    return await asyncio.to_thread(latest_modification_time, root, tuple(ignored_dirs))
