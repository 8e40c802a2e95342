"""Parallel source-tree scanning.

The root directory is listed once; every top-level subdirectory becomes an
independent walk submitted to a bounded thread pool.  Results are merged and
sorted by relative path, so the entry order never depends on which worker
finished first.
"""

from __future__ import annotations

import logging
import os
import stat
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

from zencore.errors import NoFilesFound
from zencore.models import ScanWarning, SourceEntry, resolve_thread_count

logger = logging.getLogger(__name__)


@dataclass
class ScanResult:
    """Ordered entries plus the nodes that were skipped."""

    root: str
    entries: list[SourceEntry] = field(default_factory=list)
    warnings: list[ScanWarning] = field(default_factory=list)

    @property
    def total_bytes(self) -> int:
        return sum(e.size_bytes for e in self.entries)

    def full_path(self, entry: SourceEntry) -> str:
        """Absolute on-disk location of *entry*."""
        return os.path.join(self.root, *entry.relative_path.split("/"))


def _relative(root: str, path: str) -> str:
    return os.path.relpath(path, root).replace(os.sep, "/")


def _inspect_file(
    root: str, path: str
) -> tuple[SourceEntry | None, ScanWarning | None]:
    """Stat and probe one candidate file.

    Symlinks to files are followed; their target's bytes are archived under
    the link's own name.
    """
    rel = _relative(root, path)
    try:
        st = os.stat(path)
    except FileNotFoundError:
        if os.path.islink(path):
            return None, ScanWarning(rel, "dangling symlink")
        return None, ScanWarning(rel, "vanished during scan")
    except OSError as exc:
        return None, ScanWarning(rel, exc.strerror or str(exc))

    if stat.S_ISDIR(st.st_mode):
        return None, ScanWarning(rel, "symlinked directory not followed")
    if not stat.S_ISREG(st.st_mode):
        return None, ScanWarning(rel, "not a regular file")

    try:
        with open(path, "rb"):
            pass
    except OSError as exc:
        return None, ScanWarning(rel, exc.strerror or str(exc))

    return SourceEntry(rel, st.st_size, st.st_mtime), None


def _walk_subtree(
    root: str, top: str
) -> tuple[list[SourceEntry], list[ScanWarning]]:
    """Walk *top* without following directory symlinks."""
    entries: list[SourceEntry] = []
    warnings: list[ScanWarning] = []

    def _on_error(exc: OSError) -> None:
        where = exc.filename if exc.filename else top
        warnings.append(ScanWarning(_relative(root, where), exc.strerror or str(exc)))

    for dirpath, dirnames, filenames in os.walk(top, onerror=_on_error):
        for name in dirnames:
            full = os.path.join(dirpath, name)
            if os.path.islink(full):
                warnings.append(
                    ScanWarning(_relative(root, full), "symlinked directory not followed")
                )
        for name in filenames:
            entry, warning = _inspect_file(root, os.path.join(dirpath, name))
            if entry is not None:
                entries.append(entry)
            if warning is not None:
                warnings.append(warning)
    return entries, warnings


def scan_source(source_root: str, thread_count: int = 0) -> ScanResult:
    """Collect every readable regular file under *source_root*.

    Parameters
    ----------
    source_root : str
        Directory to back up.
    thread_count : int
        Worker budget; ``0`` uses one worker per logical CPU.

    Returns
    -------
    ScanResult
        Entries sorted by relative path and the accumulated warnings.

    Raises
    ------
    NoFilesFound
        If *source_root* is not a directory, or no readable file remains.
    """
    root = os.path.abspath(source_root)
    if not os.path.isdir(root):
        raise NoFilesFound(f"Source directory does not exist: {source_root}")

    workers = resolve_thread_count(thread_count)
    result = ScanResult(root=root)
    subtrees: list[str] = []

    try:
        with os.scandir(root) as it:
            top_level = sorted(it, key=lambda d: d.name)
    except OSError as exc:
        raise NoFilesFound(f"Cannot list source directory {source_root}: {exc}") from exc

    for dent in top_level:
        if dent.is_dir(follow_symlinks=False):
            subtrees.append(dent.path)
            continue
        entry, warning = _inspect_file(root, dent.path)
        if entry is not None:
            result.entries.append(entry)
        if warning is not None:
            result.warnings.append(warning)

    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="zencore-scan") as pool:
        for entries, warnings in pool.map(lambda top: _walk_subtree(root, top), subtrees):
            result.entries.extend(entries)
            result.warnings.extend(warnings)

    unique = {e.relative_path: e for e in result.entries}
    result.entries = sorted(unique.values(), key=lambda e: e.relative_path)
    result.warnings.sort(key=lambda w: w.path)

    for warning in result.warnings:
        logger.warning("Skipped %s", warning)

    if not result.entries:
        raise NoFilesFound(f"No readable files found under {source_root}")

    logger.debug(
        "Scanned %d file(s), %d byte(s), %d warning(s) using %d worker(s)",
        len(result.entries), result.total_bytes, len(result.warnings), workers,
    )
    return result
