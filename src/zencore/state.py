"""Persistent index of produced archives.

The whole store is one JSON document::

    {"version": 1, "archives": {"<name>": {<ArchiveRecord fields>}, ...}}

It is loaded fully into memory and rewritten on every mutation by writing a
temporary file in the same directory, fsyncing it, and renaming it over the
old one.  Readers therefore see either the previous or the new document.

Invariants:
    - Archive names are unique keys
    - A missing state file is an empty store; a corrupt one is an empty store
      plus a warning, never an exception escaping :meth:`StateStore.load`

Known limitation:
    - Two processes writing at the same time are not serialised; the last
      rename wins.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from collections.abc import Iterator
from pathlib import Path

from zencore.errors import ArchiveNotFound, InvalidParameter, StateStoreCorrupt
from zencore.models import ArchiveRecord

logger = logging.getLogger(__name__)

STATE_VERSION = 1


def _parse(raw: bytes) -> dict[str, ArchiveRecord]:
    try:
        doc = json.loads(raw.decode("utf-8"))
        if not isinstance(doc, dict) or not isinstance(doc.get("archives"), dict):
            raise StateStoreCorrupt("missing 'archives' mapping")
        records: dict[str, ArchiveRecord] = {}
        for name, data in doc["archives"].items():
            record = ArchiveRecord.from_dict(data)
            if record.name != name:
                raise StateStoreCorrupt(f"record key {name!r} does not match {record.name!r}")
            records[name] = record
        return records
    except StateStoreCorrupt:
        raise
    except (ValueError, KeyError, TypeError, AttributeError, InvalidParameter) as exc:
        raise StateStoreCorrupt(str(exc)) from exc


class StateStore:
    """Explicit, load-at-startup / flush-on-mutation archive index."""

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self.path = Path(path)
        self._records: dict[str, ArchiveRecord] = {}

    @classmethod
    def load(cls, path: str | os.PathLike[str]) -> StateStore:
        """Read *path*; unreadable or corrupt files yield an empty store."""
        store = cls(path)
        store.reload()
        return store

    def reload(self) -> None:
        try:
            raw = self.path.read_bytes()
        except FileNotFoundError:
            self._records = {}
            return
        except OSError as exc:
            logger.warning("State file %s is unreadable (%s); starting empty", self.path, exc)
            self._records = {}
            return
        try:
            self._records = _parse(raw)
        except StateStoreCorrupt as exc:
            logger.warning("State file %s is corrupt (%s); starting empty", self.path, exc)
            self._records = {}

    # ── Queries ──────────────────────────────────────────────────────────

    def __contains__(self, name: object) -> bool:
        return name in self._records

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[ArchiveRecord]:
        return iter(self.records())

    def names(self) -> frozenset[str]:
        return frozenset(self._records)

    def get(self, name: str) -> ArchiveRecord:
        try:
            return self._records[name]
        except KeyError:
            raise ArchiveNotFound(f"No archive named {name!r}") from None

    def find_by_path(self, path: str | os.PathLike[str]) -> ArchiveRecord:
        target = os.path.abspath(path)
        for record in self._records.values():
            if os.path.abspath(record.file_path) == target:
                return record
        raise ArchiveNotFound(f"No archive recorded at {path}")

    def records(self) -> list[ArchiveRecord]:
        """All records, oldest first (ties broken by name)."""
        return sorted(self._records.values(), key=lambda r: (r.created_at, r.name))

    # ── Mutations ────────────────────────────────────────────────────────

    def add(self, record: ArchiveRecord) -> None:
        """Insert *record* and persist.  Existing names are never overwritten."""
        if record.name in self._records:
            raise InvalidParameter(f"Archive name already recorded: {record.name!r}")
        updated = dict(self._records)
        updated[record.name] = record
        self._write(updated)
        self._records = updated

    def remove(self, name: str) -> ArchiveRecord:
        """Delete the record for *name* and persist; the archive file is untouched."""
        record = self.get(name)
        updated = dict(self._records)
        del updated[name]
        self._write(updated)
        self._records = updated
        return record

    def _write(self, records: dict[str, ArchiveRecord]) -> None:
        doc = {
            "version": STATE_VERSION,
            "archives": {name: rec.to_dict() for name, rec in sorted(records.items())},
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(
            dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                # ASCII escapes keep undecodable file names (lone surrogates) intact.
                json.dump(doc, f, indent=2, ensure_ascii=True)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, self.path)
        except BaseException:
            if os.path.exists(tmp):
                os.remove(tmp)
            raise
        logger.debug("Wrote %d record(s) to %s", len(records), self.path)
