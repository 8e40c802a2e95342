"""Deterministic, collision-free archive naming."""

from __future__ import annotations

import os
from collections.abc import Container
from datetime import datetime

from zencore.errors import InvalidParameter, NameCollisionExhausted
from zencore.models import validate_archive_name

ARCHIVE_SUFFIX = ".zca"
MAX_DEDUP_SUFFIX = 9999


def archive_file_name(name: str) -> str:
    """On-disk file name for archive *name*."""
    return f"{name}{ARCHIVE_SUFFIX}"


def default_base_name(date_format: str, now: datetime | None = None) -> str:
    """Base name derived from the local time, used when none is requested."""
    stamp = (now or datetime.now()).strftime(date_format)
    try:
        validate_archive_name(stamp)
    except InvalidParameter as exc:
        raise InvalidParameter(
            f"Date format {date_format!r} produces an unusable name {stamp!r}."
        ) from exc
    return stamp


def resolve_name(
    base_name: str,
    taken: Container[str],
    destination_dir: str,
    *,
    limit: int = MAX_DEDUP_SUFFIX,
) -> str:
    """Return the first free name among ``base``, ``base.1``, ``base.2`` …

    A candidate is free when it is absent from *taken* (the state store's
    names) **and** ``<candidate>.zca`` does not exist in *destination_dir*.
    Both are re-checked for every candidate, so files dropped into the
    destination out-of-band are never overwritten.

    Raises
    ------
    NameCollisionExhausted
        If every suffix up to *limit* is taken.
    """
    validate_archive_name(base_name)

    def _free(candidate: str) -> bool:
        if candidate in taken:
            return False
        return not os.path.lexists(os.path.join(destination_dir, archive_file_name(candidate)))

    if _free(base_name):
        return base_name
    for counter in range(1, limit + 1):
        candidate = f"{base_name}.{counter}"
        if _free(candidate):
            return candidate
    raise NameCollisionExhausted(
        f"No free name for {base_name!r} after {limit} suffixes in {destination_dir}"
    )
