"""Integrity digests over the final on-disk archive bytes."""

from __future__ import annotations

import hashlib
import hmac
from typing import Any, BinaryIO

import blake3

from zencore.models import HashAlgorithm, resolve_thread_count

READ_SIZE = 2**22  # 4 MiB; large reads let BLAKE3 spread work across threads


def _new_hasher(algorithm: HashAlgorithm, threads: int) -> Any:
    if algorithm is HashAlgorithm.BLAKE3:
        # max_threads > 1 switches blake3 to its multi-threaded tree mode.
        return blake3.blake3(max_threads=threads if threads > 1 else 1)
    if algorithm is HashAlgorithm.SHA256:
        return hashlib.sha256()
    return hashlib.sha3_256()


def hash_stream(
    stream: BinaryIO, algorithm: HashAlgorithm, thread_count: int = 1
) -> str:
    """Hex digest of everything remaining in *stream*.

    Only BLAKE3 uses *thread_count*; the SHA variants are sequential.
    """
    threads = resolve_thread_count(thread_count)
    hasher = _new_hasher(algorithm, threads)
    while data := stream.read(READ_SIZE):
        hasher.update(data)
    return hasher.hexdigest()


def hash_file(path: str, algorithm: HashAlgorithm, thread_count: int = 1) -> str:
    with open(path, "rb") as f:
        return hash_stream(f, algorithm, thread_count)


def digests_match(expected: str, actual: str) -> bool:
    """Case-insensitive, constant-time comparison of two hex digests."""
    return hmac.compare_digest(expected.lower(), actual.lower())
