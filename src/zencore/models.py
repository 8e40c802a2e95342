"""Value types passed between pipeline stages and persisted in the state store.

The three variant sets (compression codec, AEAD cipher, integrity hash) are
closed enums.  Each member carries the one-byte identifier written into the
container header, so the on-disk format and the in-memory selection can never
drift apart.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from zencore.errors import InvalidParameter

# ── Variant sets ─────────────────────────────────────────────────────────────


class CompressionAlgorithm(Enum):
    """Codec variants: ``(name, header id, min level, max level, default)``."""

    STORE = ("none", 0, 0, 0, 0)
    GZIP = ("gz", 1, 1, 9, 6)
    ZSTD = ("zst", 2, 1, 22, 3)

    def __init__(self, label: str, ident: int, min_level: int, max_level: int,
                 default_level: int) -> None:
        self.label = label
        self.ident = ident
        self.min_level = min_level
        self.max_level = max_level
        self.default_level = default_level

    @classmethod
    def from_name(cls, name: str) -> CompressionAlgorithm:
        key = name.strip().lower()
        for member in cls:
            if key == member.label or key in _COMPRESSION_ALIASES.get(member.label, ()):
                return member
        raise InvalidParameter(f"Unknown compression algorithm: {name!r}")

    @classmethod
    def from_id(cls, ident: int) -> CompressionAlgorithm:
        for member in cls:
            if member.ident == ident:
                return member
        raise InvalidParameter(f"Unknown compression id: {ident}")

    def resolve_level(self, level: int | None) -> int:
        """Return *level*, or the variant default for ``None``.

        Out-of-range levels are rejected, never clamped.
        """
        if level is None:
            return self.default_level
        if not self.min_level <= level <= self.max_level:
            raise InvalidParameter(
                f"Compression level {level} out of range for '{self.label}' "
                f"({self.min_level}–{self.max_level})."
            )
        return level


_COMPRESSION_ALIASES: dict[str, tuple[str, ...]] = {
    "none": ("store", "tar"),
    "gz": ("gzip", "tar.gz"),
    "zst": ("zstd", "zstandard", "tar.zst"),
}


class CipherSuite(Enum):
    """AEAD variants: ``(name, header id)``."""

    AES_256_GCM = ("aes-256-gcm", 1)
    CHACHA20_POLY1305 = ("chacha20-poly1305", 2)

    def __init__(self, label: str, ident: int) -> None:
        self.label = label
        self.ident = ident

    @classmethod
    def from_name(cls, name: str) -> CipherSuite:
        key = name.strip().lower()
        for member in cls:
            if key == member.label or key in _CIPHER_ALIASES[member.label]:
                return member
        raise InvalidParameter(f"Unknown cipher: {name!r}")

    @classmethod
    def from_id(cls, ident: int) -> CipherSuite:
        for member in cls:
            if member.ident == ident:
                return member
        raise InvalidParameter(f"Unknown cipher id: {ident}")


_CIPHER_ALIASES: dict[str, tuple[str, ...]] = {
    "aes-256-gcm": ("aes", "aes256", "aes-256"),
    "chacha20-poly1305": ("chacha", "chacha20"),
}


class HashAlgorithm(Enum):
    """Integrity hash variants: ``(name, header id)``."""

    BLAKE3 = ("blake3", 1)
    SHA256 = ("sha256", 2)
    SHA3_256 = ("sha3-256", 3)

    def __init__(self, label: str, ident: int) -> None:
        self.label = label
        self.ident = ident

    @classmethod
    def from_name(cls, name: str) -> HashAlgorithm:
        key = name.strip().lower()
        for member in cls:
            if key == member.label or key in _HASH_ALIASES[member.label]:
                return member
        raise InvalidParameter(f"Unknown hash algorithm: {name!r}")

    @classmethod
    def from_id(cls, ident: int) -> HashAlgorithm:
        for member in cls:
            if member.ident == ident:
                return member
        raise InvalidParameter(f"Unknown hash id: {ident}")


_HASH_ALIASES: dict[str, tuple[str, ...]] = {
    "blake3": (),
    "sha256": ("sha-256",),
    "sha3-256": ("sha3", "sha3_256"),
}


def resolve_thread_count(thread_count: int) -> int:
    """Map ``0`` to the number of logical CPUs; reject negatives."""
    if thread_count < 0:
        raise InvalidParameter(f"Thread count must be >= 0, got {thread_count}.")
    if thread_count == 0:
        return os.cpu_count() or 1
    return thread_count


# ── Scan results ─────────────────────────────────────────────────────────────


@dataclass(frozen=True, order=True)
class SourceEntry:
    """One regular file captured by the scanner.

    ``relative_path`` always uses ``/`` separators, whatever the host OS.
    """

    relative_path: str
    size_bytes: int
    modified_time: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "relative_path": self.relative_path,
            "size_bytes": self.size_bytes,
            "modified_time": self.modified_time,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SourceEntry:
        return cls(
            relative_path=str(data["relative_path"]),
            size_bytes=int(data["size_bytes"]),
            modified_time=float(data["modified_time"]),
        )


@dataclass(frozen=True)
class ScanWarning:
    """A node skipped during scanning.  Accumulated, never raised."""

    path: str
    reason: str

    def __str__(self) -> str:
        return f"{self.path}: {self.reason}"


# ── Job description ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ArchiveJob:
    """Everything the pipeline needs to produce one archive.

    Built by a front end and consumed read-only.  ``compression_level=None``
    selects the codec's default; ``thread_count=0`` means one worker per CPU.
    """

    source_root: str
    destination_dir: str
    requested_name: str | None = None
    compression_algorithm: CompressionAlgorithm = CompressionAlgorithm.ZSTD
    compression_level: int | None = None
    encrypt: bool = False
    cipher_suite: CipherSuite | None = None
    thread_count: int = 0
    hash_algorithm: HashAlgorithm = HashAlgorithm.BLAKE3

    def validate(self) -> None:
        """Reject bad parameter combinations before any I/O happens."""
        self.compression_algorithm.resolve_level(self.compression_level)
        resolve_thread_count(self.thread_count)
        if self.encrypt and self.cipher_suite is None:
            raise InvalidParameter("Encryption requested but no cipher suite selected.")
        if not self.encrypt and self.cipher_suite is not None:
            raise InvalidParameter("Cipher suite given for an unencrypted job.")
        if self.requested_name is not None:
            validate_archive_name(self.requested_name)


def validate_archive_name(name: str) -> None:
    """Archive names become file names, so separators and dot-names are refused."""
    if not name or name.strip() != name:
        raise InvalidParameter(f"Invalid archive name: {name!r}")
    if name in (".", "..") or "/" in name or "\\" in name or "\x00" in name:
        raise InvalidParameter(f"Invalid archive name: {name!r}")


# ── Persisted record ─────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ArchiveRecord:
    """Metadata for one produced archive; created once and never mutated.

    ``salt``, ``nonce`` and ``kdf_params`` are present iff ``encrypted``.
    ``hash_value`` covers the final on-disk bytes, ciphertext included.
    """

    name: str
    file_path: str
    created_at: str
    size_bytes: int
    entry_count: int
    entries: tuple[SourceEntry, ...]
    hash_algorithm: HashAlgorithm
    hash_value: str
    compression_algorithm: CompressionAlgorithm
    compression_level: int
    encrypted: bool = False
    cipher_suite: CipherSuite | None = None
    salt: bytes | None = None
    nonce: bytes | None = None
    kdf_params: dict[str, int] | None = field(default=None)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "file_path": self.file_path,
            "created_at": self.created_at,
            "size_bytes": self.size_bytes,
            "entry_count": self.entry_count,
            "entries": [e.to_dict() for e in self.entries],
            "hash_algorithm": self.hash_algorithm.label,
            "hash_value": self.hash_value,
            "compression_algorithm": self.compression_algorithm.label,
            "compression_level": self.compression_level,
            "encrypted": self.encrypted,
            "cipher_suite": self.cipher_suite.label if self.cipher_suite else None,
            "salt": self.salt.hex() if self.salt is not None else None,
            "nonce": self.nonce.hex() if self.nonce is not None else None,
            "kdf_params": dict(self.kdf_params) if self.kdf_params else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ArchiveRecord:
        cipher = data.get("cipher_suite")
        salt = data.get("salt")
        nonce = data.get("nonce")
        kdf = data.get("kdf_params")
        entries = tuple(SourceEntry.from_dict(e) for e in data["entries"])
        return cls(
            name=str(data["name"]),
            file_path=str(data["file_path"]),
            created_at=str(data["created_at"]),
            size_bytes=int(data["size_bytes"]),
            entry_count=int(data["entry_count"]),
            entries=entries,
            hash_algorithm=HashAlgorithm.from_name(data["hash_algorithm"]),
            hash_value=str(data["hash_value"]),
            compression_algorithm=CompressionAlgorithm.from_name(
                data["compression_algorithm"]
            ),
            compression_level=int(data["compression_level"]),
            encrypted=bool(data.get("encrypted", False)),
            cipher_suite=CipherSuite.from_name(cipher) if cipher else None,
            salt=bytes.fromhex(salt) if salt else None,
            nonce=bytes.fromhex(nonce) if nonce else None,
            kdf_params={k: int(v) for k, v in kdf.items()} if kdf else None,
        )

    def summary(self) -> dict[str, Any]:
        """Listing view without the entry table."""
        return {
            "name": self.name,
            "file_path": self.file_path,
            "created_at": self.created_at,
            "size_bytes": self.size_bytes,
            "entry_count": self.entry_count,
            "compression": f"{self.compression_algorithm.label}:{self.compression_level}",
            "encrypted": self.encrypted,
            "cipher_suite": self.cipher_suite.label if self.cipher_suite else None,
            "hash_algorithm": self.hash_algorithm.label,
        }
