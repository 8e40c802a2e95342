"""Archive container header.

Layout (v1)::

    [4 B]  magic b"ZCA\\x00"         [1 B]  format version 0x01
    [1 B]  codec id                   [1 B]  codec level
    [1 B]  cipher id (0 = none)       [1 B]  hash id
    if cipher id != 0:
      [2 B] salt length   [N B]  salt
      [2 B] nonce length  [12 B] base nonce
      [4 B] argon2 time cost   [4 B] argon2 memory cost (KiB)
      [1 B] argon2 parallelism [4 B] plaintext chunk size

The body follows immediately: the codec stream when unencrypted, or
length-prefixed AEAD frames when encrypted.  The exact header bytes are bound
into every frame's associated data, so any edit to them fails authentication.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import BinaryIO

from zencore.cipher import MAX_CHUNK_SIZE, NONCE_SIZE, KdfParams
from zencore.errors import ContainerFormatError, InvalidParameter
from zencore.models import CipherSuite, CompressionAlgorithm, HashAlgorithm

MAGIC = b"ZCA\x00"
FORMAT_VERSION = 1


@dataclass(frozen=True)
class ContainerHeader:
    compression: CompressionAlgorithm
    level: int
    hash_algorithm: HashAlgorithm
    cipher: CipherSuite | None = None
    salt: bytes | None = None
    base_nonce: bytes | None = None
    kdf: KdfParams | None = None
    chunk_size: int | None = None

    @property
    def encrypted(self) -> bool:
        return self.cipher is not None

    def to_bytes(self) -> bytes:
        """Serialize the header exactly as it is written to disk."""
        out = bytearray(MAGIC)
        out += FORMAT_VERSION.to_bytes(1, "big")
        out += self.compression.ident.to_bytes(1, "big")
        out += self.level.to_bytes(1, "big")
        out += (self.cipher.ident if self.cipher else 0).to_bytes(1, "big")
        out += self.hash_algorithm.ident.to_bytes(1, "big")
        if self.cipher is not None:
            if self.salt is None or self.base_nonce is None or self.kdf is None \
                    or self.chunk_size is None:
                raise InvalidParameter("Encrypted header needs salt, nonce, KDF and chunk size.")
            out += len(self.salt).to_bytes(2, "big") + self.salt
            out += len(self.base_nonce).to_bytes(2, "big") + self.base_nonce
            out += self.kdf.time_cost.to_bytes(4, "big")
            out += self.kdf.memory_cost.to_bytes(4, "big")
            out += self.kdf.parallelism.to_bytes(1, "big")
            out += self.chunk_size.to_bytes(4, "big")
        return bytes(out)


def write_header(f: BinaryIO, header: ContainerHeader) -> bytes:
    """Serialize *header* into *f* and return the bytes written."""
    raw = header.to_bytes()
    f.write(raw)
    return raw


def _read_exact(f: BinaryIO, size: int, what: str) -> bytes:
    data = f.read(size)
    if len(data) != size:
        raise ContainerFormatError(f"Truncated header: incomplete {what}.")
    return data


def _read_int(f: BinaryIO, size: int, what: str) -> int:
    return int.from_bytes(_read_exact(f, size, what), "big")


def read_header(f: BinaryIO) -> tuple[ContainerHeader, bytes]:
    """Read and validate the container header.

    Returns
    -------
    tuple[ContainerHeader, bytes]
        The parsed header and its raw bytes (the AEAD associated data).

    Raises
    ------
    ContainerFormatError
        If the header is missing, truncated, or has an unsupported version
        or variant identifier.
    """
    magic = f.read(len(MAGIC))
    if magic != MAGIC:
        raise ContainerFormatError(
            "Invalid file: missing magic number, not a zencore archive."
        )

    version = _read_int(f, 1, "version")
    if version != FORMAT_VERSION:
        raise ContainerFormatError(
            f"Unsupported format version {version} (expected {FORMAT_VERSION})."
        )

    try:
        compression = CompressionAlgorithm.from_id(_read_int(f, 1, "codec id"))
        level = compression.resolve_level(_read_int(f, 1, "codec level"))
        cipher_id = _read_int(f, 1, "cipher id")
        cipher = CipherSuite.from_id(cipher_id) if cipher_id else None
        hash_algorithm = HashAlgorithm.from_id(_read_int(f, 1, "hash id"))
    except InvalidParameter as exc:
        raise ContainerFormatError(f"Corrupt header: {exc}") from exc

    header = ContainerHeader(compression, level, hash_algorithm)
    if cipher is not None:
        salt = _read_exact(f, _read_int(f, 2, "salt length"), "salt")
        base_nonce = _read_exact(f, _read_int(f, 2, "nonce length"), "nonce")
        kdf = KdfParams(
            time_cost=_read_int(f, 4, "KDF time cost"),
            memory_cost=_read_int(f, 4, "KDF memory cost"),
            parallelism=_read_int(f, 1, "KDF parallelism"),
        )
        chunk_size = _read_int(f, 4, "chunk size")
        if len(base_nonce) != NONCE_SIZE or not 1 <= chunk_size <= MAX_CHUNK_SIZE:
            raise ContainerFormatError("Corrupt header: bad nonce length or chunk size.")
        header = ContainerHeader(
            compression, level, hash_algorithm, cipher, salt, base_nonce, kdf, chunk_size
        )
    return header, header.to_bytes()
