"""Password-based authenticated encryption of the archive body.

Keys come from Argon2id over the password and a random per-archive salt.  The
compressed stream is cut into fixed-size chunks, each sealed with AES-256-GCM
or ChaCha20-Poly1305 and written as a length-prefixed frame::

    [4 B]  ciphertext length    [N B]  ciphertext (plaintext + 16 B tag)

* Nonce per chunk: ``base_nonce XOR chunk_index`` (12 bytes, big-endian).
* AAD per chunk: ``header || chunk_index (8 B) || final flag (1 B)``.

The final flag makes truncation at a frame boundary and appended frames fail
authentication, and binding the container header means the KDF parameters
and codec identifiers cannot be swapped either.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass
from secrets import token_bytes
from typing import Any, BinaryIO

from argon2.exceptions import HashingError
from argon2.low_level import Type, hash_secret_raw
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import (AESGCM,
                                                         ChaCha20Poly1305)

from zencore.errors import (AuthenticationFailure, CryptoError,
                            InvalidParameter, KeyDerivationFailure)
from zencore.models import CipherSuite

logger = logging.getLogger(__name__)

# ── Constants ────────────────────────────────────────────────────────────────

NONCE_SIZE = 12  # AES-GCM and ChaCha20-Poly1305 nonce size in bytes
SALT_SIZE = 16   # Argon2 salt size in bytes
TAG_SIZE = 16    # AEAD authentication tag size in bytes
KEY_SIZE = 32

DEFAULT_CHUNK_SIZE = 2**20  # 1 MiB
MAX_CHUNK_SIZE = 2**26      # 64 MiB
# Counter space handed out per archive.  Far below the 2^96 nonce width, and
# keeps the number of AES-GCM invocations per key inside NIST's 2^32 bound.
MAX_CHUNKS = 2**32


# ── Key derivation ───────────────────────────────────────────────────────────

@dataclass(frozen=True)
class KdfParams:
    """Argon2id cost parameters; ``memory_cost`` is in KiB."""

    time_cost: int = 3
    memory_cost: int = 64 * 1024
    parallelism: int = 4

    def validate(self) -> None:
        if not 1 <= self.time_cost < 2**32:
            raise InvalidParameter(f"Argon2 time cost out of range: {self.time_cost}")
        if not 1 <= self.parallelism <= 255:
            raise InvalidParameter(f"Argon2 parallelism out of range: {self.parallelism}")
        if not 8 * self.parallelism <= self.memory_cost < 2**32:
            raise InvalidParameter(
                f"Argon2 memory cost must be at least 8 KiB per lane, got {self.memory_cost}"
            )

    def to_dict(self) -> dict[str, int]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> KdfParams:
        return cls(
            time_cost=int(data["time_cost"]),
            memory_cost=int(data["memory_cost"]),
            parallelism=int(data["parallelism"]),
        )


DEFAULT_KDF_PARAMS = KdfParams()


def derive_key(
    password: str,
    salt: bytes,
    params: KdfParams = DEFAULT_KDF_PARAMS,
) -> bytes:
    """Derive a 256-bit key from *password* using Argon2id.

    Raises
    ------
    KeyDerivationFailure
        If the parameters or salt are rejected by Argon2.
    """
    try:
        params.validate()
    except InvalidParameter as exc:
        raise KeyDerivationFailure(str(exc)) from exc
    try:
        return hash_secret_raw(
            secret=password.encode("utf-8"),
            salt=salt,
            time_cost=params.time_cost,
            memory_cost=params.memory_cost,
            parallelism=params.parallelism,
            hash_len=KEY_SIZE,
            type=Type.ID,
        )
    except HashingError as exc:
        raise KeyDerivationFailure(f"Argon2 key derivation failed: {exc}") from exc


def new_salt() -> bytes:
    return token_bytes(SALT_SIZE)


def new_base_nonce() -> bytes:
    return token_bytes(NONCE_SIZE)


# ── Nonce construction ───────────────────────────────────────────────────────

def _make_nonce(base_nonce: bytes, chunk_index: int) -> bytes:
    """Return ``base_nonce XOR chunk_index`` as a 12-byte nonce.

    XOR with a monotonic counter guarantees uniqueness for every index in
    ``[0, MAX_CHUNKS)``; anything outside that range is refused.
    """
    if not 0 <= chunk_index < MAX_CHUNKS:
        raise InvalidParameter(f"Chunk index {chunk_index} outside nonce counter space.")
    index_bytes = chunk_index.to_bytes(NONCE_SIZE, "big")
    return bytes(a ^ b for a, b in zip(base_nonce, index_bytes))


def _chunk_aad(header: bytes, chunk_index: int, final: bool) -> bytes:
    return header + chunk_index.to_bytes(8, "big") + (b"\x01" if final else b"\x00")


# ── AEAD engine ──────────────────────────────────────────────────────────────

class CipherEngine:
    """One key bound to one AEAD variant."""

    def __init__(self, suite: CipherSuite, key: bytes) -> None:
        if len(key) != KEY_SIZE:
            raise InvalidParameter(f"Key must be {KEY_SIZE} bytes, got {len(key)}.")
        self.suite = suite
        if suite is CipherSuite.AES_256_GCM:
            self._aead: AESGCM | ChaCha20Poly1305 = AESGCM(key)
        else:
            self._aead = ChaCha20Poly1305(key)

    @classmethod
    def from_password(
        cls,
        suite: CipherSuite,
        password: str,
        salt: bytes,
        params: KdfParams = DEFAULT_KDF_PARAMS,
    ) -> CipherEngine:
        return cls(suite, derive_key(password, salt, params))

    def seal(
        self, nonce: bytes, plaintext: bytes, aad: bytes | None = None
    ) -> tuple[bytes, bytes]:
        """Encrypt *plaintext*; returns ``(ciphertext, tag)``."""
        sealed = self._aead.encrypt(nonce, plaintext, aad)
        return sealed[:-TAG_SIZE], sealed[-TAG_SIZE:]

    def open(
        self, nonce: bytes, ciphertext: bytes, tag: bytes, aad: bytes | None = None
    ) -> bytes:
        """Decrypt and authenticate; never returns unauthenticated data.

        Raises
        ------
        AuthenticationFailure
            Wrong key, tampered ciphertext/tag/AAD, or wrong nonce.
        """
        try:
            return self._aead.decrypt(nonce, ciphertext + tag, aad)
        except InvalidTag as exc:
            raise AuthenticationFailure(
                "Authentication failed. Wrong password or corrupted data."
            ) from exc


# ── Chunked streaming ────────────────────────────────────────────────────────

class ChunkSealer:
    """Writable stream that seals fixed-size chunks into *sink*.

    Full chunks are buffered into batches; each chunk is assigned its counter
    index *before* the batch is handed to the worker pool, so workers operate
    on disjoint indexes and frames are written back in index order.  The last
    chunk is held until :meth:`close` so it can carry the final flag.
    """

    def __init__(
        self,
        engine: CipherEngine,
        base_nonce: bytes,
        header: bytes,
        sink: BinaryIO,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        workers: int = 1,
        progress: Callable[[int], None] | None = None,
    ) -> None:
        if not 1 <= chunk_size <= MAX_CHUNK_SIZE:
            raise InvalidParameter(f"Chunk size out of range: {chunk_size}")
        self._engine = engine
        self._base_nonce = base_nonce
        self._header = header
        self._sink = sink
        self._chunk_size = chunk_size
        self._batch = max(1, workers) * 2
        self._pool = ThreadPoolExecutor(
            max_workers=max(1, workers), thread_name_prefix="zencore-seal"
        )
        self._progress = progress
        self._buf = bytearray()
        self._pending: list[bytes] = []
        self._next_index = 0
        self._closed = False

    @property
    def chunks_written(self) -> int:
        return self._next_index

    def write(self, data: bytes) -> int:
        if self._closed:
            raise ValueError("write to closed ChunkSealer")
        self._buf += data
        # Strictly greater: the trailing chunk always stays buffered for close().
        while len(self._buf) > self._chunk_size:
            self._pending.append(bytes(self._buf[: self._chunk_size]))
            del self._buf[: self._chunk_size]
            if len(self._pending) >= self._batch:
                self._flush_pending(final=False)
        return len(data)

    def flush(self) -> None:
        self._sink.flush()

    def _seal_one(self, item: tuple[int, bytes, bool]) -> bytes:
        index, chunk, final = item
        nonce = _make_nonce(self._base_nonce, index)
        ciphertext, tag = self._engine.seal(nonce, chunk, _chunk_aad(self._header, index, final))
        return ciphertext + tag

    def _flush_pending(self, *, final: bool) -> None:
        chunks, self._pending = self._pending, []
        start = self._next_index
        if start + len(chunks) > MAX_CHUNKS:
            raise CryptoError(
                f"Archive needs more than {MAX_CHUNKS} chunks; refusing to reuse nonces."
            )
        last = len(chunks) - 1
        items = [(start + i, c, final and i == last) for i, c in enumerate(chunks)]
        for (_, chunk, _), frame in zip(items, self._pool.map(self._seal_one, items)):
            self._sink.write(len(frame).to_bytes(4, "big") + frame)
            if self._progress is not None:
                self._progress(len(chunk))
        self._next_index += len(chunks)

    def close(self) -> None:
        """Seal the remaining bytes as the final chunk (possibly empty)."""
        if self._closed:
            return
        try:
            self._pending.append(bytes(self._buf))
            self._buf.clear()
            self._flush_pending(final=True)
            self._closed = True
        finally:
            self._pool.shutdown(wait=True)

    def abort(self) -> None:
        """Drop buffered plaintext without writing a final frame."""
        self._closed = True
        self._buf.clear()
        self._pending.clear()
        self._pool.shutdown(wait=True, cancel_futures=True)


class ChunkOpener:
    """Readable stream that authenticates frames from *source* one at a time.

    Plaintext is released only after its chunk's tag verifies.  A chunk is
    final exactly when no frame follows it, so a stream cut at a frame
    boundary or extended with extra frames fails authentication.
    """

    def __init__(
        self,
        engine: CipherEngine,
        base_nonce: bytes,
        header: bytes,
        source: BinaryIO,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        self._engine = engine
        self._base_nonce = base_nonce
        self._header = header
        self._source = source
        self._max_frame = chunk_size + TAG_SIZE
        self._index = 0
        self._buf = bytearray()
        self._lookahead: bytes | None = None
        self._done = False

    def _read_length(self) -> bytes:
        if self._lookahead is not None:
            prefix, self._lookahead = self._lookahead, None
            return prefix
        return self._source.read(4)

    def _next_chunk(self) -> bool:
        prefix = self._read_length()
        if len(prefix) == 0:
            if self._index == 0:
                raise AuthenticationFailure("Encrypted body is empty.")
            # The previous chunk was authenticated as final; nothing follows.
            return False
        if len(prefix) < 4:
            raise AuthenticationFailure("Truncated chunk: incomplete length prefix.")

        frame_len = int.from_bytes(prefix, "big")
        if not TAG_SIZE <= frame_len <= self._max_frame:
            raise AuthenticationFailure(f"Chunk {self._index} has an invalid length {frame_len}.")
        frame = self._source.read(frame_len)
        if len(frame) != frame_len:
            raise AuthenticationFailure(
                f"Truncated chunk: expected {frame_len} bytes, got {len(frame)}."
            )

        self._lookahead = self._source.read(4)
        final = len(self._lookahead) == 0
        nonce = _make_nonce(self._base_nonce, self._index)
        aad = _chunk_aad(self._header, self._index, final)
        try:
            plaintext = self._engine.open(nonce, frame[:-TAG_SIZE], frame[-TAG_SIZE:], aad)
        except AuthenticationFailure as exc:
            raise AuthenticationFailure(
                f"Decryption failed at chunk {self._index}. "
                "Wrong password or corrupted data."
            ) from exc
        self._buf += plaintext
        self._index += 1
        if final:
            self._lookahead = b""
        return True

    def read(self, size: int = -1) -> bytes:
        while not self._done and (size < 0 or len(self._buf) < size):
            if not self._next_chunk():
                self._done = True
        if size < 0 or size >= len(self._buf):
            data = bytes(self._buf)
            self._buf.clear()
        else:
            data = bytes(self._buf[:size])
            del self._buf[:size]
        return data

    def drain(self) -> int:
        """Authenticate every remaining frame; returns discarded byte count."""
        discarded = 0
        while True:
            data = self.read(DEFAULT_CHUNK_SIZE)
            if not data:
                return discarded
            discarded += len(data)
