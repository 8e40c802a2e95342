"""Runtime settings for the zencore front end.

All settings come from environment variables; loading a configuration file is
left to the surrounding application.  Every setting has a default suitable for
a single-user workstation.

Invariants:
    - Invalid values are rejected with :class:`InvalidParameter` at load time,
      never silently replaced by a default
    - The state directory is resolved once and passed explicitly to the store
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from zencore.errors import InvalidParameter
from zencore.models import (CipherSuite, CompressionAlgorithm, HashAlgorithm,
                            resolve_thread_count)

logger = logging.getLogger(__name__)

STATE_FILE_NAME = "archives.json"
DEFAULT_DATE_FORMAT = "%Y%m%d_%H%M%S"


def _default_state_dir() -> Path:
    xdg = os.getenv("XDG_DATA_HOME")
    base = Path(xdg) if xdg else Path.home() / ".local" / "share"
    return base / "zencore"


@dataclass(frozen=True)
class Settings:
    """Defaults applied when a job does not specify a value.

    Attributes:
        state_dir: Directory that holds the state file
        algorithm: Default compression codec
        compression_level: Default level, ``None`` for the codec default
        cipher: Cipher used when encryption is requested without one
        hash_algorithm: Default integrity hash
        thread_count: Worker count, ``0`` for one per logical CPU
        date_format: ``strftime`` pattern for auto-generated archive names
    """

    state_dir: Path
    algorithm: CompressionAlgorithm = CompressionAlgorithm.ZSTD
    compression_level: int | None = None
    cipher: CipherSuite = CipherSuite.AES_256_GCM
    hash_algorithm: HashAlgorithm = HashAlgorithm.BLAKE3
    thread_count: int = 0
    date_format: str = DEFAULT_DATE_FORMAT

    @property
    def state_file(self) -> Path:
        return self.state_dir / STATE_FILE_NAME

    @classmethod
    def from_env(cls) -> Settings:
        """Load settings from ``ZENCORE_*`` environment variables."""
        state_dir = os.getenv("ZENCORE_STATE_DIR")
        algorithm = CompressionAlgorithm.from_name(os.getenv("ZENCORE_ALGORITHM", "zst"))

        level_text = os.getenv("ZENCORE_LEVEL")
        level: int | None = None
        if level_text:
            try:
                level = int(level_text)
            except ValueError as exc:
                raise InvalidParameter(f"ZENCORE_LEVEL is not an integer: {level_text!r}") from exc
            algorithm.resolve_level(level)

        threads_text = os.getenv("ZENCORE_THREADS", "0")
        try:
            threads = int(threads_text)
        except ValueError as exc:
            raise InvalidParameter(f"ZENCORE_THREADS is not an integer: {threads_text!r}") from exc
        resolve_thread_count(threads)

        settings = cls(
            state_dir=Path(state_dir).expanduser() if state_dir else _default_state_dir(),
            algorithm=algorithm,
            compression_level=level,
            cipher=CipherSuite.from_name(os.getenv("ZENCORE_CIPHER", "aes-256-gcm")),
            hash_algorithm=HashAlgorithm.from_name(os.getenv("ZENCORE_HASH", "blake3")),
            thread_count=threads,
            date_format=os.getenv("ZENCORE_DATE_FORMAT", DEFAULT_DATE_FORMAT),
        )
        logger.debug("Loaded settings: %s", settings)
        return settings
