"""Compressed, optionally encrypted directory backups with a queryable index."""

from __future__ import annotations

__version__ = "1.0.0"

from zencore.errors import (ArchiveNotFound, AuthenticationFailure,
                            CompressionError, ContainerFormatError,
                            CryptoError, InvalidParameter,
                            KeyDerivationFailure, NameCollisionExhausted,
                            NoFilesFound, StateStoreCorrupt, ZencoreError)
from zencore.models import (ArchiveJob, ArchiveRecord, CipherSuite,
                            CompressionAlgorithm, HashAlgorithm, ScanWarning,
                            SourceEntry)
from zencore.pipeline import (ArchivePipeline, BackupResult, VerifyReport,
                              VerifyStatus, list_archive, read_archive)
from zencore.state import StateStore

__all__ = [
    "__version__",
    "ArchiveJob",
    "ArchiveNotFound",
    "ArchivePipeline",
    "ArchiveRecord",
    "AuthenticationFailure",
    "BackupResult",
    "CipherSuite",
    "CompressionAlgorithm",
    "CompressionError",
    "ContainerFormatError",
    "CryptoError",
    "HashAlgorithm",
    "InvalidParameter",
    "KeyDerivationFailure",
    "NameCollisionExhausted",
    "NoFilesFound",
    "ScanWarning",
    "SourceEntry",
    "StateStore",
    "StateStoreCorrupt",
    "VerifyReport",
    "VerifyStatus",
    "ZencoreError",
    "list_archive",
    "read_archive",
]
