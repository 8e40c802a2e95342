"""Exception hierarchy shared by every pipeline stage.

Every fatal condition raised by the library derives from :class:`ZencoreError`
so a front end can catch one type and still tell the cases apart.  Per-file
scan problems are *not* exceptions; see :class:`zencore.models.ScanWarning`.
"""

from __future__ import annotations


class ZencoreError(Exception):
    """Base class for all zencore failures."""


class InvalidParameter(ZencoreError, ValueError):
    """A job, level, cipher or setting was rejected before any I/O."""


class NoFilesFound(ZencoreError):
    """The source tree produced no readable files."""


class CompressionError(ZencoreError):
    """The codec failed while writing or reading a container."""


class ContainerFormatError(ZencoreError, ValueError):
    """The container header is missing, truncated, or of an unknown version."""


class CryptoError(ZencoreError):
    """Base class for key derivation and AEAD failures."""


class KeyDerivationFailure(CryptoError):
    """Argon2 refused the password, salt or cost parameters."""


class AuthenticationFailure(CryptoError):
    """Tag mismatch: wrong password, tampering, or truncation."""


class StateStoreCorrupt(ZencoreError):
    """The state file could not be parsed.  Callers recover with an empty store."""


class NameCollisionExhausted(ZencoreError):
    """Every dedup suffix for the requested name is already taken."""


class ArchiveNotFound(ZencoreError, LookupError):
    """No record exists for the requested name or path."""
