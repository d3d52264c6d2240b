from __future__ import annotations

from typing import Optional


class PackdError(Exception):
    """Base class for packd-specific errors.

    ``path`` names the archive entry or file involved and ``offset`` the byte
    position in the stream being decoded, when known.
    """

    def __init__(self, message: str, *, path: Optional[str] = None, offset: Optional[int] = None):
        super().__init__(message)
        self.path = path
        self.offset = offset

    def __str__(self) -> str:
        msg = super().__str__()
        extra = []
        if self.path is not None:
            extra.append(f"path={self.path!r}")
        if self.offset is not None:
            extra.append(f"offset={self.offset}")
        if extra:
            return f"{msg} ({', '.join(extra)})"
        return msg


# Framing
class FormatError(PackdError):
    pass


class CompressionError(PackdError):
    pass


# Envelope / key material
class CryptoError(PackdError):
    pass


class KeyTooLargeError(CryptoError):
    pass


class KeyUnwrapError(CryptoError):
    pass


class IntegrityError(CryptoError):
    pass


class KeyLoadError(CryptoError):
    pass


class LengthMismatchError(CryptoError):
    pass


# Orchestration
class ConfigurationError(PackdError):
    pass


class OperationCancelled(PackdError):
    pass
