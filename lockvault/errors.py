"""
LockVault - Error Types

Every failure the core reports is one of these. Callers render them as:
- ValidationError:     bad input, nothing was derived or decrypted
- AuthenticationError: wrong password / code / answers (never says which)
- MalformedDataError:  data decrypted (or loaded) fine but cannot be parsed
- StorageUnavailable / NotFound: problems in the storage collaborator

Messages never contain secret material.
"""

GENERIC_AUTH_MESSAGE = "Invalid password or code."
RECOVERY_AUTH_MESSAGE = "Recovery information is incorrect."


class VaultError(Exception):
    """Base class for all LockVault errors."""


class ValidationError(VaultError):
    """User input rejected before any crypto work."""


class AuthenticationError(VaultError):
    """An AEAD tag did not verify, or a one-time code did not match."""

    def __init__(self, message: str = GENERIC_AUTH_MESSAGE):
        super().__init__(message)


class VerificationFailed(AuthenticationError):
    """Recovery code or answers rejected by hash comparison."""

    def __init__(self, message: str = RECOVERY_AUTH_MESSAGE):
        super().__init__(message)


class MalformedDataError(VaultError):
    """Bytes or records that cannot be decoded."""


class KeyDerivationError(VaultError):
    """The KDF primitive itself failed."""


class StorageUnavailable(VaultError):
    """The storage backend could not be read or written."""


class NotFound(VaultError):
    """No vault with the requested name."""
