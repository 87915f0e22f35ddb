"""
Custom exceptions for sbx-lite.

This module defines the exception classes used by the backup and
restore subsystem. Each class corresponds to one failure category so
the CLI can tell "nothing was touched" apart from "live state was
rolled back" and from "rollback itself failed".
"""

from typing import Any, Dict, Optional


class SbxError(Exception):
    """Base exception class for sbx-lite errors."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}


class ConfigurationError(SbxError):
    """Raised when the toolkit configuration is invalid."""
    pass


class UserInputError(SbxError):
    """Raised for bad or declined user input (password, confirmation)."""
    pass


class DecryptionError(UserInputError):
    """Raised when an encrypted archive cannot be decrypted."""
    pass


class BackupError(SbxError):
    """Raised when creating a backup archive fails."""
    pass


class EncryptionError(BackupError):
    """Raised when encrypting a backup archive fails."""
    pass


class ArchiveIntegrityError(SbxError):
    """Raised when an archive is corrupt or structurally invalid."""

    def __init__(
        self,
        message: str,
        reason: Optional[str] = None,
        **kwargs
    ):
        super().__init__(message, **kwargs)
        self.reason = reason or "integrity"


class ExternalValidationError(SbxError):
    """Raised when the service's own config check rejects the staged config."""

    def __init__(
        self,
        message: str,
        output: str = "",
        **kwargs
    ):
        super().__init__(message, **kwargs)
        self.output = output


class ApplyError(SbxError):
    """Raised when moving staged artifacts into place fails."""
    pass


class SnapshotError(ApplyError):
    """Raised when the rollback snapshot cannot be taken."""
    pass


class RestoreInterrupted(ApplyError):
    """Raised when a signal interrupts an in-flight restore."""

    def __init__(self, signum: int, **kwargs):
        super().__init__(f"Restore interrupted by signal {signum}", **kwargs)
        self.signum = signum


class RollbackError(SbxError):
    """Raised when restoring the pre-restore live state fails."""
    pass


class ServiceError(SbxError):
    """Raised when the service fails to (re)start after apply or rollback."""
    pass
