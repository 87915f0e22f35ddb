"""
Core module for sbx-lite.

This module contains the exception taxonomy and error reporting
used throughout the application.
"""

from sbx_lite.core.exceptions import (
    SbxError,
    ConfigurationError,
    UserInputError,
    DecryptionError,
    BackupError,
    EncryptionError,
    ArchiveIntegrityError,
    ExternalValidationError,
    ApplyError,
    SnapshotError,
    RestoreInterrupted,
    RollbackError,
    ServiceError,
)

__all__ = [
    "SbxError",
    "ConfigurationError",
    "UserInputError",
    "DecryptionError",
    "BackupError",
    "EncryptionError",
    "ArchiveIntegrityError",
    "ExternalValidationError",
    "ApplyError",
    "SnapshotError",
    "RestoreInterrupted",
    "RollbackError",
    "ServiceError",
]
