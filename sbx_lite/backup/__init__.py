"""
Backup and restore for sbx-lite.

This module provides archive creation, encryption, validation,
transactional restore with rollback, and retention.
"""

from sbx_lite.backup.builder import ArchiveBuilder
from sbx_lite.backup.encryption import BackupEncryptor, EncryptionResult
from sbx_lite.backup.integrity import ArchiveValidator, ValidationResult
from sbx_lite.backup.manager import BackupManager
from sbx_lite.backup.retention import RetentionEnforcer
from sbx_lite.backup.rollback import RestoreTransaction, RollbackManager
from sbx_lite.backup.staging import StagingArea

__all__ = [
    "ArchiveBuilder",
    "ArchiveValidator",
    "BackupEncryptor",
    "BackupManager",
    "EncryptionResult",
    "RestoreTransaction",
    "RetentionEnforcer",
    "RollbackManager",
    "StagingArea",
    "ValidationResult",
]
