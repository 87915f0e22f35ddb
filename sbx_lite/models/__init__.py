"""
Data models for sbx-lite.

This module contains the Pydantic models for configuration and for
backup archives and restore outcomes.
"""

from sbx_lite.models.config import SbxContext, PathConfig, ServiceSettings, BackupSettings
from sbx_lite.models.backup import (
    BackupArchive,
    BackupMetadata,
    CertificatePair,
    PasswordRecord,
    StagedRestore,
    RestoreResult,
    RollbackState,
)

__all__ = [
    "SbxContext",
    "PathConfig",
    "ServiceSettings",
    "BackupSettings",
    "BackupArchive",
    "BackupMetadata",
    "CertificatePair",
    "PasswordRecord",
    "StagedRestore",
    "RestoreResult",
    "RollbackState",
]
