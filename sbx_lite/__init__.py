"""
sbx-lite

Management toolkit for a self-hosted sing-box proxy: backup, encrypted
archives, and transactional restore with rollback.
"""

__version__ = "0.1.0"

from sbx_lite.models.config import SbxContext
from sbx_lite.models.backup import BackupArchive, RestoreResult

__all__ = [
    "SbxContext",
    "BackupArchive",
    "RestoreResult",
]
