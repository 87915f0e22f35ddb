"""
Backup data models for sbx-lite.

This module defines the Pydantic models describing archives, their
metadata record, certificate pairs and the outcome of a restore.
"""

from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


BACKUP_FORMAT_VERSION = "1.0"

# Layout of the tree inside an archive
METADATA_FILE = "metadata.json"
CONFIG_SUBDIR = "config"
CONFIG_FILENAME = "config.json"
CLIENT_INFO_FILENAME = "client-info.txt"
CERTIFICATES_SUBDIR = "certificates"
CERT_FILENAME = "fullchain.pem"
KEY_FILENAME = "privkey.pem"
SERVICE_SUBDIR = "service"
SERVICE_FILENAME = "sing-box.service"
BINARY_SUBDIR = "binary"
VERSION_FILENAME = "sing-box-version.txt"

ARCHIVE_SUFFIX = ".tar.gz"
ENCRYPTED_SUFFIX = ".enc"
KEY_SUFFIX = ".key"


class BackupArchive(BaseModel):
    """A stored backup archive."""
    model_config = ConfigDict(frozen=True)

    path: Path
    name: str
    created_at: datetime
    encrypted: bool = False
    size: int = 0
    key_file: Optional[Path] = None

    @classmethod
    def from_path(cls, path: Path, key_file: Optional[Path] = None) -> "BackupArchive":
        """Describe an archive file already on disk."""
        stat = path.stat()
        return cls(
            path=path,
            name=archive_base_name(path.name),
            created_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
            encrypted=path.name.endswith(ENCRYPTED_SUFFIX),
            size=stat.st_size,
            key_file=key_file,
        )


class BackupMetadata(BaseModel):
    """Informational record written at the root of every archive."""
    model_config = ConfigDict(populate_by_name=True)

    backup_date: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    )
    hostname: str = "unknown"
    service_version: str = Field(default="unknown", alias="sing-box_version")
    backup_version: str = BACKUP_FORMAT_VERSION


class CertificatePair(BaseModel):
    """Certificate chain and private key for one domain."""
    domain: str
    fullchain: Path
    privkey: Path


class PasswordRecord(BaseModel):
    """An auto-generated archive password and the key file holding it."""
    password: str = Field(repr=False)
    key_file: Path


class StagedRestore(BaseModel):
    """Validated restore candidates, either extracted or copied to staging."""
    root: Path
    config_file: Path
    client_info: Optional[Path] = None
    certificates: Dict[str, CertificatePair] = Field(default_factory=dict)
    service_unit: Optional[Path] = None
    metadata: Optional[BackupMetadata] = None

    @property
    def domains(self) -> List[str]:
        return sorted(self.certificates)


class RestoreResult(BaseModel):
    """Outcome of a successful restore."""
    archive: Path
    state: str
    domains: List[str] = Field(default_factory=list)
    service_was_running: bool = False
    service_running: bool = False
    metadata: Optional[BackupMetadata] = None


class RollbackState(str, Enum):
    """States of the restore transaction."""
    IDLE = "idle"
    SNAPSHOTTING = "snapshotting"
    MUTATING = "mutating"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"
    ABORTED = "aborted"
    ROLLBACK_FAILED = "rollback_failed"


def archive_base_name(filename: str) -> str:
    """Strip the archive and encryption suffixes from a file name."""
    if filename.endswith(ENCRYPTED_SUFFIX):
        filename = filename[: -len(ENCRYPTED_SUFFIX)]
    if filename.endswith(ARCHIVE_SUFFIX):
        filename = filename[: -len(ARCHIVE_SUFFIX)]
    return filename
