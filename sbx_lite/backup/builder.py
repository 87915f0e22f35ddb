"""
Archive builder.

Gathers the live configuration, certificates and service unit into a
private temporary tree and packs it as a tar+gzip archive in the backup
directory.
"""

import json
import os
import shutil
import socket
import tarfile
import tempfile
import zlib
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from sbx_lite.backup.integrity import DOMAIN_PATTERN
from sbx_lite.core.exceptions import BackupError
from sbx_lite.models.backup import (
    ARCHIVE_SUFFIX,
    BINARY_SUBDIR,
    CERT_FILENAME,
    CERTIFICATES_SUBDIR,
    CLIENT_INFO_FILENAME,
    CONFIG_FILENAME,
    CONFIG_SUBDIR,
    ENCRYPTED_SUFFIX,
    KEY_FILENAME,
    METADATA_FILE,
    SERVICE_FILENAME,
    SERVICE_SUBDIR,
    VERSION_FILENAME,
    BackupArchive,
    BackupMetadata,
)
from sbx_lite.models.config import SbxContext
from sbx_lite.services.base import ConfigChecker
from sbx_lite.utils.helpers import PRIVATE_DIR_MODE, calculate_file_checksum, create_private_temp_dir
from sbx_lite.utils.logging import LogCategory, get_logger

logger = get_logger("backup.builder")


class ArchiveBuilder:
    """Creates backup archives from the live system."""

    def __init__(self, context: SbxContext, config_checker: ConfigChecker):
        self.context = context
        self.config_checker = config_checker
        self.warnings: List[str] = []

    def _warn(self, message: str):
        self.warnings.append(message)
        logger.warning(message, extra={"category": LogCategory.BACKUP})

    def archive_name(self, now: Optional[datetime] = None) -> str:
        """Pick a backup name that does not collide with an existing archive."""
        now = now or datetime.now()
        base = f"{self.context.backup.archive_prefix}-{now.strftime('%Y%m%d-%H%M%S')}"
        backup_dir = self.context.paths.backup_dir

        name = base
        counter = 1
        while any(
            (backup_dir / f"{name}{suffix}").exists()
            for suffix in (ARCHIVE_SUFFIX, ARCHIVE_SUFFIX + ENCRYPTED_SUFFIX)
        ):
            name = f"{base}-{counter}"
            counter += 1
        return name

    def create(self, now: Optional[datetime] = None) -> BackupArchive:
        """
        Create a plaintext backup archive.

        Args:
            now: Timestamp used for the archive name (defaults to local now)

        Returns:
            BackupArchive describing the written .tar.gz

        Raises:
            BackupError: If the archive cannot be written
        """
        self.warnings = []
        paths = self.context.paths

        try:
            paths.backup_dir.mkdir(parents=True, exist_ok=True)
            os.chmod(paths.backup_dir, PRIVATE_DIR_MODE)
        except OSError as e:
            raise BackupError(f"Failed to create backup directory {paths.backup_dir}: {e}")

        name = self.archive_name(now)
        archive_path = paths.backup_dir / f"{name}{ARCHIVE_SUFFIX}"
        logger.info(f"Creating backup: {name}", extra={"category": LogCategory.BACKUP, "archive": name})

        work_dir = None
        try:
            work_dir = create_private_temp_dir("sbx-backup", paths.temp_dir)
            tree = work_dir / name
            tree.mkdir(mode=PRIVATE_DIR_MODE)

            self._gather(tree)
            self._write_archive(tree, name, archive_path)
        except OSError as e:
            raise BackupError(f"Failed to create backup {name}: {e}")
        finally:
            if work_dir is not None:
                shutil.rmtree(work_dir, ignore_errors=True)

        archive = BackupArchive.from_path(archive_path)
        logger.info(f"Backup created: {archive_path} ({archive.size} bytes)", extra={"category": LogCategory.BACKUP, "archive": name})
        logger.debug(f"sha256 {calculate_file_checksum(archive_path)}", extra={"category": LogCategory.BACKUP, "archive": name})
        return archive

    def _gather(self, tree: Path):
        paths = self.context.paths

        version = self.config_checker.version() if self.config_checker.available else "unknown"
        metadata = BackupMetadata(hostname=socket.gethostname(), service_version=version)
        (tree / METADATA_FILE).write_text(
            json.dumps(metadata.model_dump(by_alias=True), indent=2) + "\n",
            encoding="utf-8"
        )

        config_dir = tree / CONFIG_SUBDIR
        config_dir.mkdir()
        if paths.config_file.is_file():
            shutil.copy2(paths.config_file, config_dir / CONFIG_FILENAME)
            logger.info("  ✓ Configuration file")
        else:
            self._warn(f"Configuration file not found: {paths.config_file}")

        if paths.client_info.is_file():
            shutil.copy2(paths.client_info, config_dir / CLIENT_INFO_FILENAME)
            logger.info("  ✓ Client info")

        self._gather_certificates(tree / CERTIFICATES_SUBDIR)

        if paths.service_unit.is_file():
            service_dir = tree / SERVICE_SUBDIR
            service_dir.mkdir()
            shutil.copy2(paths.service_unit, service_dir / SERVICE_FILENAME)
            logger.info("  ✓ Service file")
        else:
            self._warn(f"Service file not found: {paths.service_unit}")

        if paths.binary.is_file():
            binary_dir = tree / BINARY_SUBDIR
            binary_dir.mkdir()
            (binary_dir / VERSION_FILENAME).write_text(version + "\n", encoding="utf-8")
            logger.info(f"  ✓ Binary version info ({version})")

    def _gather_certificates(self, cert_tree: Path):
        cert_base = self.context.paths.cert_dir_base
        if not cert_base.is_dir():
            self._warn(f"Certificate directory not found: {cert_base}")
            return

        cert_tree.mkdir()
        for domain_dir in sorted(cert_base.iterdir()):
            if not domain_dir.is_dir():
                continue

            domain = domain_dir.name
            if not DOMAIN_PATTERN.fullmatch(domain):
                self._warn(f"Skipping certificate directory with unsupported name: {domain!r}")
                continue

            fullchain = domain_dir / CERT_FILENAME
            privkey = domain_dir / KEY_FILENAME
            if not (fullchain.is_file() and privkey.is_file()):
                self._warn(f"Skipping incomplete certificate set for domain: {domain}")
                continue

            target = cert_tree / domain
            target.mkdir(mode=PRIVATE_DIR_MODE)
            shutil.copy2(fullchain, target / CERT_FILENAME)
            shutil.copy2(privkey, target / KEY_FILENAME)
            logger.info(f"  ✓ Certificates: {domain}")

    def _write_archive(self, tree: Path, name: str, archive_path: Path):
        fd, tmp_name = tempfile.mkstemp(prefix=f".{name}.", suffix=".partial", dir=archive_path.parent)
        os.close(fd)
        try:
            with tarfile.open(tmp_name, "w:gz") as tar:
                tar.add(tree, arcname=name)
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, archive_path)
        except (OSError, tarfile.TarError, zlib.error) as e:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise BackupError(f"Failed to create archive {archive_path.name}: {e}")
