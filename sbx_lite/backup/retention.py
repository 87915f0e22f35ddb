"""Age-based retention for stored backup archives."""

import re
import time
from pathlib import Path
from typing import List, Optional

from sbx_lite.backup.integrity import BENIGN_SUFFIX
from sbx_lite.core.exceptions import BackupError, UserInputError
from sbx_lite.models.backup import ENCRYPTED_SUFFIX, KEY_SUFFIX, BackupArchive, archive_base_name
from sbx_lite.models.config import SbxContext
from sbx_lite.utils.logging import LogCategory, get_logger

logger = get_logger("backup.retention")

SECONDS_PER_DAY = 86400


class RetentionEnforcer:
    """Deletes archives older than the retention window."""

    def __init__(self, context: SbxContext, now: Optional[float] = None):
        self.context = context
        self.now = now
        prefix = re.escape(context.backup.archive_prefix)
        self.filename_pattern = re.compile(
            rf"{prefix}-[0-9]{{8}}-[0-9]{{6}}{BENIGN_SUFFIX}\.tar\.gz(\.enc)?"
        )

    def _archive_files(self) -> List[Path]:
        backup_dir = self.context.paths.backup_dir
        if not backup_dir.is_dir():
            return []
        return [
            path for path in backup_dir.iterdir()
            if self.filename_pattern.fullmatch(path.name)
            and path.is_file() and not path.is_symlink()
        ]

    def key_file_for(self, archive_path: Path) -> Path:
        return self.context.paths.key_dir / f"{archive_base_name(archive_path.name)}{KEY_SUFFIX}"

    def list_archives(self) -> List[BackupArchive]:
        """Stored archives, newest first."""
        archives = []
        for path in self._archive_files():
            key_file = self.key_file_for(path)
            archives.append(BackupArchive.from_path(path, key_file if key_file.is_file() else None))
        return sorted(archives, key=lambda archive: archive.created_at, reverse=True)

    def cleanup(self, retention_days: Optional[int] = None) -> int:
        """
        Delete archives whose modification time is older than the window.

        Args:
            retention_days: Window in days (defaults to the configured value)

        Returns:
            Number of archives deleted
        """
        if retention_days is None:
            retention_days = self.context.backup.retention_days
        if retention_days < 0:
            raise UserInputError(f"Retention days must be zero or positive, got {retention_days}")

        now = self.now if self.now is not None else time.time()
        cutoff = now - retention_days * SECONDS_PER_DAY
        deleted = 0

        for path in self._archive_files():
            if path.stat().st_mtime >= cutoff:
                continue

            try:
                path.unlink()
                if path.name.endswith(ENCRYPTED_SUFFIX):
                    key_file = self.key_file_for(path)
                    if key_file.is_file():
                        key_file.unlink()
            except OSError as e:
                raise BackupError(f"Failed to delete old backup {path.name}: {e}")

            deleted += 1
            logger.info(f"Deleted old backup: {path.name}", extra={"category": LogCategory.RETENTION})

        if deleted:
            logger.info(f"Deleted {deleted} old backup(s) (older than {retention_days} days)")
        else:
            logger.debug(f"No backups older than {retention_days} days")
        return deleted
