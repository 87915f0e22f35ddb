"""
Backup manager for creating, restoring and managing backups.

This module provides the BackupManager class that wires the archive
builder, encryption wrapper, integrity validator, staging area, rollback
manager and retention enforcer into the four user-facing operations.
"""

import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Mapping, Optional, Union

from rich.prompt import Confirm

from sbx_lite.backup.builder import ArchiveBuilder
from sbx_lite.backup.encryption import BackupEncryptor
from sbx_lite.backup.integrity import ArchiveValidator
from sbx_lite.backup.retention import RetentionEnforcer
from sbx_lite.backup.rollback import RestoreTransaction, RollbackManager
from sbx_lite.backup.staging import StagingArea
from sbx_lite.core.exceptions import ArchiveIntegrityError, BackupError, UserInputError
from sbx_lite.models.backup import ENCRYPTED_SUFFIX, BackupArchive, RestoreResult
from sbx_lite.models.config import SbxContext
from sbx_lite.services import (
    CertificateValidator,
    ConfigChecker,
    ServiceController,
    SingBoxConfigChecker,
    SystemdController,
    X509PairValidator,
)
from sbx_lite.utils.logging import LogCategory, get_logger

logger = get_logger("backup.manager")


def _confirm_restore(message: str) -> bool:
    return Confirm.ask(message, default=False)


class BackupManager:
    """Main backup manager class for creating, restoring and managing backups."""

    def __init__(
        self,
        context: SbxContext,
        service_controller: Optional[ServiceController] = None,
        config_checker: Optional[ConfigChecker] = None,
        certificate_validator: Optional[CertificateValidator] = None,
        prompt: Optional[Callable[[str], str]] = None,
        confirm: Optional[Callable[[str], bool]] = None,
        environ: Optional[Mapping[str, str]] = None
    ):
        self.context = context
        self.environ = os.environ if environ is None else environ
        self.service_controller = service_controller or SystemdController(context)
        self.config_checker = config_checker or SingBoxConfigChecker(context)

        if context.backup.verify_certificates:
            certificate_validator = certificate_validator or X509PairValidator()
        else:
            certificate_validator = None

        self.validator = ArchiveValidator(context, certificate_validator)
        self.encryptor = BackupEncryptor(context, prompt=prompt, environ=self.environ)
        self.retention = RetentionEnforcer(context)
        self.confirm = confirm

    def create(
        self,
        encrypt: bool = False,
        password: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> BackupArchive:
        """
        Create a backup, optionally encrypted, then apply retention.

        Args:
            encrypt: Encrypt the archive
            password: Encryption password; falls back to the password
                environment variable, then to a generated key file
            now: Timestamp for the archive name

        Returns:
            BackupArchive for the stored (possibly encrypted) file
        """
        builder = ArchiveBuilder(self.context, self.config_checker)
        archive = builder.create(now)

        if encrypt:
            password = password or self.environ.get(self.context.backup.password_env) or None
            result = self.encryptor.encrypt(archive.path, password)
            archive = BackupArchive.from_path(result.encrypted_path, result.key_file)
            if result.generated:
                logger.warning(
                    f"Password saved to {result.key_file}; keep this file safe, "
                    "it is required to restore the backup",
                    extra={"category": LogCategory.ENCRYPTION}
                )

        try:
            self.retention.cleanup()
        except BackupError as e:
            logger.warning(f"Retention cleanup failed: {e}")

        return archive

    def _confirm(self, archive: Path):
        confirm = self.confirm
        if confirm is None:
            if not sys.stdin.isatty():
                raise UserInputError("Restore needs confirmation; re-run with --force or FORCE=1")
            confirm = _confirm_restore

        logger.warning("This will replace the current configuration, certificates and service unit")
        if not confirm(f"Restore from {archive.name}?"):
            raise UserInputError("Restore cancelled")

    def restore(
        self,
        archive_path: Union[str, Path],
        password: Optional[str] = None,
        force: Optional[bool] = None,
        auto_start: Optional[bool] = None
    ) -> RestoreResult:
        """
        Restore the live system from an archive.

        Either every artifact in the archive lands in place, or the live
        system is left as it was before the call.

        Args:
            archive_path: .tar.gz or .tar.gz.enc archive
            password: Password for encrypted archives
            force: Skip the confirmation prompt (defaults to configuration)
            auto_start: Start the service after restore even if it was not
                running before (defaults to configuration)

        Returns:
            RestoreResult describing the committed restore
        """
        archive = Path(archive_path)
        if not archive.is_file():
            raise ArchiveIntegrityError(f"Backup file not found: {archive}", reason="missing")

        if not (self.context.backup.force if force is None else force):
            self._confirm(archive)

        logger.info(f"Restoring from backup: {archive.name}", extra={"category": LogCategory.RESTORE, "archive": archive.name})

        with StagingArea(self.context, self.config_checker) as staging:
            plaintext = archive
            if archive.name.endswith(ENCRYPTED_SUFFIX):
                plaintext = self.encryptor.decrypt(archive, staging.root, password)

            backup_root = self.validator.extract(plaintext, staging.extract_dir)
            candidate = self.validator.validate_tree(backup_root)
            if candidate.metadata is not None:
                logger.info(
                    f"Backup taken {candidate.metadata.backup_date} on {candidate.metadata.hostname} "
                    f"(sing-box {candidate.metadata.service_version})"
                )

            staged = staging.stage(candidate)
            staging.check_config(staged)

            rollback = RollbackManager(self.context, self.service_controller, auto_start=auto_start)
            with RestoreTransaction(rollback):
                rollback.snapshot(staged)
                rollback.apply(staged)
                rollback.commit()

        logger.info("Restore completed successfully", extra={"category": LogCategory.RESTORE, "archive": archive.name})
        return RestoreResult(
            archive=archive,
            state=rollback.state.value,
            domains=staged.domains,
            service_was_running=rollback.service_was_running,
            service_running=rollback.service_running,
            metadata=candidate.metadata,
        )

    def list_backups(self) -> List[BackupArchive]:
        """Stored archives, newest first."""
        return self.retention.list_archives()

    def cleanup(self, retention_days: Optional[int] = None) -> int:
        """Delete archives older than the retention window."""
        return self.retention.cleanup(retention_days)
