"""
Archive integrity validation.

This module checks backup archives before and during extraction: the
archive must be a readable tar+gzip file holding exactly one top-level
directory whose name follows the backup naming grammar, no member may
escape the extraction root, and the extracted tree must contain the
mandatory configuration and complete certificate pairs.
"""

import json
import os
import re
import tarfile
import zlib
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from sbx_lite.core.exceptions import ArchiveIntegrityError
from sbx_lite.models.backup import (
    CERT_FILENAME,
    CERTIFICATES_SUBDIR,
    CLIENT_INFO_FILENAME,
    CONFIG_FILENAME,
    CONFIG_SUBDIR,
    KEY_FILENAME,
    METADATA_FILE,
    SERVICE_FILENAME,
    SERVICE_SUBDIR,
    BackupMetadata,
    CertificatePair,
    StagedRestore,
)
from sbx_lite.models.config import SbxContext
from sbx_lite.services.base import CertificateValidator
from sbx_lite.utils.logging import get_logger

logger = get_logger("backup.integrity")

BENIGN_SUFFIX = r"[A-Za-z0-9._-]*"
DOMAIN_PATTERN = re.compile(r"[A-Za-z0-9_*][A-Za-z0-9._*-]{0,252}")


def backup_name_pattern(prefix: str) -> "re.Pattern[str]":
    """Grammar for top-level directory names: <prefix>-YYYYMMDD-HHMMSS[suffix]."""
    return re.compile(rf"{re.escape(prefix)}-[0-9]{{8}}-[0-9]{{6}}{BENIGN_SUFFIX}")


class ValidationResult:
    """Result of archive validation."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self.is_valid = True
        self.errors: List[str] = []
        self.warnings: List[str] = []
        self.reason: Optional[str] = None
        self.top_level: Optional[str] = None
        self.member_count = 0
        self.validation_time = datetime.now(timezone.utc)

    def add_error(self, message: str, reason: str):
        """Add an error to the validation result."""
        self.errors.append(message)
        self.is_valid = False
        if self.reason is None:
            self.reason = reason

    def add_warning(self, message: str):
        """Add a warning to the validation result."""
        self.warnings.append(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert validation result to dictionary."""
        return {
            "path": str(self.path),
            "is_valid": self.is_valid,
            "reason": self.reason,
            "top_level": self.top_level,
            "member_count": self.member_count,
            "errors": self.errors,
            "warnings": self.warnings,
            "validation_time": self.validation_time.isoformat(),
        }


class ArchiveValidator:
    """Validates archive structure, extraction safety and extracted contents."""

    def __init__(
        self,
        context: SbxContext,
        certificate_validator: Optional[CertificateValidator] = None
    ):
        self.context = context
        self.certificate_validator = certificate_validator
        self.prefix = context.backup.archive_prefix
        self.name_pattern = backup_name_pattern(self.prefix)

    @property
    def expected_pattern(self) -> str:
        return f"{self.prefix}-YYYYMMDD-HHMMSS[A-Za-z0-9._-]*"

    def validate(self, path: Union[str, Path]) -> ValidationResult:
        """
        Validate an archive without extracting it.

        Args:
            path: Plaintext (decrypted) archive path

        Returns:
            ValidationResult describing every violation found
        """
        result = ValidationResult(path)
        archive = Path(path)

        if not archive.is_file():
            result.add_error(f"Backup archive not found: {archive}", "missing")
            return result

        if archive.stat().st_size == 0:
            result.add_error(f"Backup archive is empty: {archive}", "empty")
            return result

        try:
            with tarfile.open(archive, "r:gz") as tar:
                members = tar.getmembers()
        except (tarfile.TarError, OSError, EOFError, zlib.error) as e:
            result.add_error(f"Backup archive is corrupted or not a valid tar.gz file: {e}", "corrupt")
            return result

        result.member_count = len(members)
        if not members:
            result.add_error("Backup archive contains no entries", "empty")
            return result

        self._check_members(members, result)

        if result.is_valid:
            logger.debug(f"Archive structure validated: {result.top_level} ({len(members)} entries)")
        return result

    def ensure_valid(self, path: Union[str, Path]) -> str:
        """Validate an archive and return its top-level directory name, or raise."""
        result = self.validate(path)
        if not result.is_valid:
            raise ArchiveIntegrityError(
                result.errors[0],
                reason=result.reason,
                details={"archive": str(result.path), "violations": len(result.errors)}
            )
        return result.top_level

    def _check_members(self, members: List[tarfile.TarInfo], result: ValidationResult):
        top_levels = set()

        for member in members:
            name = member.name
            parts = PurePosixPath(name).parts

            if not parts:
                result.add_error(f"Archive entry with empty name", "invalid_member")
                continue
            if name.startswith("/") or "\\" in name:
                result.add_error(f"Absolute or non-POSIX path in archive: {name!r} (possible path traversal attempt)", "path_traversal")
                continue
            if ".." in parts:
                result.add_error(f"Parent-directory reference in archive: {name!r} (possible path traversal attempt)", "path_traversal")
                continue
            if not (member.isfile() or member.isdir()):
                result.add_error(f"Unsupported archive entry type for {name!r}: only files and directories are allowed", "invalid_member")
                continue

            top_levels.add(parts[0])

        if not result.is_valid:
            return

        if len(top_levels) != 1:
            result.add_error(
                f"Invalid backup structure: expected exactly one top-level directory, found {len(top_levels)}",
                "structure"
            )
            return

        top_level = top_levels.pop()
        if not self.name_pattern.fullmatch(top_level):
            result.add_error(
                f"Invalid backup directory name: {top_level!r} "
                f"(expected {self.expected_pattern}; possible path traversal attempt)",
                "naming"
            )
            return

        result.top_level = top_level

    def extract(self, path: Union[str, Path], dest_root: Union[str, Path]) -> Path:
        """
        Extract a validated archive, asserting containment of every entry.

        Args:
            path: Plaintext archive path
            dest_root: Private directory to extract into

        Returns:
            Path of the extracted top-level backup directory
        """
        top_level = self.ensure_valid(path)
        real_root = os.path.realpath(dest_root)

        try:
            with tarfile.open(path, "r:gz") as tar:
                members = tar.getmembers()
                for member in members:
                    if not (member.isfile() or member.isdir()):
                        raise ArchiveIntegrityError(
                            f"Unsupported archive entry type for {member.name!r}",
                            reason="invalid_member"
                        )
                    target = os.path.realpath(os.path.join(real_root, member.name))
                    if target == real_root or os.path.commonpath([real_root, target]) != real_root:
                        raise ArchiveIntegrityError(
                            f"Unsafe path inside archive: {member.name!r} resolves outside the staging root",
                            reason="path_traversal"
                        )
                for member in members:
                    tar.extract(member, path=real_root, filter="data")
        except (tarfile.TarError, OSError, EOFError, zlib.error) as e:
            raise ArchiveIntegrityError(f"Failed to extract archive: {e}", reason="corrupt")

        backup_root = Path(real_root) / top_level
        if not backup_root.is_dir():
            raise ArchiveIntegrityError(f"Backup directory not found after extraction: {top_level}", reason="structure")

        logger.info(f"Extracted {len(members)} entries from {Path(path).name}")
        return backup_root

    def validate_tree(self, backup_root: Union[str, Path]) -> StagedRestore:
        """
        Check the extracted tree and describe the restore candidates.

        Raises:
            ArchiveIntegrityError: mandatory config missing, a certificate
                pair incomplete or mismatched, or an empty service unit
        """
        root = Path(backup_root)

        config_file = root / CONFIG_SUBDIR / CONFIG_FILENAME
        if not config_file.is_file():
            raise ArchiveIntegrityError(
                f"Backup is missing required configuration file {CONFIG_SUBDIR}/{CONFIG_FILENAME}",
                reason="missing_config"
            )

        client_info = root / CONFIG_SUBDIR / CLIENT_INFO_FILENAME
        certificates = self._collect_certificates(root / CERTIFICATES_SUBDIR)

        service_unit = root / SERVICE_SUBDIR / SERVICE_FILENAME
        if service_unit.exists() and (not service_unit.is_file() or service_unit.stat().st_size == 0):
            raise ArchiveIntegrityError("Service file in backup is empty", reason="empty_service")

        return StagedRestore(
            root=root,
            config_file=config_file,
            client_info=client_info if client_info.is_file() else None,
            certificates=certificates,
            service_unit=service_unit if service_unit.is_file() else None,
            metadata=self.read_metadata(root),
        )

    def _collect_certificates(self, cert_root: Path) -> Dict[str, CertificatePair]:
        certificates: Dict[str, CertificatePair] = {}
        if not cert_root.is_dir():
            return certificates

        for domain_dir in sorted(cert_root.iterdir()):
            if not domain_dir.is_dir():
                logger.warning(f"Ignoring stray file in certificates/: {domain_dir.name}")
                continue

            domain = domain_dir.name
            if not DOMAIN_PATTERN.fullmatch(domain):
                raise ArchiveIntegrityError(f"Invalid certificate domain directory name: {domain!r}", reason="invalid_domain")

            missing = [name for name in (CERT_FILENAME, KEY_FILENAME) if not (domain_dir / name).is_file()]
            if missing:
                raise ArchiveIntegrityError(
                    f"Certificate set incomplete for domain: {domain} (missing {', '.join(missing)})",
                    reason="incomplete_certificate_pair",
                    details={"domain": domain, "missing": ", ".join(missing)}
                )

            pair = CertificatePair(
                domain=domain,
                fullchain=domain_dir / CERT_FILENAME,
                privkey=domain_dir / KEY_FILENAME,
            )

            if self.certificate_validator is not None:
                check = self.certificate_validator.validate_pair(pair.fullchain, pair.privkey)
                if not check.ok:
                    raise ArchiveIntegrityError(
                        f"Certificate pair for {domain} is invalid: {check.output}",
                        reason="certificate_mismatch",
                        details={"domain": domain}
                    )

            certificates[domain] = pair

        return certificates

    def read_metadata(self, root: Path) -> Optional[BackupMetadata]:
        """Read the informational metadata record; problems are only logged."""
        metadata_path = root / METADATA_FILE
        if not metadata_path.is_file():
            logger.warning("Backup has no metadata record")
            return None
        try:
            return BackupMetadata.model_validate(json.loads(metadata_path.read_text(encoding="utf-8")))
        except (OSError, ValueError, PydanticValidationError) as e:
            logger.warning(f"Ignoring unreadable metadata record: {e}")
            return None
