"""Private staging area for restore candidates."""

import os
import shutil
from pathlib import Path
from typing import Optional

from sbx_lite.core.exceptions import ConfigurationError, ExternalValidationError
from sbx_lite.models.backup import (
    CERT_FILENAME,
    CERTIFICATES_SUBDIR,
    CLIENT_INFO_FILENAME,
    CONFIG_FILENAME,
    CONFIG_SUBDIR,
    KEY_FILENAME,
    SERVICE_FILENAME,
    SERVICE_SUBDIR,
    CertificatePair,
    StagedRestore,
)
from sbx_lite.models.config import SbxContext
from sbx_lite.services.base import ConfigChecker
from sbx_lite.utils.helpers import PRIVATE_DIR_MODE, create_private_temp_dir, is_within
from sbx_lite.utils.logging import LogCategory, get_logger

logger = get_logger("backup.staging")


class StagingArea:
    """
    Temporary directory holding the extracted archive and the staged copies.

    Nothing under the staging area is ever a live path, so everything done
    here before the rollback manager takes over is free of side effects.
    """

    def __init__(self, context: SbxContext, config_checker: ConfigChecker):
        self.context = context
        self.config_checker = config_checker
        self.root: Optional[Path] = None

    def __enter__(self) -> "StagingArea":
        return self.open()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.discard()
        return False

    @property
    def extract_dir(self) -> Path:
        return self._require_root() / "extract"

    @property
    def stage_dir(self) -> Path:
        return self._require_root() / "stage"

    def _require_root(self) -> Path:
        if self.root is None:
            raise RuntimeError("Staging area is not open")
        return self.root

    def open(self) -> "StagingArea":
        """Create the private staging directory."""
        try:
            root = create_private_temp_dir("sbx-restore", self.context.paths.temp_dir)
        except OSError as e:
            raise ConfigurationError(f"Failed to create staging directory: {e}")

        for live_path in self.context.paths.live_paths():
            if is_within(root, live_path) or is_within(live_path, root):
                shutil.rmtree(root, ignore_errors=True)
                raise ConfigurationError(
                    f"Staging directory {root} overlaps live path {live_path}; choose another temp_dir"
                )

        self.root = root
        os.mkdir(self.extract_dir, PRIVATE_DIR_MODE)
        os.mkdir(self.stage_dir, PRIVATE_DIR_MODE)
        logger.debug(f"Staging area created: {root}")
        return self

    def stage(self, candidate: StagedRestore) -> StagedRestore:
        """
        Copy validated candidates out of the extracted tree.

        Args:
            candidate: Result of ArchiveValidator.validate_tree()

        Returns:
            StagedRestore pointing into the stage directory
        """
        stage = self.stage_dir
        try:
            config_dir = stage / CONFIG_SUBDIR
            config_dir.mkdir(mode=PRIVATE_DIR_MODE)
            config_file = Path(shutil.copy2(candidate.config_file, config_dir / CONFIG_FILENAME))

            client_info = None
            if candidate.client_info is not None:
                client_info = Path(shutil.copy2(candidate.client_info, config_dir / CLIENT_INFO_FILENAME))

            certificates = {}
            for domain, pair in candidate.certificates.items():
                domain_dir = stage / CERTIFICATES_SUBDIR / domain
                domain_dir.mkdir(mode=PRIVATE_DIR_MODE, parents=True)
                certificates[domain] = CertificatePair(
                    domain=domain,
                    fullchain=Path(shutil.copy2(pair.fullchain, domain_dir / CERT_FILENAME)),
                    privkey=Path(shutil.copy2(pair.privkey, domain_dir / KEY_FILENAME)),
                )

            service_unit = None
            if candidate.service_unit is not None:
                service_dir = stage / SERVICE_SUBDIR
                service_dir.mkdir(mode=PRIVATE_DIR_MODE)
                service_unit = Path(shutil.copy2(candidate.service_unit, service_dir / SERVICE_FILENAME))
        except OSError as e:
            raise ConfigurationError(f"Failed to stage restore candidates: {e}")

        logger.info(
            f"Staged configuration, {len(certificates)} certificate set(s)"
            f"{' and service unit' if service_unit else ''}",
            extra={"category": LogCategory.RESTORE}
        )
        return StagedRestore(
            root=stage,
            config_file=config_file,
            client_info=client_info,
            certificates=certificates,
            service_unit=service_unit,
            metadata=candidate.metadata,
        )

    def check_config(self, staged: StagedRestore):
        """
        Run the service's own config check on the staged configuration.

        Raises:
            ExternalValidationError: If the check exits non-zero
        """
        if not self.config_checker.available:
            logger.warning("sing-box binary not available, skipping configuration validation")
            return

        result = self.config_checker.check(staged.config_file)
        if not result.ok:
            raise ExternalValidationError(
                "Configuration in backup failed sing-box validation",
                output=result.output,
                details={"exit_code": result.returncode}
            )

        logger.info("  ✓ Configuration validated")

    def discard(self):
        """Remove the staging directory; safe to call more than once."""
        if self.root is None:
            return
        shutil.rmtree(self.root, ignore_errors=True)
        logger.debug(f"Staging area removed: {self.root}")
        self.root = None
