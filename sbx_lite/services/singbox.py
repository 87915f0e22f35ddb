"""
sing-box binary collaborator.

Wraps ``sing-box check -c <path>`` and ``sing-box version``.
"""

import os
import subprocess
import logging
from pathlib import Path

from sbx_lite.models.config import SbxContext
from sbx_lite.services.base import CheckResult, ConfigChecker

logger = logging.getLogger(__name__)


class SingBoxConfigChecker(ConfigChecker):
    """Validates configurations with the installed sing-box binary."""

    def __init__(self, context: SbxContext):
        self.binary = context.paths.binary
        self.timeout = context.service.command_timeout

    @property
    def available(self) -> bool:
        return self.binary.is_file() and os.access(self.binary, os.X_OK)

    def check(self, config_path: Path) -> CheckResult:
        cmd = [str(self.binary), "check", "-c", str(config_path)]
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout
            )
        except subprocess.TimeoutExpired:
            return CheckResult(ok=False, output=f"sing-box check timed out after {self.timeout}s", returncode=-1)
        except OSError as e:
            return CheckResult(ok=False, output=f"Failed to run sing-box check: {e}", returncode=-1)

        output = (result.stdout + result.stderr).strip()
        return CheckResult(ok=result.returncode == 0, output=output, returncode=result.returncode)

    def version(self) -> str:
        if not self.available:
            return "unknown"
        try:
            result = subprocess.run(
                [str(self.binary), "version"],
                capture_output=True,
                text=True,
                timeout=self.timeout
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.debug(f"sing-box version failed: {e}")
            return "unknown"

        lines = result.stdout.strip().splitlines()
        if result.returncode != 0 or not lines:
            return "unknown"
        return lines[0]
