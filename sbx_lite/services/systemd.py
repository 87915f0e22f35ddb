"""systemd-backed service controller."""

import shutil
import subprocess
import logging
from typing import List

from sbx_lite.models.config import SbxContext
from sbx_lite.services.base import ServiceController

logger = logging.getLogger(__name__)


class SystemdController(ServiceController):
    """Drives the service through systemctl."""

    def __init__(self, context: SbxContext):
        self.systemctl = context.service.systemctl
        self.timeout = context.service.command_timeout

    @property
    def available(self) -> bool:
        return shutil.which(self.systemctl) is not None

    def _run(self, args: List[str]) -> bool:
        cmd = [self.systemctl, *args]
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.warning(f"{' '.join(cmd)} failed: {e}")
            return False

        if result.returncode != 0 and args[0] != "is-active":
            logger.debug(f"{' '.join(cmd)} exited {result.returncode}: {result.stderr.strip()}")
        return result.returncode == 0

    def is_active(self, name: str) -> bool:
        return self._run(["is-active", "--quiet", name])

    def start(self, name: str) -> bool:
        return self._run(["start", name])

    def stop(self, name: str) -> bool:
        return self._run(["stop", name])

    def restart(self, name: str) -> bool:
        return self._run(["restart", name])

    def reload(self, name: str) -> bool:
        return self._run(["reload", name])

    def daemon_reload(self) -> bool:
        return self._run(["daemon-reload"])
