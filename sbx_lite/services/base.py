"""
Collaborator interfaces for the backup subsystem.

The restore state machine never shells out directly; it talks to the
service manager, the proxy's config checker and the certificate
validator through these small interfaces so test doubles can stand in
for systemd and sing-box.
"""

from abc import ABC, abstractmethod
from pathlib import Path

from pydantic import BaseModel


class CheckResult(BaseModel):
    """Result of an external check."""
    ok: bool
    output: str = ""
    returncode: int = 0


class ConfigChecker(ABC):
    """Runs the proxy's own configuration-validity check."""

    @property
    @abstractmethod
    def available(self) -> bool:
        """Whether the checking binary is present and executable."""
        pass

    @abstractmethod
    def check(self, config_path: Path) -> CheckResult:
        """
        Validate a configuration file.

        Args:
            config_path: Path to the configuration to check

        Returns:
            CheckResult; ok is True only for exit code 0
        """
        pass

    @abstractmethod
    def version(self) -> str:
        """Return the installed service version string, or "unknown"."""
        pass


class ServiceController(ABC):
    """Service-lifecycle operations addressed by service name."""

    @property
    @abstractmethod
    def available(self) -> bool:
        """Whether a service manager is present on this host."""
        pass

    @abstractmethod
    def is_active(self, name: str) -> bool:
        pass

    @abstractmethod
    def start(self, name: str) -> bool:
        pass

    @abstractmethod
    def stop(self, name: str) -> bool:
        pass

    @abstractmethod
    def restart(self, name: str) -> bool:
        pass

    @abstractmethod
    def reload(self, name: str) -> bool:
        pass

    @abstractmethod
    def daemon_reload(self) -> bool:
        pass


class CertificateValidator(ABC):
    """Checks that a certificate chain and private key belong together."""

    @abstractmethod
    def validate_pair(self, fullchain: Path, privkey: Path) -> CheckResult:
        pass
