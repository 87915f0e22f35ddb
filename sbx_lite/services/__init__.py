"""
External collaborators: service manager, config checker, certificate validator.
"""

from sbx_lite.services.base import (
    CheckResult,
    ConfigChecker,
    ServiceController,
    CertificateValidator,
)
from sbx_lite.services.systemd import SystemdController
from sbx_lite.services.singbox import SingBoxConfigChecker
from sbx_lite.services.certificates import X509PairValidator

__all__ = [
    "CheckResult",
    "ConfigChecker",
    "ServiceController",
    "CertificateValidator",
    "SystemdController",
    "SingBoxConfigChecker",
    "X509PairValidator",
]
