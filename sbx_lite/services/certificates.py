"""Certificate/private-key pair validation using cryptography."""

import logging
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives import serialization

from sbx_lite.services.base import CertificateValidator, CheckResult

logger = logging.getLogger(__name__)


class X509PairValidator(CertificateValidator):
    """Checks that the leaf certificate's public key matches the private key."""

    def validate_pair(self, fullchain: Path, privkey: Path) -> CheckResult:
        try:
            certificate = x509.load_pem_x509_certificate(fullchain.read_bytes())
        except (OSError, ValueError) as e:
            return CheckResult(ok=False, output=f"Unreadable certificate {fullchain.name}: {e}", returncode=1)

        try:
            private_key = serialization.load_pem_private_key(privkey.read_bytes(), password=None)
        except (OSError, ValueError, TypeError) as e:
            return CheckResult(ok=False, output=f"Unreadable private key {privkey.name}: {e}", returncode=1)

        public_format = serialization.PublicFormat.SubjectPublicKeyInfo
        cert_public = certificate.public_key().public_bytes(serialization.Encoding.DER, public_format)
        key_public = private_key.public_key().public_bytes(serialization.Encoding.DER, public_format)

        if cert_public != key_public:
            return CheckResult(ok=False, output="Certificate does not match private key", returncode=1)

        logger.debug(f"Certificate pair matches: {fullchain.parent.name}")
        return CheckResult(ok=True)
