"""
Pytest configuration and fixtures for the sbx-lite tests.

This module provides a throwaway "live system" under tmp_path, test
doubles for the service manager and the sing-box config check, real
self-signed certificates, and a factory for hand-crafted archives.
"""

import io
import tarfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Tuple

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from sbx_lite.backup.manager import BackupManager
from sbx_lite.models.config import PathConfig, SbxContext
from sbx_lite.services.base import CheckResult, ConfigChecker, ServiceController


CONFIG_JSON = b'{\n  "log": {"level": "info"},\n  "inbounds": [{"type": "vless", "listen_port": 443}]\n}\n'
CLIENT_INFO = b"UUID=7c1f0d5e-1111-2222-3333-444455556666\nDOMAIN=example.com\n"
SERVICE_UNIT = b"[Unit]\nDescription=sing-box\n\n[Service]\nExecStart=/usr/local/bin/sing-box run -c /etc/sing-box/config.json\n"


class FakeServiceController(ServiceController):
    """In-memory service manager recording every call."""

    def __init__(self, active: bool = False, available: bool = True):
        self.active = active
        self._available = available
        self.calls: List[str] = []
        self.fail_start = False
        self.fail_stop = False
        self.fail_daemon_reload = False

    @property
    def available(self) -> bool:
        return self._available

    def is_active(self, name: str) -> bool:
        self.calls.append(f"is-active {name}")
        return self.active

    def start(self, name: str) -> bool:
        self.calls.append(f"start {name}")
        if self.fail_start:
            return False
        self.active = True
        return True

    def stop(self, name: str) -> bool:
        self.calls.append(f"stop {name}")
        if self.fail_stop:
            return False
        self.active = False
        return True

    def restart(self, name: str) -> bool:
        self.calls.append(f"restart {name}")
        if self.fail_start:
            return False
        self.active = True
        return True

    def reload(self, name: str) -> bool:
        self.calls.append(f"reload {name}")
        return True

    def daemon_reload(self) -> bool:
        self.calls.append("daemon-reload")
        return not self.fail_daemon_reload


class FakeConfigChecker(ConfigChecker):
    """Config checker double; remembers the paths it was asked to check."""

    def __init__(self, ok: bool = True, output: str = "", available: bool = True, version: str = "sing-box version 1.10.1"):
        self.ok = ok
        self.output = output
        self._available = available
        self._version = version
        self.checked: List[Path] = []

    @property
    def available(self) -> bool:
        return self._available

    def check(self, config_path: Path) -> CheckResult:
        self.checked.append(Path(config_path))
        return CheckResult(ok=self.ok, output=self.output, returncode=0 if self.ok else 1)

    def version(self) -> str:
        return self._version


def make_certificate_pair(common_name: str) -> Tuple[bytes, bytes]:
    """Return (fullchain PEM, private key PEM) for a fresh self-signed certificate."""
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    now = datetime.now(timezone.utc)
    certificate = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=90))
        .sign(key, hashes.SHA256())
    )
    fullchain = certificate.public_bytes(serialization.Encoding.PEM)
    privkey = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    )
    return fullchain, privkey


def read_tree(root: Path) -> Dict[str, bytes]:
    """Map every regular file under root (relative POSIX path) to its content."""
    if not root.exists():
        return {}
    return {
        path.relative_to(root).as_posix(): path.read_bytes()
        for path in sorted(root.rglob("*"))
        if path.is_file()
    }


@pytest.fixture
def live_root(tmp_path) -> Path:
    """Root of the simulated live filesystem."""
    root = tmp_path / "live"
    root.mkdir()
    return root


@pytest.fixture
def context(tmp_path, live_root) -> SbxContext:
    """Context whose every path points into tmp_path."""
    temp_dir = tmp_path / "tmp"
    temp_dir.mkdir()
    return SbxContext(
        paths=PathConfig(
            config_dir=live_root / "etc/sing-box",
            config_file=live_root / "etc/sing-box/config.json",
            client_info=live_root / "etc/sing-box/client-info.txt",
            cert_dir_base=live_root / "etc/ssl/sbx",
            service_unit=live_root / "etc/systemd/system/sing-box.service",
            binary=live_root / "usr/local/bin/sing-box",
            backup_dir=tmp_path / "backups",
            temp_dir=temp_dir,
        )
    )


@pytest.fixture
def certificate_pair() -> Tuple[bytes, bytes]:
    """A matching certificate and private key."""
    return make_certificate_pair("example.com")


@pytest.fixture
def populate_live(context, certificate_pair) -> Callable[..., SbxContext]:
    """Write a complete live installation into the context's paths."""

    def _populate(
        domains: Iterable[str] = ("example.com",),
        config: bytes = CONFIG_JSON,
        service_unit: Optional[bytes] = SERVICE_UNIT
    ) -> SbxContext:
        paths = context.paths
        paths.config_dir.mkdir(parents=True, exist_ok=True)
        paths.config_file.write_bytes(config)
        paths.client_info.write_bytes(CLIENT_INFO)

        for domain in domains:
            domain_dir = paths.cert_dir_base / domain
            domain_dir.mkdir(parents=True, exist_ok=True)
            fullchain, privkey = make_certificate_pair(domain) if domain != "example.com" else certificate_pair
            (domain_dir / "fullchain.pem").write_bytes(fullchain)
            (domain_dir / "privkey.pem").write_bytes(privkey)

        if service_unit is not None:
            paths.service_unit.parent.mkdir(parents=True, exist_ok=True)
            paths.service_unit.write_bytes(service_unit)
        return context

    return _populate


@pytest.fixture
def service_controller() -> FakeServiceController:
    """Service manager double reporting a running service."""
    return FakeServiceController(active=True)


@pytest.fixture
def config_checker() -> FakeConfigChecker:
    """Config checker double that accepts every configuration."""
    return FakeConfigChecker()


@pytest.fixture
def manager(context, service_controller, config_checker) -> BackupManager:
    """BackupManager wired to the test doubles, confirming every restore."""
    return BackupManager(
        context,
        service_controller=service_controller,
        config_checker=config_checker,
        confirm=lambda message: True,
        environ={},
    )


@pytest.fixture
def archive_factory(tmp_path) -> Callable[..., Path]:
    """Build a tar.gz archive from explicit entries."""

    def _make(
        name: str,
        files: Dict[str, bytes],
        directories: Iterable[str] = (),
        symlinks: Optional[Dict[str, str]] = None
    ) -> Path:
        archive_path = tmp_path / "crafted" / name
        archive_path.parent.mkdir(parents=True, exist_ok=True)
        with tarfile.open(archive_path, "w:gz") as tar:
            for directory in directories:
                info = tarfile.TarInfo(directory)
                info.type = tarfile.DIRTYPE
                info.mode = 0o755
                tar.addfile(info)
            for member_name, data in files.items():
                info = tarfile.TarInfo(member_name)
                info.size = len(data)
                info.mode = 0o644
                tar.addfile(info, io.BytesIO(data))
            for member_name, target in (symlinks or {}).items():
                info = tarfile.TarInfo(member_name)
                info.type = tarfile.SYMTYPE
                info.linkname = target
                tar.addfile(info)
        return archive_path

    return _make
