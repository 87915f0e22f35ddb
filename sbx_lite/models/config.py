"""
Configuration models for sbx-lite.

This module defines the Pydantic models that carry every path and
setting the backup subsystem needs. A single SbxContext is built at
startup and handed to each component explicitly.
"""

import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from sbx_lite.core.exceptions import ConfigurationError
from sbx_lite.utils.helpers import load_config_file, merge_dicts


_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


class PathConfig(BaseModel):
    """Live and storage paths used by backup and restore."""
    model_config = ConfigDict(validate_assignment=True)

    config_dir: Path = Path("/etc/sing-box")
    config_file: Path = Path("/etc/sing-box/config.json")
    client_info: Path = Path("/etc/sing-box/client-info.txt")
    cert_dir_base: Path = Path("/etc/ssl/sbx")
    service_unit: Path = Path("/etc/systemd/system/sing-box.service")
    binary: Path = Path("/usr/local/bin/sing-box")
    backup_dir: Path = Path("/var/backups/sbx")
    temp_dir: Optional[Path] = None

    @property
    def key_dir(self) -> Path:
        """Directory holding auto-generated archive passwords."""
        return self.backup_dir / "backup-keys"

    def live_paths(self) -> List[Path]:
        """Every path a restore may overwrite."""
        return [
            self.config_dir,
            self.config_file,
            self.client_info,
            self.cert_dir_base,
            self.service_unit,
        ]


class ServiceSettings(BaseModel):
    """Service manager addressing."""
    name: str = "sing-box"
    systemctl: str = "systemctl"
    command_timeout: int = Field(default=30, ge=1)


class BackupSettings(BaseModel):
    """Backup, encryption and retention behaviour."""
    archive_prefix: str = "sbx-backup"
    retention_days: int = Field(default=30, ge=0)
    password_env: str = "BACKUP_PASSWORD"
    auto_start: bool = True
    force: bool = False
    verify_certificates: bool = True

    @field_validator('archive_prefix')
    @classmethod
    def prefix_is_benign(cls, v):
        if not v or not all(c.isalnum() or c in "-_" for c in v):
            raise ValueError('archive_prefix may only contain letters, digits, dash and underscore')
        return v


class SbxContext(BaseModel):
    """Explicit configuration object passed to every backup component."""
    paths: PathConfig = Field(default_factory=PathConfig)
    service: ServiceSettings = Field(default_factory=ServiceSettings)
    backup: BackupSettings = Field(default_factory=BackupSettings)

    @classmethod
    def from_sources(
        cls,
        config_file: Optional[Union[str, Path]] = None,
        environ: Optional[Mapping[str, str]] = None,
        overrides: Optional[Dict[str, Any]] = None
    ) -> "SbxContext":
        """
        Build a context from defaults, a config file, the environment and overrides.

        Later sources take precedence over earlier ones.

        Args:
            config_file: Optional YAML or JSON file
            environ: Environment mapping (defaults to os.environ)
            overrides: Nested dictionary applied last (CLI flags)

        Returns:
            Validated SbxContext
        """
        environ = os.environ if environ is None else environ
        data: Dict[str, Any] = {}

        if config_file:
            try:
                data = load_config_file(config_file) or {}
            except (OSError, ValueError) as e:
                raise ConfigurationError(f"Failed to load configuration file: {e}")
            if not isinstance(data, dict):
                raise ConfigurationError(f"Configuration file must contain a mapping: {config_file}")

        data = merge_dicts(data, _environment_overrides(environ))
        if overrides:
            data = merge_dicts(data, overrides)

        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}")


def _parse_bool(name: str, value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ConfigurationError(f"Invalid boolean for {name}: {value!r}")


def _environment_overrides(environ: Mapping[str, str]) -> Dict[str, Any]:
    """Translate the toolkit's historical environment variables."""
    paths: Dict[str, Any] = {}
    backup: Dict[str, Any] = {}

    if environ.get("BACKUP_DIR"):
        paths["backup_dir"] = environ["BACKUP_DIR"]
    if environ.get("CERT_DIR_BASE"):
        paths["cert_dir_base"] = environ["CERT_DIR_BASE"]
    if environ.get("BACKUP_RETENTION_DAYS"):
        backup["retention_days"] = environ["BACKUP_RETENTION_DAYS"]
    if "AUTO_START" in environ:
        backup["auto_start"] = _parse_bool("AUTO_START", environ["AUTO_START"])
    if "FORCE" in environ:
        backup["force"] = _parse_bool("FORCE", environ["FORCE"])

    result: Dict[str, Any] = {}
    if paths:
        result["paths"] = paths
    if backup:
        result["backup"] = backup
    return result
