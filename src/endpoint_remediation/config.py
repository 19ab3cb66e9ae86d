"""
Configuration management for endpoint remediation.

Settings come from REMEDIATION_* environment variables, optionally seeded
from a YAML file and overridden on the command line. The disk threshold
has no default and must be configured explicitly.
"""

import os
import re
import tempfile
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError
from .models import DeviceIdentity


class ApiFailurePolicy(str, Enum):
    """How a failed report submission is recorded."""
    DEMOTE = "demote"
    CRITICAL = "critical"


class DriverMode(str, Enum):
    """What the driver remediation does with outdated drivers."""
    REPORT = "report"
    UPDATE = "update"


def _default_output_dir() -> Path:
    base = os.environ.get("LOCALAPPDATA")
    if base:
        return Path(base) / "EndpointRemediation"
    return Path.home() / "AppData" / "Local" / "EndpointRemediation"


def _default_driver_log_dir() -> Path:
    base = os.environ.get("ProgramData", r"C:\ProgramData")
    return Path(base) / "Microsoft" / "IntuneManagementExtension" / "Logs"


def _default_fallback_dir() -> Path:
    return Path(tempfile.gettempdir())


class RemediationSettings(BaseSettings):
    """Endpoint remediation settings."""

    # ========================================================================
    # Reporting
    # ========================================================================

    endpoint_url: Optional[str] = Field(
        default=None,
        description="Reporting endpoint; submission is skipped when unset"
    )

    id_group: Optional[Union[int, str]] = Field(
        default=None,
        description="Device group identifier sent with every report"
    )

    id_device: Optional[int] = Field(
        default=None,
        description="Device identifier sent with every report"
    )

    api_failure_policy: ApiFailurePolicy = Field(
        default=ApiFailurePolicy.DEMOTE,
        description="Record submission failures as file-level or critical errors"
    )

    http_timeout_seconds: float = Field(
        default=30,
        gt=0,
        le=600,
        description="Total timeout for the report POST"
    )

    max_body_bytes: int = Field(
        default=1024 * 1024,
        ge=1024,
        description="Largest report body that will be sent"
    )

    signing_key_file: Optional[Path] = Field(
        default=None,
        description="Ed25519 key used to sign persisted reports"
    )

    # ========================================================================
    # Storage Paths
    # ========================================================================

    output_dir: Path = Field(
        default_factory=_default_output_dir,
        description="Per-user directory for result files"
    )

    fallback_dir: Path = Field(
        default_factory=_default_fallback_dir,
        description="Used when the preferred directory is not writable"
    )

    driver_log_dir: Path = Field(
        default_factory=_default_driver_log_dir,
        description="Management-agent log directory for driver reports"
    )

    # ========================================================================
    # Disk
    # ========================================================================

    disk_threshold_percent: Optional[float] = Field(
        default=None,
        gt=0,
        le=100,
        description="Flag a volume when used space reaches this percentage"
    )

    disk_drive: str = Field(
        default="C:",
        description="Volume to measure"
    )

    temp_paths: List[Path] = Field(
        default_factory=list,
        description="Directories emptied during disk remediation"
    )

    profile_max_age_days: Optional[int] = Field(
        default=None,
        ge=1,
        description="Remove user profiles unused for longer than this"
    )

    # ========================================================================
    # Service
    # ========================================================================

    service_name: Optional[str] = Field(
        default=None,
        description="Service that must be running"
    )

    # ========================================================================
    # Cache
    # ========================================================================

    cache_paths: List[Path] = Field(
        default_factory=list,
        description="Cache roots measured and cleaned"
    )

    cache_threshold_bytes: Optional[int] = Field(
        default=None,
        ge=0,
        description="Flag when total cache size exceeds this"
    )

    # ========================================================================
    # Print Queue
    # ========================================================================

    print_job_max_age_minutes: int = Field(
        default=60,
        ge=1,
        description="Jobs submitted longer ago than this are stuck"
    )

    # ========================================================================
    # Drivers
    # ========================================================================

    driver_max_age_days: int = Field(
        default=730,
        ge=1,
        description="Drivers older than this need an update"
    )

    printer_driver_max_age_days: int = Field(
        default=365,
        ge=1,
        description="Printer drivers older than this need an update"
    )

    driver_bad_patterns: List[str] = Field(
        default_factory=lambda: [
            r"Microsoft Basic Display Adapter",
            r"Microsoft Basic Render Driver",
            r"Standard VGA Graphics Adapter",
        ],
        description="Regexes matched against driver name and version"
    )

    driver_mode: DriverMode = Field(
        default=DriverMode.REPORT,
        description="Report outdated drivers or try to update them"
    )

    # ========================================================================
    # Logging
    # ========================================================================

    log_level: str = Field(
        default="INFO",
        description="Log level"
    )

    use_colors: bool = Field(
        default=True,
        description="Color console output by severity"
    )

    model_config = SettingsConfigDict(
        env_prefix="REMEDIATION_",
        validate_assignment=True,
        extra="forbid"
    )

    # ========================================================================
    # Validators
    # ========================================================================

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v):
        v = v.upper()
        if v not in ['DEBUG', 'INFO', 'WARNING', 'ERROR']:
            raise ValueError('log_level must be DEBUG, INFO, WARNING, or ERROR')
        return v

    @field_validator('endpoint_url')
    @classmethod
    def validate_endpoint_url(cls, v):
        if v and not re.match(r'^https?://', v):
            raise ValueError('endpoint_url must be an http(s) URL')
        return v or None

    @field_validator('driver_bad_patterns')
    @classmethod
    def validate_patterns(cls, v):
        for pattern in v:
            try:
                re.compile(pattern)
            except re.error as e:
                raise ValueError(f'invalid driver pattern {pattern!r}: {e}')
        return v

    @model_validator(mode='after')
    def validate_identity(self):
        if self.endpoint_url and (self.id_group is None or self.id_device is None):
            raise ValueError('id_group and id_device are required when endpoint_url is set')
        return self

    # ========================================================================
    # Parsed Properties
    # ========================================================================

    @property
    def device_identity(self) -> Optional[DeviceIdentity]:
        if self.id_group is None or self.id_device is None:
            return None
        return DeviceIdentity(id_group=self.id_group, id_device=self.id_device)


def load_settings(config_file: Optional[Path] = None, **overrides: Any) -> RemediationSettings:
    """
    Load settings from environment, an optional YAML file and overrides.

    Overrides win over the file, and the file wins over the environment.
    Overrides whose value is None are ignored.

    Raises:
        ConfigurationError: If the file cannot be read or a value is invalid
    """
    data: Dict[str, Any] = {}

    if config_file:
        path = Path(config_file)
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Failed to read config file {path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {path} must contain a mapping")

    data.update({k: v for k, v in overrides.items() if v is not None})

    try:
        return RemediationSettings(**data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e
