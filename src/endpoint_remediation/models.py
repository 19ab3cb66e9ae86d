"""
Data models for endpoint remediation.

Defines the remediation result, the report envelope submitted to the
reporting endpoint, detection verdicts, and the probed system state the
rules evaluate.
"""

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional, List, Tuple, Union

from pydantic import BaseModel, Field, ConfigDict


# ============================================================================
# Remediation Result
# ============================================================================


class FileLevelError(BaseModel):
    """Non-fatal failure on a single item (file, print job, profile)."""

    item: str = Field(
        ...,
        description="Item that could not be acted upon"
    )
    error: str = Field(
        ...,
        description="Error message"
    )


class RemediationResult(BaseModel):
    """
    Outcome of one remediation run.

    Field order is the serialization order. Only `critical_errors` decides
    whether the run succeeded; `file_level_errors` never does.
    """

    completed_tasks: List[str] = Field(
        default_factory=list,
        alias="completedTasks",
        description="Success messages in the order they were recorded"
    )

    file_level_errors: List[FileLevelError] = Field(
        default_factory=list,
        alias="fileLevelErrors",
        description="Per-item failures that do not fail the run"
    )

    critical_errors: List[str] = Field(
        default_factory=list,
        alias="criticalErrors",
        description="Failures that mark the whole run as failed"
    )

    model_config = ConfigDict(populate_by_name=True)

    @property
    def succeeded(self) -> bool:
        """True when no critical error was recorded."""
        return not self.critical_errors


class ReportEnvelope(BaseModel):
    """Report submitted to the central reporting endpoint."""

    id_group: Union[int, str] = Field(
        ...,
        description="Logical device group identifier"
    )

    status: bool = Field(
        ...,
        description="True when the run recorded no critical errors"
    )

    action_remediation: RemediationResult = Field(
        ...,
        description="Embedded remediation result"
    )

    id_device: int = Field(
        ...,
        description="Device identifier"
    )


class DeviceIdentity(BaseModel):
    """Identity of this device as known to the reporting endpoint."""

    id_group: Union[int, str]
    id_device: int


# ============================================================================
# Detection
# ============================================================================


class DetectionVerdict(BaseModel):
    """Outcome of a detection pass. Immutable once computed."""

    needs_remediation: bool = Field(
        default=False,
        description="Whether any rule fired"
    )

    reasons: Tuple[str, ...] = Field(
        default=(),
        description="Human-readable reasons, in evaluation order"
    )

    model_config = ConfigDict(frozen=True)

    @classmethod
    def compliant(cls) -> "DetectionVerdict":
        return cls(needs_remediation=False, reasons=())

    @classmethod
    def flagged(cls, *reasons: str) -> "DetectionVerdict":
        return cls(needs_remediation=True, reasons=tuple(reasons))


# ============================================================================
# Probed State
# ============================================================================


class DiskUsage(BaseModel):
    """Capacity of a single volume."""

    drive: str
    total_bytes: int = Field(..., ge=0)
    free_bytes: int = Field(..., ge=0)

    @property
    def used_bytes(self) -> int:
        return self.total_bytes - self.free_bytes

    @property
    def used_percent(self) -> float:
        """Used space as a percentage of total; 0 for an empty volume."""
        if self.total_bytes == 0:
            return 0.0
        return (self.total_bytes - self.free_bytes) / self.total_bytes * 100


class ServiceStatus(str, Enum):
    """Windows service controller states."""
    RUNNING = "Running"
    STOPPED = "Stopped"
    START_PENDING = "StartPending"
    STOP_PENDING = "StopPending"
    CONTINUE_PENDING = "ContinuePending"
    PAUSE_PENDING = "PausePending"
    PAUSED = "Paused"


class ServiceState(BaseModel):
    """Current state of an installed service."""

    name: str
    status: ServiceStatus
    start_type: Optional[str] = None


class PrintJob(BaseModel):
    """A job sitting in a print queue."""

    printer: str
    job_id: int
    document: Optional[str] = None
    submitted_at: datetime


class DriverInfo(BaseModel):
    """An installed device driver."""

    device_name: str
    device_class: Optional[str] = None
    version: Optional[str] = None
    driver_date: Optional[datetime] = None
    provider: Optional[str] = None
    is_signed: Optional[bool] = None
    device_id: Optional[str] = None

    @property
    def is_printer(self) -> bool:
        return (self.device_class or "").lower() in ("printer", "printqueue")


class DriverAnalysis(BaseModel):
    """Staleness analysis of a single driver."""

    driver: DriverInfo
    age_days: Optional[int] = None
    needs_update: bool = False
    reasons: List[str] = Field(default_factory=list)


class UserProfile(BaseModel):
    """A local user profile."""

    path: str
    sid: str
    last_use: Optional[datetime] = None


# ============================================================================
# Action Outcomes
# ============================================================================


class PersistOutcome(BaseModel):
    """Result of writing the report to local disk."""

    success: bool
    path: Optional[Path] = None
    used_fallback: bool = False
    signature_path: Optional[Path] = None
    error: Optional[str] = None


class SubmitOutcome(BaseModel):
    """Result of posting the report envelope."""

    success: bool
    status_code: Optional[int] = None
    response_body: Optional[str] = None
    error: Optional[str] = None


class DriverUpdateOutcome(BaseModel):
    """Result of one attempt to update a driver through Windows Update."""

    device_name: str
    success: bool
    update_found: bool = False
    title: Optional[str] = None
    reboot_required: bool = False
    error: Optional[str] = None
