"""
Shared fixtures: an in-memory system probe and isolated settings.
"""

from datetime import datetime, timezone
from typing import Dict, List, Optional

import pytest

from endpoint_remediation.config import RemediationSettings
from endpoint_remediation.exceptions import ProbeError
from endpoint_remediation.models import (
    DiskUsage,
    DriverInfo,
    DriverUpdateOutcome,
    PrintJob,
    ServiceState,
    ServiceStatus,
    UserProfile,
)


NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeProbe:
    """SystemProbe holding device state in memory."""

    def __init__(self):
        self.disk_readings: List[DiskUsage] = [
            DiskUsage(drive="C:", total_bytes=1000, free_bytes=500)
        ]
        self.services: Dict[str, ServiceState] = {}
        self.print_jobs: List[PrintJob] = []
        self.drivers: List[DriverInfo] = []
        self.profiles: List[UserProfile] = []
        self.failing: Dict[str, str] = {}
        self.start_leaves_status: Optional[ServiceStatus] = None
        self.calls: List[tuple] = []

    def fail(self, operation: str, message: str = "boom") -> None:
        self.failing[operation] = message

    def _check(self, operation: str, *args) -> None:
        self.calls.append((operation,) + args)
        if operation in self.failing:
            raise ProbeError(operation, self.failing[operation])

    async def get_disk_usage(self, drive: str) -> DiskUsage:
        self._check("get_disk_usage", drive)
        if len(self.disk_readings) > 1:
            return self.disk_readings.pop(0)
        return self.disk_readings[0]

    async def get_service_state(self, name: str) -> Optional[ServiceState]:
        self._check("get_service_state", name)
        return self.services.get(name)

    def _set_status(self, name: str, status: ServiceStatus) -> None:
        if name in self.services:
            self.services[name] = self.services[name].model_copy(update={"status": status})

    async def start_service(self, name: str) -> None:
        self._check("start_service", name)
        self._set_status(name, self.start_leaves_status or ServiceStatus.RUNNING)

    async def restart_service(self, name: str) -> None:
        self._check("restart_service", name)
        self._set_status(name, self.start_leaves_status or ServiceStatus.RUNNING)

    async def list_print_jobs(self) -> List[PrintJob]:
        self._check("list_print_jobs")
        return list(self.print_jobs)

    async def remove_print_job(self, job: PrintJob) -> None:
        self._check("remove_print_job", job.job_id)
        self.print_jobs.remove(job)

    async def list_drivers(self) -> List[DriverInfo]:
        self._check("list_drivers")
        return list(self.drivers)

    async def list_user_profiles(self) -> List[UserProfile]:
        self._check("list_user_profiles")
        return list(self.profiles)

    async def remove_user_profile(self, profile: UserProfile) -> None:
        self._check("remove_user_profile", profile.sid)
        self.profiles.remove(profile)


class FakeUpdater:
    """DriverUpdater that succeeds unless the device is listed in `failures`."""

    def __init__(self, failures: Optional[Dict[str, str]] = None, reboot: bool = False):
        self.failures = failures or {}
        self.reboot = reboot
        self.attempted: List[str] = []

    async def attempt_update(self, driver: DriverInfo) -> DriverUpdateOutcome:
        self.attempted.append(driver.device_name)
        if driver.device_name in self.failures:
            return DriverUpdateOutcome(
                device_name=driver.device_name,
                success=False,
                error=self.failures[driver.device_name]
            )
        return DriverUpdateOutcome(
            device_name=driver.device_name,
            success=True,
            update_found=True,
            title=f"{driver.device_name} 2.0",
            reboot_required=self.reboot
        )


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep REMEDIATION_* variables from the host out of the tests."""
    import os
    for key in list(os.environ):
        if key.startswith("REMEDIATION_"):
            monkeypatch.delenv(key)


@pytest.fixture
def probe():
    return FakeProbe()


@pytest.fixture
def make_settings(tmp_path):
    """Build settings rooted in tmp_path; keyword arguments override."""
    def _make(**overrides) -> RemediationSettings:
        values = dict(
            output_dir=tmp_path / "out",
            fallback_dir=tmp_path / "fallback",
            driver_log_dir=tmp_path / "logs",
            temp_paths=[tmp_path / "temp"],
            disk_threshold_percent=90,
            service_name="TestSvc",
            cache_paths=[tmp_path / "cache"],
            cache_threshold_bytes=100,
        )
        values.update(overrides)
        return RemediationSettings(**values)
    return _make
