"""
Detection/remediation check definitions.

Each check pairs a detection pass (probe + rules, produces a
DetectionVerdict) with a remediation pass (actions recorded through a
ResultAggregator). Checks hold no result state of their own.
"""

import logging
import tempfile
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Type

from .actions import (
    SPOOLER_SERVICE,
    clean_directory,
    clear_print_jobs,
    ensure_service_running,
    remove_stale_profiles,
    report_outdated_drivers,
    update_drivers,
)
from .aggregator import ResultAggregator
from .config import DriverMode, RemediationSettings
from .exceptions import ConfigurationError, ProbeError
from .models import DetectionVerdict, DriverAnalysis, PrintJob
from .probes import (
    DriverUpdater,
    SystemProbe,
    WindowsSystemProbe,
    WindowsUpdateDriverUpdater,
    measure_cache_size,
)
from .rules import (
    analyze_driver,
    combine_verdicts,
    evaluate_cache_size,
    evaluate_disk_usage,
    evaluate_drivers,
    evaluate_print_jobs,
    evaluate_service_health,
    find_stuck_jobs,
)
from .utils import format_bytes

logger = logging.getLogger(__name__)


class RemediationCheck(ABC):
    """One detection/remediation pair."""

    name: str = ""
    description: str = ""
    report_filename: str = ""
    writes_to_driver_log: bool = False

    def __init__(self, settings: RemediationSettings, probe: SystemProbe):
        self.settings = settings
        self.probe = probe

    @abstractmethod
    async def detect(self) -> DetectionVerdict:
        """Probe the device and evaluate rules. Mandatory probe failures raise ProbeError."""

    @abstractmethod
    async def remediate(self, aggregator: ResultAggregator) -> None:
        """Perform corrective actions, recording every outcome on the aggregator."""

    def report_paths(self) -> Tuple[Path, Path]:
        """Preferred and fallback locations of this check's result file."""
        if self.writes_to_driver_log:
            base = self.settings.driver_log_dir
        else:
            base = self.settings.output_dir
        return base / self.report_filename, self.settings.fallback_dir / self.report_filename


# =============================================================================
# Disk space
# =============================================================================


class DiskSpaceCheck(RemediationCheck):
    name = "disk"
    description = "Low free disk space"
    report_filename = "disk_remediation.json"

    def __init__(self, settings: RemediationSettings, probe: SystemProbe):
        super().__init__(settings, probe)
        if settings.disk_threshold_percent is None:
            raise ConfigurationError("disk_threshold_percent must be set for the disk check")
        self.threshold = settings.disk_threshold_percent

    @property
    def cleanup_paths(self) -> List[Path]:
        return list(self.settings.temp_paths) or [Path(tempfile.gettempdir())]

    async def detect(self) -> DetectionVerdict:
        usage = await self.probe.get_disk_usage(self.settings.disk_drive)
        logger.info(f"Drive {usage.drive}: {usage.used_percent:.1f}% used")
        return evaluate_disk_usage(usage, self.threshold)

    async def remediate(self, aggregator: ResultAggregator) -> None:
        drive = self.settings.disk_drive

        try:
            before = await self.probe.get_disk_usage(drive)
        except ProbeError as e:
            aggregator.record_critical_error(f"Cannot measure drive {drive}: {e}")
            before = None

        for path in self.cleanup_paths:
            clean_directory(path, aggregator)

        if self.settings.profile_max_age_days:
            await remove_stale_profiles(self.probe, aggregator, self.settings.profile_max_age_days)

        if before is None:
            return

        try:
            after = await self.probe.get_disk_usage(drive)
        except ProbeError as e:
            aggregator.record_critical_error(f"Cannot measure drive {drive}: {e}")
            return

        freed = max(after.free_bytes - before.free_bytes, 0)
        aggregator.record_success(
            f"Drive {drive} now {after.used_percent:.1f}% used "
            f"(was {before.used_percent:.1f}%, freed {format_bytes(freed)})"
        )


# =============================================================================
# Service health
# =============================================================================


class ServiceHealthCheck(RemediationCheck):
    name = "service"
    description = "Required service not running"
    report_filename = "service_remediation.json"

    def __init__(self, settings: RemediationSettings, probe: SystemProbe):
        super().__init__(settings, probe)
        if not settings.service_name:
            raise ConfigurationError("service_name must be set for the service check")
        self.service_name = settings.service_name

    async def detect(self) -> DetectionVerdict:
        state = await self.probe.get_service_state(self.service_name)
        return evaluate_service_health(state, self.service_name)

    async def remediate(self, aggregator: ResultAggregator) -> None:
        await ensure_service_running(self.probe, self.service_name, aggregator)


# =============================================================================
# Cache size
# =============================================================================


class CacheSizeCheck(RemediationCheck):
    name = "cache"
    description = "Oversized application cache"
    report_filename = "cache_remediation.json"

    def __init__(self, settings: RemediationSettings, probe: SystemProbe):
        super().__init__(settings, probe)
        if not settings.cache_paths or settings.cache_threshold_bytes is None:
            raise ConfigurationError(
                "cache_paths and cache_threshold_bytes must be set for the cache check"
            )
        self.paths = list(settings.cache_paths)
        self.threshold = settings.cache_threshold_bytes

    async def detect(self) -> DetectionVerdict:
        total = measure_cache_size(self.paths)
        logger.info(f"Cache size {format_bytes(total)} across {len(self.paths)} path(s)")
        return evaluate_cache_size(total, self.threshold)

    async def remediate(self, aggregator: ResultAggregator) -> None:
        for path in self.paths:
            clean_directory(path, aggregator)

        aggregator.record_success(f"Cache size now {format_bytes(measure_cache_size(self.paths))}")


# =============================================================================
# Print queue
# =============================================================================


class PrintQueueCheck(RemediationCheck):
    name = "print"
    description = "Stuck print jobs or stopped spooler"
    report_filename = "print_queue_remediation.json"

    @property
    def max_age(self) -> timedelta:
        return timedelta(minutes=self.settings.print_job_max_age_minutes)

    async def _list_jobs(self) -> Optional[List[PrintJob]]:
        # Job listing is optional: a failure must not escalate
        try:
            return await self.probe.list_print_jobs()
        except ProbeError as e:
            logger.warning(f"Could not query print jobs: {e}")
            return None

    async def detect(self) -> DetectionVerdict:
        spooler = await self.probe.get_service_state(SPOOLER_SERVICE)
        verdicts = [evaluate_service_health(spooler, SPOOLER_SERVICE)]

        jobs = await self._list_jobs()
        if jobs is not None:
            verdicts.append(evaluate_print_jobs(jobs, self.max_age))

        return combine_verdicts(verdicts)

    async def remediate(self, aggregator: ResultAggregator) -> None:
        jobs = await self._list_jobs() or []
        stuck = find_stuck_jobs(jobs, self.max_age)
        logger.info(f"{len(stuck)} of {len(jobs)} print job(s) are stuck")
        await clear_print_jobs(self.probe, stuck, aggregator)


# =============================================================================
# Drivers
# =============================================================================


class DriverCheck(RemediationCheck):
    name = "drivers"
    description = "Outdated or known-bad device drivers"
    report_filename = "driver_remediation.json"
    writes_to_driver_log = True

    def __init__(
        self,
        settings: RemediationSettings,
        probe: SystemProbe,
        updater: Optional[DriverUpdater] = None
    ):
        super().__init__(settings, probe)
        self.updater = updater

    def analyze(self, drivers, now: Optional[datetime] = None) -> List[DriverAnalysis]:
        if now is None:
            now = datetime.now(timezone.utc)
        return [
            analyze_driver(
                driver,
                now=now,
                max_age_days=self.settings.driver_max_age_days,
                printer_max_age_days=self.settings.printer_driver_max_age_days,
                bad_patterns=self.settings.driver_bad_patterns
            )
            for driver in drivers
        ]

    async def detect(self) -> DetectionVerdict:
        drivers = await self.probe.list_drivers()
        analyses = self.analyze(drivers)
        for analysis in analyses:
            if analysis.reasons and not analysis.needs_update:
                logger.debug(f"{analysis.driver.device_name}: {'; '.join(analysis.reasons)}")
        return evaluate_drivers(analyses)

    async def remediate(self, aggregator: ResultAggregator) -> None:
        try:
            drivers = await self.probe.list_drivers()
        except ProbeError as e:
            aggregator.record_critical_error(f"Cannot enumerate drivers: {e}")
            return

        analyses = self.analyze(drivers)

        if self.settings.driver_mode != DriverMode.UPDATE:
            report_outdated_drivers(analyses, aggregator)
            return

        if self.updater is None:
            aggregator.record_critical_error("Driver update requested but no updater is available")
            return

        await update_drivers(self.updater, analyses, aggregator)


CHECKS: Dict[str, Type[RemediationCheck]] = {
    DiskSpaceCheck.name: DiskSpaceCheck,
    ServiceHealthCheck.name: ServiceHealthCheck,
    CacheSizeCheck.name: CacheSizeCheck,
    PrintQueueCheck.name: PrintQueueCheck,
    DriverCheck.name: DriverCheck,
}


def build_check(
    name: str,
    settings: RemediationSettings,
    probe: Optional[SystemProbe] = None,
    updater: Optional[DriverUpdater] = None
) -> RemediationCheck:
    """
    Instantiate a check by name with production collaborators by default.

    Raises:
        ConfigurationError: Unknown check or settings missing for it
    """
    if name not in CHECKS:
        raise ConfigurationError(f"Unknown check {name!r}; expected one of {sorted(CHECKS)}")

    if probe is None:
        probe = WindowsSystemProbe()

    if name == DriverCheck.name:
        if updater is None and settings.driver_mode == DriverMode.UPDATE:
            updater = WindowsUpdateDriverUpdater()
        return DriverCheck(settings, probe, updater)

    return CHECKS[name](settings, probe)
