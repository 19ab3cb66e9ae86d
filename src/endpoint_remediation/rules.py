"""
Detection rules.

Pure functions that turn probed state plus a configured threshold into a
DetectionVerdict. Rules are independent and additive: combine_verdicts()
flags remediation when any single rule does.
"""

import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional, Sequence

from .models import (
    DetectionVerdict,
    DiskUsage,
    DriverAnalysis,
    DriverInfo,
    PrintJob,
    ServiceState,
    ServiceStatus,
)
from .utils import as_utc, format_bytes

logger = logging.getLogger(__name__)


DRIVER_MAX_AGE_DAYS = 730
PRINTER_DRIVER_MAX_AGE_DAYS = 365
PRINT_JOB_MAX_AGE = timedelta(hours=1)


def combine_verdicts(verdicts: Iterable[DetectionVerdict]) -> DetectionVerdict:
    """Merge verdicts; reasons are concatenated in order."""
    needs_remediation = False
    reasons: List[str] = []
    for verdict in verdicts:
        needs_remediation = needs_remediation or verdict.needs_remediation
        reasons.extend(verdict.reasons)
    return DetectionVerdict(needs_remediation=needs_remediation, reasons=tuple(reasons))


def evaluate_disk_usage(usage: DiskUsage, threshold_percent: float) -> DetectionVerdict:
    """Flag when used space is at or above the threshold."""
    if usage.total_bytes == 0:
        logger.info(f"Volume {usage.drive} reports zero size, skipping")
        return DetectionVerdict.compliant()

    used = usage.used_percent
    if used >= threshold_percent:
        return DetectionVerdict.flagged(
            f"Drive {usage.drive} is {used:.1f}% used "
            f"(threshold {threshold_percent:g}%, {format_bytes(usage.free_bytes)} free)"
        )
    return DetectionVerdict.compliant()


def evaluate_service_health(state: Optional[ServiceState], service_name: str) -> DetectionVerdict:
    """Flag a service that is installed but not running. Absence is not a failure."""
    if state is None:
        logger.info(f"Service {service_name} is not installed")
        return DetectionVerdict.compliant()

    if state.status != ServiceStatus.RUNNING:
        return DetectionVerdict.flagged(
            f"Service {state.name} is {state.status.value}"
        )
    return DetectionVerdict.compliant()


def evaluate_cache_size(total_bytes: int, threshold_bytes: int) -> DetectionVerdict:
    """Flag when the cache total exceeds the threshold."""
    if total_bytes > threshold_bytes:
        return DetectionVerdict.flagged(
            f"Cache size {format_bytes(total_bytes)} exceeds {format_bytes(threshold_bytes)}"
        )
    return DetectionVerdict.compliant()


def find_stuck_jobs(
    jobs: Iterable[PrintJob],
    max_age: timedelta = PRINT_JOB_MAX_AGE,
    now: Optional[datetime] = None
) -> List[PrintJob]:
    """Jobs submitted longer ago than max_age."""
    if now is None:
        now = datetime.now(timezone.utc)
    cutoff = now - max_age
    return [job for job in jobs if as_utc(job.submitted_at) < cutoff]


def evaluate_print_jobs(
    jobs: Iterable[PrintJob],
    max_age: timedelta = PRINT_JOB_MAX_AGE,
    now: Optional[datetime] = None
) -> DetectionVerdict:
    """Flag when any job has been queued for longer than max_age."""
    stuck = find_stuck_jobs(jobs, max_age, now)
    if not stuck:
        return DetectionVerdict.compliant()

    printers = sorted({job.printer for job in stuck})
    return DetectionVerdict.flagged(
        f"{len(stuck)} print job(s) older than {int(max_age.total_seconds() // 60)} minutes "
        f"on {', '.join(printers)}"
    )


def analyze_driver(
    driver: DriverInfo,
    now: Optional[datetime] = None,
    max_age_days: int = DRIVER_MAX_AGE_DAYS,
    printer_max_age_days: int = PRINTER_DRIVER_MAX_AGE_DAYS,
    bad_patterns: Sequence[str] = ()
) -> DriverAnalysis:
    """
    Decide whether a driver needs an update.

    A driver needs an update when its age is strictly greater than
    max_age_days, when its name or version matches a known-bad pattern, or
    when it is a printer driver older than printer_max_age_days. An
    unsigned driver gets a reason but is not flagged for that alone.
    """
    if now is None:
        now = datetime.now(timezone.utc)

    analysis = DriverAnalysis(driver=driver)

    if driver.driver_date is not None:
        analysis.age_days = (as_utc(now) - as_utc(driver.driver_date)).days
    else:
        analysis.reasons.append("Driver date unknown")

    age = analysis.age_days
    if age is not None and age > max_age_days:
        analysis.needs_update = True
        analysis.reasons.append(f"Driver is {age} days old (limit {max_age_days})")

    for pattern in bad_patterns:
        for value in (driver.device_name, driver.version):
            if value and re.search(pattern, value, re.IGNORECASE):
                analysis.needs_update = True
                analysis.reasons.append(f"Matches known-bad pattern {pattern!r}")
                break

    if driver.is_printer and age is not None and age > printer_max_age_days:
        analysis.needs_update = True
        analysis.reasons.append(
            f"Printer driver is {age} days old (limit {printer_max_age_days})"
        )

    if driver.is_signed is False:
        analysis.reasons.append("Driver is not digitally signed")

    return analysis


def evaluate_drivers(analyses: Iterable[DriverAnalysis]) -> DetectionVerdict:
    """Flag when any analyzed driver needs an update."""
    reasons = [
        f"{a.driver.device_name}: {'; '.join(a.reasons)}"
        for a in analyses
        if a.needs_update
    ]
    if reasons:
        return DetectionVerdict.flagged(*reasons)
    return DetectionVerdict.compliant()
