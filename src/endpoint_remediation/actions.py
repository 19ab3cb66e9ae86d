"""
Remediation actions.

Each action takes the run's ResultAggregator explicitly and records its own
outcome there: per-item failures as file-level errors, failures of the
whole action as critical errors. Actions never raise.
"""

import logging
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterable, List, Optional

from .aggregator import ResultAggregator
from .exceptions import ProbeError
from .models import DriverAnalysis, PrintJob, ServiceStatus
from .probes import DriverUpdater, SystemProbe
from .utils import as_utc, format_bytes

logger = logging.getLogger(__name__)


SPOOLER_SERVICE = "Spooler"


def clean_directory(root: Path, aggregator: ResultAggregator) -> int:
    """
    Delete every file below `root` and any directories left empty.

    `root` itself is kept. A missing root is informational. A root that
    cannot be enumerated is a critical error.

    Returns:
        Bytes freed
    """
    root = Path(root)
    if not root.exists():
        logger.info(f"{root} does not exist, nothing to clean")
        return 0

    try:
        entries = list(os.scandir(root))
    except OSError as e:
        aggregator.record_critical_error(f"Cannot enumerate {root}: {e}")
        return 0

    freed = 0
    removed = 0
    directories: List[str] = []

    def _on_error(error: OSError) -> None:
        aggregator.record_item_error(error.filename, f"Cannot enumerate: {error.strerror}")

    for entry in entries:
        if entry.is_dir(follow_symlinks=False):
            for dirpath, dirnames, filenames in os.walk(entry.path, onerror=_on_error):
                directories.append(dirpath)
                # os.walk lists directory links with dirnames and never descends into them
                links = [name for name in dirnames if os.path.islink(os.path.join(dirpath, name))]
                for name in links + filenames:
                    size = _delete_file(os.path.join(dirpath, name), aggregator)
                    if size is not None:
                        freed += size
                        removed += 1
        else:
            size = _delete_file(entry.path, aggregator)
            if size is not None:
                freed += size
                removed += 1

    # Deepest first so parents are empty by the time they are reached
    for directory in sorted(directories, key=len, reverse=True):
        try:
            os.rmdir(directory)
        except OSError as e:
            logger.debug(f"Keeping directory {directory}: {e}")

    aggregator.record_success(
        f"Cleaned {root}: removed {removed} file(s), freed {format_bytes(freed)}"
    )
    return freed


def _delete_file(path: str, aggregator: ResultAggregator) -> Optional[int]:
    try:
        size = os.lstat(path).st_size
        os.remove(path)
        return size
    except OSError as e:
        aggregator.record_item_error(path, e.strerror or str(e))
        return None


async def ensure_service_running(
    probe: SystemProbe,
    name: str,
    aggregator: ResultAggregator
) -> bool:
    """
    Start a stopped service, or restart one stuck in another state.

    Returns:
        True when the service is running afterwards or is not installed
    """
    try:
        state = await probe.get_service_state(name)
    except ProbeError as e:
        aggregator.record_critical_error(f"Cannot query service {name}: {e}")
        return False

    if state is None:
        aggregator.record_success(f"Service {name} is not installed, nothing to do")
        return True

    if state.status == ServiceStatus.RUNNING:
        aggregator.record_success(f"Service {name} is already running")
        return True

    try:
        if state.status == ServiceStatus.STOPPED:
            await probe.start_service(name)
        else:
            await probe.restart_service(name)
    except ProbeError as e:
        aggregator.record_critical_error(f"Failed to start service {name}: {e}")
        return False

    try:
        after = await probe.get_service_state(name)
    except ProbeError as e:
        aggregator.record_critical_error(f"Cannot verify service {name}: {e}")
        return False

    if after is None or after.status != ServiceStatus.RUNNING:
        status = after.status.value if after else "missing"
        aggregator.record_critical_error(f"Service {name} is {status} after start")
        return False

    aggregator.record_success(f"Service {name} started (was {state.status.value})")
    return True


async def remove_stale_profiles(
    probe: SystemProbe,
    aggregator: ResultAggregator,
    max_age_days: int,
    now: Optional[datetime] = None
) -> int:
    """
    Remove local user profiles not used for more than max_age_days.

    Returns:
        Number of profiles removed
    """
    if now is None:
        now = datetime.now(timezone.utc)

    try:
        profiles = await probe.list_user_profiles()
    except ProbeError as e:
        aggregator.record_critical_error(f"Cannot list user profiles: {e}")
        return 0

    cutoff = now - timedelta(days=max_age_days)
    stale = [
        p for p in profiles
        if p.last_use is not None and as_utc(p.last_use) < cutoff
    ]

    removed = 0
    for profile in stale:
        try:
            await probe.remove_user_profile(profile)
            removed += 1
        except ProbeError as e:
            aggregator.record_item_error(profile.path, str(e))

    aggregator.record_success(
        f"Removed {removed} of {len(stale)} profile(s) unused for over {max_age_days} days"
    )
    return removed


async def clear_print_jobs(
    probe: SystemProbe,
    jobs: Iterable[PrintJob],
    aggregator: ResultAggregator
) -> int:
    """
    Delete the given jobs, then restart the print spooler.

    Returns:
        Number of jobs deleted
    """
    jobs = list(jobs)
    removed = 0
    for job in jobs:
        try:
            await probe.remove_print_job(job)
            removed += 1
        except ProbeError as e:
            aggregator.record_item_error(f"{job.printer}#{job.job_id}", str(e))

    if jobs:
        aggregator.record_success(f"Removed {removed} of {len(jobs)} stuck print job(s)")

    try:
        await probe.restart_service(SPOOLER_SERVICE)
    except ProbeError as e:
        aggregator.record_critical_error(f"Failed to restart print spooler: {e}")
        return removed

    aggregator.record_success("Print spooler restarted")
    return removed


def report_outdated_drivers(
    analyses: Iterable[DriverAnalysis],
    aggregator: ResultAggregator
) -> int:
    """Record each outdated driver; returns how many were found."""
    outdated = [a for a in analyses if a.needs_update]
    for analysis in outdated:
        aggregator.record_success(
            f"Outdated driver {analysis.driver.device_name} "
            f"({analysis.driver.version or 'unknown version'}): {'; '.join(analysis.reasons)}"
        )
    if not outdated:
        aggregator.record_success("All drivers are current")
    return len(outdated)


async def update_drivers(
    updater: DriverUpdater,
    analyses: Iterable[DriverAnalysis],
    aggregator: ResultAggregator
) -> int:
    """
    Try to update every outdated driver through the updater.

    Returns:
        Number of drivers updated
    """
    outdated = [a for a in analyses if a.needs_update]
    updated = 0
    reboot_required = False

    for analysis in outdated:
        outcome = await updater.attempt_update(analysis.driver)
        if outcome.success:
            updated += 1
            reboot_required = reboot_required or outcome.reboot_required
            aggregator.record_success(
                f"Updated {outcome.device_name}: {outcome.title or 'driver update installed'}"
            )
        else:
            aggregator.record_item_error(outcome.device_name, outcome.error or "update failed")

    aggregator.record_success(f"Updated {updated} of {len(outdated)} outdated driver(s)")
    if reboot_required:
        aggregator.record_success("A reboot is required to finish driver installation")
    return updated
