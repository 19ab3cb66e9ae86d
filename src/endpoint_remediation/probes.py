"""
System probes.

Checks depend on the SystemProbe and DriverUpdater protocols rather than on
PowerShell directly. WindowsSystemProbe and WindowsUpdateDriverUpdater are
the production implementations; each operation runs one PowerShell script
that prints JSON.
"""

import asyncio
import base64
import json
import logging
import os
import shutil
import subprocess
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol, runtime_checkable

from pydantic import ValidationError

from .exceptions import ProbeError
from .models import (
    DiskUsage,
    DriverInfo,
    DriverUpdateOutcome,
    PrintJob,
    ServiceState,
    UserProfile,
)
from .utils import run_command

logger = logging.getLogger(__name__)


POWERSHELL = [
    "powershell.exe",
    "-NoProfile",
    "-NonInteractive",
    "-ExecutionPolicy", "Bypass",
]

DEFAULT_TIMEOUT = 120


@runtime_checkable
class SystemProbe(Protocol):
    """Read and change OS state on the managed device."""

    async def get_disk_usage(self, drive: str) -> DiskUsage: ...

    async def get_service_state(self, name: str) -> Optional[ServiceState]:
        """Return None when the service is not installed."""
        ...

    async def start_service(self, name: str) -> None: ...

    async def restart_service(self, name: str) -> None: ...

    async def list_print_jobs(self) -> List[PrintJob]: ...

    async def remove_print_job(self, job: PrintJob) -> None: ...

    async def list_drivers(self) -> List[DriverInfo]: ...

    async def list_user_profiles(self) -> List[UserProfile]: ...

    async def remove_user_profile(self, profile: UserProfile) -> None: ...


@runtime_checkable
class DriverUpdater(Protocol):
    """Search, download and install an update for one driver."""

    async def attempt_update(self, driver: DriverInfo) -> DriverUpdateOutcome:
        """Never raises; failures are returned in the outcome."""
        ...


# =============================================================================
# PowerShell plumbing
# =============================================================================


def ps_literal(value: Any) -> str:
    """Render a Python value as a PowerShell literal."""
    if value is None:
        return "$null"
    if isinstance(value, bool):
        return "$true" if value else "$false"
    if isinstance(value, int):
        return str(value)
    return "'" + str(value).replace("'", "''") + "'"


def with_params(script: str, **params: Any) -> str:
    """Prefix a script with `$Name = <literal>` assignments."""
    lines = [f"${name} = {ps_literal(value)}" for name, value in params.items()]
    return "\n".join(lines + [script])


async def run_powershell(script: str, probe: str, timeout: float = DEFAULT_TIMEOUT) -> Any:
    """
    Run a PowerShell script and parse its JSON output.

    Returns:
        Parsed JSON, or None when the script printed nothing

    Raises:
        ProbeError: On a missing interpreter, non-zero exit, timeout or bad JSON
    """
    encoded = base64.b64encode(script.encode('utf-16-le')).decode('ascii')
    cmd = POWERSHELL + ["-EncodedCommand", encoded]

    try:
        result = await run_command(cmd, timeout=timeout)
    except FileNotFoundError as e:
        raise ProbeError(probe, "powershell.exe not found") from e
    except subprocess.CalledProcessError as e:
        stderr = (e.stderr or "").strip()
        raise ProbeError(probe, f"exit code {e.returncode}: {stderr[:500]}") from e
    except asyncio.TimeoutError as e:
        raise ProbeError(probe, f"timed out after {timeout}s") from e

    output = result.stdout.strip()
    if not output:
        return None

    try:
        return json.loads(output)
    except json.JSONDecodeError as e:
        raise ProbeError(probe, f"unparseable output: {output[:200]}") from e


def _as_list(data: Any) -> List[Dict[str, Any]]:
    # ConvertTo-Json collapses one-element arrays into an object
    if data is None:
        return []
    if isinstance(data, dict):
        return [data]
    return list(data)


SERVICE_STATE_SCRIPT = r'''
$Service = Get-Service -Name $Name -ErrorAction SilentlyContinue
if ($null -eq $Service) {
    @{ Found = $false } | ConvertTo-Json -Compress
} else {
    @{
        Found = $true
        Name = $Service.Name
        Status = $Service.Status.ToString()
        StartType = $Service.StartType.ToString()
    } | ConvertTo-Json -Compress
}
'''

SERVICE_CONTROL_SCRIPTS = {
    "start": "Start-Service -Name $Name -ErrorAction Stop",
    "restart": "Restart-Service -Name $Name -Force -ErrorAction Stop",
}

PRINT_JOBS_SCRIPT = r'''
$Jobs = @()
foreach ($Printer in Get-Printer -ErrorAction Stop) {
    foreach ($Job in Get-PrintJob -PrinterName $Printer.Name -ErrorAction SilentlyContinue) {
        $Jobs += @{
            Printer = $Printer.Name
            Id = [int]$Job.Id
            Document = $Job.DocumentName
            Submitted = $Job.SubmittedTime.ToUniversalTime().ToString("yyyy-MM-dd'T'HH:mm:ss'Z'")
        }
    }
}
ConvertTo-Json -InputObject @($Jobs) -Compress
'''

REMOVE_PRINT_JOB_SCRIPT = "Remove-PrintJob -PrinterName $Printer -ID $JobId -ErrorAction Stop"

DRIVERS_SCRIPT = r'''
$Drivers = Get-CimInstance Win32_PnPSignedDriver -ErrorAction Stop |
    Where-Object { $_.DeviceName } |
    ForEach-Object {
        @{
            DeviceName = $_.DeviceName
            DeviceClass = $_.DeviceClass
            Version = $_.DriverVersion
            Date = if ($_.DriverDate) { $_.DriverDate.ToUniversalTime().ToString("yyyy-MM-dd'T'HH:mm:ss'Z'") } else { $null }
            Provider = $_.DriverProviderName
            IsSigned = $_.IsSigned
            DeviceId = $_.DeviceID
        }
    }
ConvertTo-Json -InputObject @($Drivers) -Compress
'''

PROFILES_SCRIPT = r'''
$Profiles = Get-CimInstance Win32_UserProfile -ErrorAction Stop |
    Where-Object { -not $_.Special -and -not $_.Loaded } |
    ForEach-Object {
        @{
            Path = $_.LocalPath
            Sid = $_.SID
            LastUse = if ($_.LastUseTime) { $_.LastUseTime.ToUniversalTime().ToString("yyyy-MM-dd'T'HH:mm:ss'Z'") } else { $null }
        }
    }
ConvertTo-Json -InputObject @($Profiles) -Compress
'''

REMOVE_PROFILE_SCRIPT = r'''
Get-CimInstance Win32_UserProfile -Filter "SID='$Sid'" -ErrorAction Stop |
    Remove-CimInstance -ErrorAction Stop
'''

DRIVER_UPDATE_SCRIPT = r'''
$Result = @{ Found = $false; Installed = $false; RebootRequired = $false }
try {
    $Session = New-Object -ComObject Microsoft.Update.Session
    $Searcher = $Session.CreateUpdateSearcher()
    $Search = $Searcher.Search("IsInstalled=0 and Type='Driver'")
    $Candidates = @($Search.Updates | Where-Object {
        ($DeviceId -and $_.DriverHardwareID -and $DeviceId -like "*$($_.DriverHardwareID)*") -or
        ($_.DriverModel -eq $DeviceName)
    })

    if ($Candidates.Count -gt 0) {
        $Update = $Candidates[0]
        $Result.Found = $true
        $Result.Title = $Update.Title

        $Collection = New-Object -ComObject Microsoft.Update.UpdateColl
        [void]$Collection.Add($Update)

        $Downloader = $Session.CreateUpdateDownloader()
        $Downloader.Updates = $Collection
        [void]$Downloader.Download()

        $Installer = $Session.CreateUpdateInstaller()
        $Installer.Updates = $Collection
        $Install = $Installer.Install()

        $Result.ResultCode = [int]$Install.ResultCode
        $Result.Installed = ($Install.ResultCode -eq 2)
        $Result.RebootRequired = [bool]$Install.RebootRequired
    }
} catch {
    $Result.Error = $_.Exception.Message
}
$Result | ConvertTo-Json -Compress
'''


# =============================================================================
# Windows implementation
# =============================================================================


class WindowsSystemProbe:
    """SystemProbe backed by local PowerShell."""

    def __init__(self, timeout: float = DEFAULT_TIMEOUT):
        self.timeout = timeout

    async def get_disk_usage(self, drive: str) -> DiskUsage:
        root = drive + os.sep if drive.endswith(":") else drive
        try:
            usage = shutil.disk_usage(root)
        except OSError as e:
            raise ProbeError("disk_usage", f"{drive}: {e}") from e
        return DiskUsage(drive=drive, total_bytes=usage.total, free_bytes=usage.free)

    async def get_service_state(self, name: str) -> Optional[ServiceState]:
        data = await run_powershell(
            with_params(SERVICE_STATE_SCRIPT, Name=name),
            probe="service_state",
            timeout=self.timeout
        )
        if not data or not data.get("Found"):
            return None
        try:
            return ServiceState(
                name=data["Name"],
                status=data["Status"],
                start_type=data.get("StartType")
            )
        except (KeyError, ValidationError) as e:
            raise ProbeError("service_state", f"unexpected output for {name}: {e}") from e

    async def _control_service(self, action: str, name: str) -> None:
        await run_powershell(
            with_params(SERVICE_CONTROL_SCRIPTS[action], Name=name),
            probe=f"{action}_service",
            timeout=self.timeout
        )

    async def start_service(self, name: str) -> None:
        await self._control_service("start", name)

    async def restart_service(self, name: str) -> None:
        await self._control_service("restart", name)

    async def list_print_jobs(self) -> List[PrintJob]:
        data = await run_powershell(PRINT_JOBS_SCRIPT, probe="print_jobs", timeout=self.timeout)
        jobs = []
        for item in _as_list(data):
            try:
                jobs.append(PrintJob(
                    printer=item["Printer"],
                    job_id=item["Id"],
                    document=item.get("Document"),
                    submitted_at=item["Submitted"]
                ))
            except (KeyError, TypeError, ValidationError) as e:
                logger.warning(f"Skipping unreadable print job entry {item!r}: {e}")
        return jobs

    async def remove_print_job(self, job: PrintJob) -> None:
        await run_powershell(
            with_params(REMOVE_PRINT_JOB_SCRIPT, Printer=job.printer, JobId=job.job_id),
            probe="remove_print_job",
            timeout=self.timeout
        )

    async def list_drivers(self) -> List[DriverInfo]:
        data = await run_powershell(DRIVERS_SCRIPT, probe="drivers", timeout=self.timeout)
        drivers = []
        for item in _as_list(data):
            try:
                drivers.append(DriverInfo(
                    device_name=item["DeviceName"],
                    device_class=item.get("DeviceClass"),
                    version=item.get("Version"),
                    driver_date=item.get("Date"),
                    provider=item.get("Provider"),
                    is_signed=item.get("IsSigned"),
                    device_id=item.get("DeviceId")
                ))
            except (KeyError, TypeError, ValidationError) as e:
                logger.warning(f"Skipping unreadable driver entry {item!r}: {e}")
        return drivers

    async def list_user_profiles(self) -> List[UserProfile]:
        data = await run_powershell(PROFILES_SCRIPT, probe="user_profiles", timeout=self.timeout)
        profiles = []
        for item in _as_list(data):
            try:
                profiles.append(UserProfile(
                    path=item["Path"],
                    sid=item["Sid"],
                    last_use=item.get("LastUse")
                ))
            except (KeyError, TypeError, ValidationError) as e:
                logger.warning(f"Skipping unreadable profile entry {item!r}: {e}")
        return profiles

    async def remove_user_profile(self, profile: UserProfile) -> None:
        await run_powershell(
            with_params(REMOVE_PROFILE_SCRIPT, Sid=profile.sid),
            probe="remove_user_profile",
            timeout=self.timeout
        )


class WindowsUpdateDriverUpdater:
    """DriverUpdater that asks the Windows Update agent for a driver update."""

    def __init__(self, timeout: float = 1800):
        self.timeout = timeout

    async def attempt_update(self, driver: DriverInfo) -> DriverUpdateOutcome:
        script = with_params(
            DRIVER_UPDATE_SCRIPT,
            DeviceName=driver.device_name,
            DeviceId=driver.device_id or ""
        )
        try:
            data = await run_powershell(script, probe="driver_update", timeout=self.timeout)
        except ProbeError as e:
            return DriverUpdateOutcome(
                device_name=driver.device_name,
                success=False,
                error=str(e)
            )

        data = data or {}
        if data.get("Error"):
            return DriverUpdateOutcome(
                device_name=driver.device_name,
                success=False,
                update_found=bool(data.get("Found")),
                title=data.get("Title"),
                error=data["Error"]
            )

        if not data.get("Found"):
            return DriverUpdateOutcome(
                device_name=driver.device_name,
                success=False,
                error="No update available from Windows Update"
            )

        installed = bool(data.get("Installed"))
        return DriverUpdateOutcome(
            device_name=driver.device_name,
            success=installed,
            update_found=True,
            title=data.get("Title"),
            reboot_required=bool(data.get("RebootRequired")),
            error=None if installed else f"Install result code {data.get('ResultCode')}"
        )


# =============================================================================
# Filesystem
# =============================================================================


def measure_cache_size(paths: Iterable[Path]) -> int:
    """
    Total size in bytes of all files below the given roots.

    Missing roots count as zero. Files that cannot be read are skipped.
    """
    total = 0
    for root in paths:
        root = Path(root)
        if not root.exists():
            logger.info(f"Cache path {root} does not exist")
            continue

        if root.is_file():
            total += root.stat().st_size
            continue

        def _on_error(error: OSError) -> None:
            logger.warning(f"Cannot read {error.filename}: {error.strerror}")

        for dirpath, _dirnames, filenames in os.walk(root, onerror=_on_error):
            for name in filenames:
                try:
                    total += os.lstat(os.path.join(dirpath, name)).st_size
                except OSError as e:
                    logger.debug(f"Skipping {name} in {dirpath}: {e}")

    return total
