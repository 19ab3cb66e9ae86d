"""Endpoint Remediation - detection/remediation checks with result reporting"""

__version__ = "0.1.0"

# Result & Reporting Protocol
from .models import (
    DetectionVerdict,
    DeviceIdentity,
    FileLevelError,
    RemediationResult,
    ReportEnvelope,
)
from .aggregator import ResultAggregator
from .submitter import ReportSubmitter, build_envelope, serialize
from .exit_policy import compute_exit_code, detection_exit_code, remediation_exit_code

# Configuration
from .config import ApiFailurePolicy, DriverMode, RemediationSettings, load_settings
from .exceptions import ConfigurationError, ProbeError, RemediationError

# Checks
from .checks import CHECKS, RemediationCheck, build_check
from .runner import CheckRunner

__all__ = [
    # Version
    "__version__",

    # Result & Reporting Protocol
    "DetectionVerdict",
    "DeviceIdentity",
    "FileLevelError",
    "RemediationResult",
    "ReportEnvelope",
    "ResultAggregator",
    "ReportSubmitter",
    "build_envelope",
    "serialize",
    "compute_exit_code",
    "detection_exit_code",
    "remediation_exit_code",

    # Configuration
    "ApiFailurePolicy",
    "DriverMode",
    "RemediationSettings",
    "load_settings",
    "ConfigurationError",
    "ProbeError",
    "RemediationError",

    # Checks
    "CHECKS",
    "RemediationCheck",
    "build_check",
    "CheckRunner",
]
