"""
Exit code policy.

The calling orchestrator only understands two codes: 0 (compliant, or
remediation succeeded) and 1 (non-compliant, or remediation hit a critical
error).
"""

from typing import Optional

from .models import DetectionVerdict, RemediationResult


EXIT_OK = 0
EXIT_FAILURE = 1


def compute_exit_code(
    verdict: Optional[DetectionVerdict] = None,
    result: Optional[RemediationResult] = None
) -> int:
    """1 when remediation is needed or any critical error was recorded, else 0."""
    if verdict is not None and verdict.needs_remediation:
        return EXIT_FAILURE
    if result is not None and result.critical_errors:
        return EXIT_FAILURE
    return EXIT_OK


def detection_exit_code(verdict: DetectionVerdict) -> int:
    return compute_exit_code(verdict=verdict)


def remediation_exit_code(result: RemediationResult) -> int:
    return compute_exit_code(result=result)
