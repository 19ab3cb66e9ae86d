"""
Exception types for endpoint remediation.

Probes and configuration loading raise these; checks and the runner catch
them and downgrade them into recorded results.
"""


class RemediationError(Exception):
    """Base class for all endpoint remediation errors."""
    pass


class ProbeError(RemediationError):
    """Raised when a system probe command fails or returns unusable output."""

    def __init__(self, probe: str, message: str):
        self.probe = probe
        super().__init__(f"{probe}: {message}")


class ConfigurationError(RemediationError):
    """Raised when settings are missing or invalid."""
    pass
