"""
Check runner.

Drives one check through detection or remediation and turns the outcome
into the process exit code. Remediation runs own the ResultAggregator,
persist the serialized result, and submit the report envelope when an
endpoint is configured.
"""

import logging
from typing import Optional

from .aggregator import ResultAggregator
from .checks import RemediationCheck
from .config import RemediationSettings
from .crypto import Ed25519Signer
from .exit_policy import EXIT_FAILURE, detection_exit_code, remediation_exit_code
from .submitter import ReportSubmitter, build_envelope, serialize

logger = logging.getLogger(__name__)


class CheckRunner:
    """Runs a single check in detection or remediation mode."""

    def __init__(self, check: RemediationCheck, settings: RemediationSettings):
        self.check = check
        self.settings = settings

    async def run_detection(self) -> int:
        """
        Run the detection pass.

        Returns:
            0 when compliant, 1 when remediation is needed or detection failed
        """
        logger.info(f"Detecting: {self.check.description or self.check.name}")

        try:
            verdict = await self.check.detect()
        except Exception as e:
            logger.exception(f"Detection for {self.check.name} failed: {e}")
            return EXIT_FAILURE

        if verdict.needs_remediation:
            for reason in verdict.reasons:
                logger.warning(reason)
            logger.warning(f"{self.check.name}: remediation needed")
        else:
            logger.info(f"{self.check.name}: compliant")

        return detection_exit_code(verdict)

    async def run_remediation(self) -> int:
        """
        Run the remediation pass, persist and submit the result.

        Returns:
            0 when no critical error was recorded, otherwise 1
        """
        logger.info(f"Remediating: {self.check.description or self.check.name}")
        aggregator = ResultAggregator()

        try:
            await self.check.remediate(aggregator)
        except Exception as e:
            logger.exception(f"Remediation for {self.check.name} failed")
            aggregator.record_critical_error(f"Unhandled error during {self.check.name} remediation: {e}")

        try:
            await self._report(aggregator)
        except Exception as e:
            logger.exception("Reporting failed")
            aggregator.record_critical_error(f"Unhandled error while reporting: {e}")

        logger.info(f"{self.check.name}: {aggregator.summary()}")
        return remediation_exit_code(aggregator.result)

    async def _report(self, aggregator: ResultAggregator) -> None:
        submitter = ReportSubmitter(
            aggregator,
            api_failure_policy=self.settings.api_failure_policy,
            timeout_seconds=self.settings.http_timeout_seconds,
            max_body_bytes=self.settings.max_body_bytes,
            signer=self._load_signer(aggregator)
        )

        preferred, fallback = self.check.report_paths()
        persisted = submitter.persist_locally(serialize(aggregator.result), preferred, fallback)

        endpoint_url = self.settings.endpoint_url
        identity = self.settings.device_identity
        if not endpoint_url or identity is None:
            logger.warning("No reporting endpoint configured, skipping submission")
            return

        submitted = await submitter.submit(build_envelope(aggregator.result, identity), endpoint_url)

        # A failed submission adds an entry; the local file must show it too
        if not submitted.success and persisted.success:
            submitter.persist_locally(serialize(aggregator.result), persisted.path)

    def _load_signer(self, aggregator: ResultAggregator) -> Optional[Ed25519Signer]:
        key_file = self.settings.signing_key_file
        if key_file is None:
            return None

        try:
            return Ed25519Signer(key_file)
        except ValueError as e:
            aggregator.record_item_error(str(key_file), f"Cannot load signing key: {e}")
            return None
