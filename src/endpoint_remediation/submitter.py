"""
Report submission.

Serializes the remediation result, persists it to a local diagnostic file
and posts the report envelope to the reporting endpoint. Every failure is
recorded through the run's ResultAggregator; nothing here raises to the
caller.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import List, Optional

import aiohttp

from . import __version__
from .aggregator import ResultAggregator
from .config import ApiFailurePolicy
from .crypto import Ed25519Signer
from .models import (
    DeviceIdentity,
    PersistOutcome,
    RemediationResult,
    ReportEnvelope,
    SubmitOutcome,
)

logger = logging.getLogger(__name__)


MAX_ERROR_BODY_CHARS = 500


def serialize(result: RemediationResult) -> str:
    """Canonical JSON for a result: fixed field order, UTF-8 text, no escaping."""
    return json.dumps(
        result.model_dump(mode="json", by_alias=True),
        indent=2,
        ensure_ascii=False
    )


def serialize_envelope(envelope: ReportEnvelope) -> str:
    return json.dumps(
        envelope.model_dump(mode="json", by_alias=True),
        ensure_ascii=False
    )


def build_envelope(result: RemediationResult, identity: DeviceIdentity) -> ReportEnvelope:
    """Wrap a result for submission; status is True when no critical error was recorded."""
    return ReportEnvelope(
        id_group=identity.id_group,
        status=result.succeeded,
        action_remediation=result,
        id_device=identity.id_device
    )


class ReportSubmitter:
    """
    Persists and submits the report for one run.

    API failures are recorded according to `api_failure_policy`: demoted to
    a file-level error (item "api") so they never fail the run, or recorded
    as a critical error.
    """

    def __init__(
        self,
        aggregator: ResultAggregator,
        api_failure_policy: ApiFailurePolicy = ApiFailurePolicy.DEMOTE,
        timeout_seconds: float = 30,
        max_body_bytes: int = 1024 * 1024,
        signer: Optional[Ed25519Signer] = None
    ):
        self.aggregator = aggregator
        self.api_failure_policy = api_failure_policy
        self.timeout_seconds = timeout_seconds
        self.max_body_bytes = max_body_bytes
        self.signer = signer

    def persist_locally(
        self,
        json_text: str,
        preferred_path: Path,
        fallback_path: Optional[Path] = None
    ) -> PersistOutcome:
        """
        Write the report, trying preferred_path first and then fallback_path.

        If neither can be written, exactly one critical error is recorded.
        """
        errors: List[str] = []
        data = json_text.encode('utf-8', errors='backslashreplace')

        for path, is_fallback in ((preferred_path, False), (fallback_path, True)):
            if path is None:
                continue
            path = Path(path)
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_bytes(data)
            except OSError as e:
                logger.warning(f"Cannot write report to {path}: {e}")
                errors.append(f"{path}: {e}")
                continue

            logger.info(f"Report written to {path}")
            return PersistOutcome(
                success=True,
                path=path,
                used_fallback=is_fallback,
                signature_path=self._sign(path, data)
            )

        message = "Failed to write report locally: " + "; ".join(errors)
        self.aggregator.record_critical_error(message)
        return PersistOutcome(success=False, error=message)

    def _sign(self, path: Path, data: bytes) -> Optional[Path]:
        if self.signer is None:
            return None

        signature_path = path.with_name(path.name + ".sig")
        try:
            signature_path.write_bytes(self.signer.sign(data))
        except (OSError, ValueError) as e:
            self.aggregator.record_item_error(str(signature_path), f"Cannot write signature: {e}")
            return None

        logger.debug(f"Signature written to {signature_path}")
        return signature_path

    async def submit(self, envelope: ReportEnvelope, endpoint_url: str) -> SubmitOutcome:
        """POST the envelope once. No retries."""
        body = serialize_envelope(envelope).encode('utf-8', errors='backslashreplace')

        if len(body) > self.max_body_bytes:
            return self._api_failure(
                f"Report body of {len(body)} bytes exceeds limit of {self.max_body_bytes}"
            )

        status_code = None
        try:
            timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)

            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(
                    endpoint_url,
                    data=body,
                    headers={
                        "Content-Type": "application/json",
                        "User-Agent": f"endpoint-remediation/{__version__}"
                    }
                ) as response:
                    status_code = response.status
                    raw = await response.read()
                    text = raw.decode('utf-8', errors='replace')

                    if 200 <= status_code < 300:
                        logger.info(f"Report submitted to {endpoint_url} (HTTP {status_code})")
                        return SubmitOutcome(
                            success=True,
                            status_code=status_code,
                            response_body=text
                        )

                    return self._api_failure(
                        f"HTTP {status_code}: {text[:MAX_ERROR_BODY_CHARS]}",
                        status_code=status_code,
                        response_body=text
                    )

        except asyncio.TimeoutError:
            return self._api_failure(
                f"Request timed out after {self.timeout_seconds}s",
                status_code=status_code
            )
        except aiohttp.ClientError as e:
            return self._api_failure(f"Connection error: {e}", status_code=status_code)
        except Exception as e:
            logger.exception("Unexpected error submitting report")
            return self._api_failure(f"Unexpected error: {e}", status_code=status_code)

    def _api_failure(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None
    ) -> SubmitOutcome:
        if self.api_failure_policy == ApiFailurePolicy.CRITICAL:
            self.aggregator.record_critical_error(f"Report submission failed: {message}")
        else:
            self.aggregator.record_item_error("api", message)

        return SubmitOutcome(
            success=False,
            status_code=status_code,
            response_body=response_body,
            error=message
        )
