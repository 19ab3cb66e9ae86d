"""
Result aggregation for a remediation run.

A single ResultAggregator is created per run and handed to every
remediation action. Recording never fails: whatever an action passes in is
turned into text and appended.
"""

import logging
from typing import Any, Tuple

from .models import FileLevelError, RemediationResult

logger = logging.getLogger(__name__)


def _as_text(value: Any) -> str:
    if not isinstance(value, str):
        try:
            value = str(value)
        except Exception:
            value = object.__repr__(value)
    # Undecodable file names arrive as lone surrogates; keep them as escapes
    return value.encode('utf-8', errors='backslashreplace').decode('utf-8')


class ResultAggregator:
    """
    Append-only accumulator for one RemediationResult.

    Entries keep insertion order. Nothing is ever removed.
    """

    def __init__(self):
        self._result = RemediationResult()

    def record_success(self, message: Any) -> None:
        """Record a completed task."""
        text = _as_text(message)
        self._result.completed_tasks.append(text)
        logger.info(text)

    def record_item_error(self, item: Any, message: Any) -> None:
        """Record a failure on one item; the run still succeeds."""
        item_text = _as_text(item)
        text = _as_text(message)
        self._result.file_level_errors.append(FileLevelError(item=item_text, error=text))
        logger.warning(f"{item_text}: {text}")

    def record_critical_error(self, message: Any) -> None:
        """Record a failure that fails the whole run."""
        text = _as_text(message)
        self._result.critical_errors.append(text)
        logger.error(text)

    @property
    def result(self) -> RemediationResult:
        """Snapshot of the accumulated result."""
        return self._result.model_copy(deep=True)

    @property
    def completed_tasks(self) -> Tuple[str, ...]:
        return tuple(self._result.completed_tasks)

    @property
    def file_level_errors(self) -> Tuple[FileLevelError, ...]:
        return tuple(self._result.file_level_errors)

    @property
    def critical_errors(self) -> Tuple[str, ...]:
        return tuple(self._result.critical_errors)

    @property
    def has_critical_errors(self) -> bool:
        return bool(self._result.critical_errors)

    def summary(self) -> str:
        return (
            f"{len(self._result.completed_tasks)} completed, "
            f"{len(self._result.file_level_errors)} item errors, "
            f"{len(self._result.critical_errors)} critical errors"
        )
