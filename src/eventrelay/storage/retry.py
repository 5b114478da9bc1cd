"""Retry utilities for storage operations.

Retries transient database errors (a locked SQLite file, a dropped
connection) with exponential backoff. Constraint violations and other
programming errors are not retried.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import OperationalError
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)


def _log_retry(retry_state: RetryCallState) -> None:
    if retry_state.attempt_number >= 1:
        logger.warning(
            "Retrying database operation",
            extra={
                "attempt": retry_state.attempt_number,
                "fn_name": retry_state.fn.__name__ if retry_state.fn else "unknown",
                "exception": str(retry_state.outcome.exception()) if retry_state.outcome else None,
            },
        )


db_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.1, min=0.1, max=2),
    retry=retry_if_exception_type(OperationalError),
    before_sleep=_log_retry,
    reraise=True,
)
