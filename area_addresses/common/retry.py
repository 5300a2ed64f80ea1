"""Retry policy shared by the query gateway and the geocode enricher."""

from __future__ import annotations

import logging
from typing import Callable, TypeVar

from tenacity import RetryCallState, Retrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from area_addresses.common.errors import RateLimitedError, ServiceUnavailableError
from area_addresses.common.logging import log_event

T = TypeVar("T")

TRANSIENT_ERRORS = (RateLimitedError, ServiceUnavailableError)


def retry_transient(
    fn: Callable[..., T],
    *args,
    attempts: int = 2,
    backoff_seconds: float = 1.0,
    logger: logging.Logger | None = None,
    source: str | None = None,
    **kwargs,
) -> T:
    """Call `fn`, retrying transient service errors after a fixed backoff.

    The last error is re-raised once `attempts` calls have failed.
    """

    def _before_sleep(state: RetryCallState) -> None:
        if logger is None or state.outcome is None:
            return
        exc = state.outcome.exception()
        log_event(
            logger,
            f"transient failure, retrying in {backoff_seconds}s",
            level=logging.WARNING,
            source=source,
            event="RETRY",
            status="retry",
            attempt=state.attempt_number,
            error_code=getattr(exc, "error_code", None),
        )

    retrying = Retrying(
        stop=stop_after_attempt(attempts),
        wait=wait_fixed(backoff_seconds),
        retry=retry_if_exception_type(TRANSIENT_ERRORS),
        before_sleep=_before_sleep,
        reraise=True,
    )
    return retrying(fn, *args, **kwargs)
