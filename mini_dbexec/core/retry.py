"""RetryGate: bounded, transience-aware retry around one execution attempt.

Uses tenacity with a constant delay. Outcomes come back as values: the caller
gets either the attempt's result or the final classified error, never a raw
exception from inside the loop.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    stop_any,
    wait_fixed,
)

from .cancellation import CancellationToken, OperationCancelledError, is_cancelled
from .errors import DbCallerError, DbError, map_exception
from .options import RetryConfig

T = TypeVar("T")

logger = structlog.get_logger(__name__)

_CANCEL_POLL_INTERVAL = 0.05


@dataclass(frozen=True)
class AttemptOutcome(Generic[T]):
    """Result of running an attempt function through the gate.

    Exactly one of `value`/`error` is meaningful; `ok` tells which.
    """

    value: Optional[T] = None
    error: Optional[DbError] = None
    exception: Optional[BaseException] = None
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        """Return the value or raise `DbCallerError` chained to the final failure."""

        if self.error is None:
            return self.value  # type: ignore[return-value]
        raise DbCallerError(self.error) from self.exception


class RetryGate:
    """Runs attempt functions at least once and at most `config.max_attempts` times.

    Example:
        gate = RetryGate(RetryConfig(enabled=True, max_attempts=3, delay=0.2))
        outcome = await gate.run(lambda: command.execute())
        rows = outcome.unwrap()
    """

    def __init__(
        self,
        config: RetryConfig,
        classify: Callable[[BaseException], DbError] = map_exception,
    ) -> None:
        self._config = config
        self._classify = classify

    @property
    def config(self) -> RetryConfig:
        return self._config

    def _is_transient(self, exc: BaseException) -> bool:
        return self._classify(exc).is_transient

    async def run(
        self,
        attempt_fn: Callable[[], Awaitable[T]],
        *,
        in_user_transaction: bool = False,
        cancellation: Optional[CancellationToken] = None,
    ) -> AttemptOutcome[T]:
        """Execute `attempt_fn` under the retry policy.

        Retry is skipped entirely when disabled or when the caller owns the
        surrounding transaction; retrying there could repeat partially-applied
        work the engine does not control.
        """

        if is_cancelled(cancellation):
            exc = OperationCancelledError("cancelled before the first attempt")
            return AttemptOutcome(error=self._classify(exc), exception=exc, attempts=0)

        if not self._config.enabled or in_user_transaction or self._config.max_attempts == 1:
            try:
                return AttemptOutcome(value=await attempt_fn(), attempts=1)
            except Exception as exc:
                return AttemptOutcome(error=self._classify(exc), exception=exc, attempts=1)

        attempts = 0
        last_exc: Optional[BaseException] = None

        def _stop_when_cancelled(retry_state: RetryCallState) -> bool:
            return is_cancelled(cancellation)

        async def _sleep(seconds: float) -> None:
            # Wakes early once cancellation is requested.
            loop = asyncio.get_running_loop()
            deadline = loop.time() + seconds
            while not is_cancelled(cancellation):
                remaining = deadline - loop.time()
                if remaining <= 0:
                    return
                await asyncio.sleep(min(remaining, _CANCEL_POLL_INTERVAL))

        try:
            async for attempt_state in AsyncRetrying(
                stop=stop_any(
                    stop_after_attempt(self._config.max_attempts),
                    _stop_when_cancelled,
                ),
                wait=wait_fixed(self._config.delay),
                retry=retry_if_exception(self._is_transient),
                before_sleep=self._log_retry,
                sleep=_sleep,
                reraise=True,
            ):
                if last_exc is not None and is_cancelled(cancellation):
                    break
                with attempt_state:
                    attempts = attempt_state.retry_state.attempt_number
                    try:
                        value = await attempt_fn()
                    except Exception as exc:
                        last_exc = exc
                        raise
                    return AttemptOutcome(value=value, attempts=attempts)
        except Exception as exc:
            return AttemptOutcome(error=self._classify(exc), exception=exc, attempts=attempts)

        if last_exc is None:  # pragma: no cover
            raise RuntimeError("Unexpected state in retry loop")
        # Cancelled during the delay: report the failure that caused the retry.
        logger.info("retry_cancelled", attempt=attempts)
        return AttemptOutcome(error=self._classify(last_exc), exception=last_exc, attempts=attempts)

    def _log_retry(self, retry_state: RetryCallState) -> None:
        outcome = retry_state.outcome
        exc: Any = outcome.exception() if outcome is not None else None
        error = self._classify(exc) if exc is not None else None
        logger.warning(
            "retry_scheduled",
            attempt=retry_state.attempt_number,
            max_attempts=self._config.max_attempts,
            delay=self._config.delay,
            error_kind=error.kind.value if error else None,
            error_code=error.code if error else None,
        )
