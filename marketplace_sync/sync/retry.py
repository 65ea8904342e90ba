"""
Retry ladder around sync passes.

A failed pass is retried after 1s, 1m, 5m, 15m, 1h; the sixth failure ends the
sequence. Errors that no amount of waiting can fix (revoked credentials, missing or
disabled integration) end it immediately. A caller deadline ends it before any wait
that would run past it.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional, Sequence

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_chain,
    wait_fixed,
)
from tenacity.stop import stop_base

from marketplace_sync.core.logging import get_logger
from marketplace_sync.core.time import utcnow
from marketplace_sync.sync.errors import NON_RETRYABLE_ERRORS
from marketplace_sync.sync.models import SyncResult
from marketplace_sync.sync.orchestrator import SyncOrchestrator

logger = get_logger(__name__)

# Seconds to wait after the 1st, 2nd, ... failed attempt
RETRY_DELAYS: tuple[int, ...] = (1, 60, 300, 900, 3600, 14400)
MAX_ATTEMPTS = len(RETRY_DELAYS)


def is_retryable(error: BaseException) -> bool:
    # Cancellation and other BaseExceptions must propagate untouched
    return isinstance(error, Exception) and not isinstance(error, NON_RETRYABLE_ERRORS)


class stop_before_deadline(stop_base):
    """Stop when the next wait would end at or after the deadline."""

    def __init__(
        self,
        deadline: Optional[datetime],
        delays: Sequence[float],
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.deadline = deadline
        self.delays = tuple(delays)
        self.clock = clock
        self.reached = False

    def __call__(self, retry_state: RetryCallState) -> bool:
        if self.deadline is None:
            return False
        index = min(retry_state.attempt_number, len(self.delays)) - 1
        resume_at = self.clock() + timedelta(seconds=self.delays[index])
        self.reached = resume_at >= self.deadline
        return self.reached


def _log_retry(retry_state: RetryCallState) -> None:
    error = retry_state.outcome.exception() if retry_state.outcome else None
    delay = retry_state.next_action.sleep if retry_state.next_action else 0
    logger.warning(
        f"Sync attempt {retry_state.attempt_number} failed: {error}. Retrying in {delay:.0f}s",
    )


class RetryCoordinator:
    """Runs SyncOrchestrator.sync_once under the retry ladder."""

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        delays: Sequence[float] = RETRY_DELAYS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if not delays:
            raise ValueError("At least one retry delay is required")
        self.orchestrator = orchestrator
        self.delays = tuple(delays)
        self.sleep = sleep
        self.clock = clock

    def _retrying(self, deadline_stop: stop_before_deadline) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(len(self.delays)) | deadline_stop,
            wait=wait_chain(*[wait_fixed(delay) for delay in self.delays]),
            retry=retry_if_exception(is_retryable),
            sleep=self.sleep,
            before_sleep=_log_retry,
            reraise=True,
        )

    async def sync_with_retry(
        self,
        integration_id: str,
        company_id: Optional[str],
        tenant_id: str,
        deadline: Optional[datetime] = None,
    ) -> SyncResult:
        """
        Sync with retries. Always returns a SyncResult.

        The first pass that completes ends the sequence, whatever its per-order
        errors. When every attempt fails, or one fails with a non-retryable error,
        the result has ``success=False`` and one ``Sync attempt <n>: <message>``
        entry per failed attempt. When the next wait would run past ``deadline`` the
        sequence ends early with ``cancelled=True``.
        """
        errors: list[str] = []
        deadline_stop = stop_before_deadline(deadline, self.delays, self.clock)

        try:
            async for attempt in self._retrying(deadline_stop):
                with attempt:
                    try:
                        return await self.orchestrator.sync_once(
                            integration_id, company_id, tenant_id, deadline=deadline
                        )
                    except Exception as e:
                        errors.append(f"Sync attempt {attempt.retry_state.attempt_number}: {e}")
                        raise
        except Exception as e:
            logger.error(
                f"Sync failed after {len(errors)} attempts: {e}",
                extra={"integration_id": integration_id, "tenant_id": tenant_id},
            )

        return SyncResult(success=False, errors=errors, cancelled=deadline_stop.reached)
