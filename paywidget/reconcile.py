# paywidget/reconcile.py
# Status reconciliation: poll the backend until a subscription appears or the
# automatic attempt budget runs out. Manual checks stay available throughout.

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

from paywidget.services.status import OUTCOME_ERROR, OUTCOME_SUCCESS, StatusResult

log = logging.getLogger(__name__)

DEFAULT_INTERVAL = 30.0
DEFAULT_MAX_ATTEMPTS = 10

PENDING_MESSAGE = "Your payment is being processed"
ERROR_MESSAGE = "Could not reach the payment service; still pending"
SUCCESS_MESSAGE = "Your subscription has been activated"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ReconciliationAttempt:
    count: int = 0
    last_checked: Optional[datetime] = None
    last_payload: Optional[Dict[str, Any]] = None
    terminal: bool = False
    message: str = PENDING_MESSAGE

    def record(self, result: StatusResult, now: Optional[datetime] = None) -> "ReconciliationAttempt":
        """
        Apply one backend response. The increment happens here, when the
        response lands, so overlapping checks each count exactly once.
        """
        if self.terminal:
            return self

        self.last_checked = now or _utcnow()
        if result.outcome == OUTCOME_SUCCESS:
            self.terminal = True
            self.last_payload = dict(result.payload)
            self.message = SUCCESS_MESSAGE
            return self

        self.count += 1
        if result.outcome == OUTCOME_ERROR:
            self.message = ERROR_MESSAGE
        else:
            self.last_payload = dict(result.payload)
            self.message = PENDING_MESSAGE
        return self

    def exhausted(self, max_attempts: int = DEFAULT_MAX_ATTEMPTS) -> bool:
        return self.count >= max_attempts

    def should_auto_poll(self, max_attempts: int = DEFAULT_MAX_ATTEMPTS) -> bool:
        return not self.terminal and not self.exhausted(max_attempts)

    @property
    def plan_name(self) -> str:
        sub = (self.last_payload or {}).get("subscription")
        plan = sub.get("plan") if isinstance(sub, dict) else None
        name = plan.get("name") if isinstance(plan, dict) else None
        return str(name) if name else "Unknown Plan"


Fetch = Callable[[str], Awaitable[StatusResult]]


class ReconciliationLoop:
    """
    One loop per checkout reference. Automatic checks run on a timer task;
    check_now() may run at any time and may overlap with an automatic tick.
    """

    def __init__(
        self,
        checkout_id: str,
        fetch: Fetch,
        *,
        interval: float = DEFAULT_INTERVAL,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff_factor: float = 1.0,
        jitter: float = 0.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        on_update: Optional[Callable[[ReconciliationAttempt], None]] = None,
    ) -> None:
        if not checkout_id:
            raise ValueError("checkout_id is required to reconcile a payment")
        self.checkout_id = checkout_id
        self.fetch = fetch
        self.interval = float(interval)
        self.max_attempts = int(max_attempts)
        self.backoff_factor = max(1.0, float(backoff_factor))
        self.jitter = max(0.0, float(jitter))
        self._sleep = sleep
        self.on_update = on_update

        self.attempt = ReconciliationAttempt()
        self.in_flight = 0
        self._stop: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def stop_event(self) -> asyncio.Event:
        if self._stop is None:
            self._stop = asyncio.Event()
        return self._stop

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def delay_for(self, count: int) -> float:
        delay = self.interval * (self.backoff_factor ** max(0, count))
        if self.jitter:
            delay += random.uniform(0.0, self.jitter)
        return delay

    async def _check(self, reason: str) -> ReconciliationAttempt:
        if self.attempt.terminal:
            return self.attempt

        self.in_flight += 1
        try:
            result = await self.fetch(self.checkout_id)
        except Exception as e:
            log.warning("Error checking status for %s (%s): %s", self.checkout_id, reason, e)
            result = StatusResult.failed(str(e))
        finally:
            self.in_flight -= 1

        self.attempt.record(result)
        log.info(
            "Reconciliation %s for %s: outcome=%s count=%d/%d",
            reason,
            self.checkout_id,
            result.outcome,
            self.attempt.count,
            self.max_attempts,
        )
        if self.on_update is not None:
            self.on_update(self.attempt)
        return self.attempt

    async def check_now(self) -> ReconciliationAttempt:
        """Manual check. Available even after the automatic budget is spent."""
        return await self._check("manual")

    async def run(self) -> ReconciliationAttempt:
        stop = self.stop_event
        while not stop.is_set() and self.attempt.should_auto_poll(self.max_attempts):
            await self._sleep(self.delay_for(self.attempt.count if self.backoff_factor > 1.0 else 0))
            if stop.is_set() or not self.attempt.should_auto_poll(self.max_attempts):
                break
            await self._check("auto")
        return self.attempt

    def start(self) -> asyncio.Task:
        if self.running:
            return self._task  # type: ignore[return-value]
        self._task = asyncio.ensure_future(self.run())
        return self._task

    def cancel(self) -> None:
        self.stop_event.set()
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def wait(self) -> ReconciliationAttempt:
        if self._task is None:
            return self.attempt
        try:
            return await self._task
        except asyncio.CancelledError:
            if self._task.cancelled():
                return self.attempt
            raise
