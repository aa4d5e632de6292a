"""
In-memory idempotency and retry ledgers.

ProcessingLedger tracks, per draft order id, whether the order was fully
processed and how many processing attempts it has consumed. SentEmailLedger
remembers which individual emails went out so a retried order does not resend
an email that already succeeded.

Both stores are memory-resident and are cleared wholesale on a fixed period
(periodic_reset). Duplicate deliveries arriving more than one reset interval
apart are therefore processed again, and all state is lost on restart.

Check-and-increment runs under a lock with no await in between, so two
deliveries for the same order cannot both claim the same attempt slot.
Deliveries that interleave across the pipeline's remote calls can still both
be allowed before either completes.
"""

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, Optional, Protocol

logger = logging.getLogger(__name__)

Clock = Callable[[], float]

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_RETRY_WINDOW_SECONDS = 5 * 60
DEFAULT_RESET_INTERVAL_SECONDS = 60 * 60


class DecisionReason(str, Enum):
    FIRST_ATTEMPT = "first_attempt"
    RETRY = "retry"
    RETRY_WINDOW = "retry_window"
    ALREADY_PROCESSED = "already_processed"
    TOO_MANY_ATTEMPTS = "too_many_attempts"


@dataclass(frozen=True)
class ProcessingDecision:
    """Outcome of ProcessingLedger.should_process()."""
    allow: bool
    reason: DecisionReason
    attempts: int


@dataclass
class AttemptInfo:
    attempts: int
    last_attempt: float


class Resettable(Protocol):
    def reset(self) -> None: ...


class ProcessingLedger:
    """
    Per-order completion set plus attempt counters.

    Rules, evaluated in order by should_process():
      1. Completed orders are rejected as ALREADY_PROCESSED (benign duplicate).
      2. Orders with attempts >= max_attempts are rejected as TOO_MANY_ATTEMPTS.
      3. Orders last attempted within retry_window_seconds are allowed
         (RETRY_WINDOW, logged only).
      4. Otherwise allowed (FIRST_ATTEMPT / RETRY).
    Allowed decisions increment the attempt counter and stamp the clock;
    rejected decisions leave the counter untouched.
    """

    def __init__(
        self,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_window_seconds: float = DEFAULT_RETRY_WINDOW_SECONDS,
        clock: Clock = time.monotonic,
    ):
        self.max_attempts = max_attempts
        self.retry_window_seconds = retry_window_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._completed: set[str] = set()
        self._attempts: dict[str, AttemptInfo] = {}

    def check(self, order_id: str) -> ProcessingDecision:
        """Evaluate the rules without recording an attempt."""
        with self._lock:
            return self._evaluate(order_id, self._clock())

    def record_attempt(self, order_id: str) -> int:
        """Increment the attempt counter for order_id and return the new count."""
        with self._lock:
            return self._record(order_id, self._clock())

    def should_process(self, order_id: str) -> ProcessingDecision:
        """
        Check and, when allowed, record an attempt as a single atomic step.

        The returned decision carries the attempt number being started when
        allowed, or the current count when rejected.
        """
        with self._lock:
            now = self._clock()
            decision = self._evaluate(order_id, now)
            if not decision.allow:
                return decision
            attempts = self._record(order_id, now)

        logger.info(
            "Draft order %s - attempt %d of %d (%s)",
            order_id, attempts, self.max_attempts, decision.reason.value,
        )
        return ProcessingDecision(allow=True, reason=decision.reason, attempts=attempts)

    def complete(self, order_id: str) -> None:
        """Mark order_id as fully processed until the next reset."""
        with self._lock:
            self._completed.add(order_id)
        logger.info("Draft order %s marked as processed", order_id)

    def is_completed(self, order_id: str) -> bool:
        with self._lock:
            return order_id in self._completed

    def attempts(self, order_id: str) -> int:
        with self._lock:
            info = self._attempts.get(order_id)
            return info.attempts if info else 0

    def reset(self) -> None:
        """Clear both the completion set and all attempt counters."""
        with self._lock:
            completed, tracked = len(self._completed), len(self._attempts)
            self._completed.clear()
            self._attempts.clear()
        logger.info(
            "Processing ledger cleared (%d completed, %d tracked orders)",
            completed, tracked,
        )

    # Callers must hold self._lock.

    def _evaluate(self, order_id: str, now: float) -> ProcessingDecision:
        if order_id in self._completed:
            logger.info("Draft order %s already processed, ignoring", order_id)
            info = self._attempts.get(order_id)
            return ProcessingDecision(
                allow=False,
                reason=DecisionReason.ALREADY_PROCESSED,
                attempts=info.attempts if info else 0,
            )

        info = self._attempts.get(order_id)
        if info is None:
            return ProcessingDecision(allow=True, reason=DecisionReason.FIRST_ATTEMPT, attempts=0)

        if info.attempts >= self.max_attempts:
            logger.warning(
                "Draft order %s exceeded max attempts (%d)", order_id, self.max_attempts
            )
            return ProcessingDecision(
                allow=False, reason=DecisionReason.TOO_MANY_ATTEMPTS, attempts=info.attempts
            )

        if now - info.last_attempt < self.retry_window_seconds:
            logger.info(
                "Draft order %s inside retry window, allowing attempt %d",
                order_id, info.attempts + 1,
            )
            return ProcessingDecision(
                allow=True, reason=DecisionReason.RETRY_WINDOW, attempts=info.attempts
            )

        return ProcessingDecision(allow=True, reason=DecisionReason.RETRY, attempts=info.attempts)

    def _record(self, order_id: str, now: float) -> int:
        info = self._attempts.get(order_id)
        attempts = (info.attempts if info else 0) + 1
        self._attempts[order_id] = AttemptInfo(attempts=attempts, last_attempt=now)
        return attempts


class SentEmailLedger:
    """Set of already-dispatched emails keyed by role, order id and recipient."""

    def __init__(self):
        self._lock = threading.Lock()
        self._sent: set[str] = set()

    @staticmethod
    def key(role: str, order_id, email: str) -> str:
        return f"{role}_{order_id}_{email}"

    def contains(self, key: str) -> bool:
        with self._lock:
            return key in self._sent

    def record(self, key: str) -> None:
        with self._lock:
            self._sent.add(key)
        logger.info("Email marked as sent: %s", key)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sent)

    def reset(self) -> None:
        with self._lock:
            count = len(self._sent)
            self._sent.clear()
        logger.info("Sent email ledger cleared (%d entries)", count)


async def periodic_reset(
    stores: Iterable[Resettable],
    interval_seconds: float = DEFAULT_RESET_INTERVAL_SECONDS,
    *,
    iterations: Optional[int] = None,
) -> None:
    """
    Reset every store once per interval until cancelled.

    iterations bounds the loop (tests); None runs forever.
    """
    stores = list(stores)
    done = 0
    while iterations is None or done < iterations:
        await asyncio.sleep(interval_seconds)
        for store in stores:
            store.reset()
        done += 1
