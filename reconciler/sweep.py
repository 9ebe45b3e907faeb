"""Reconciler sweep: catches clients the streaming path missed.

A client blocked a few times in each of several batches never trips the
batch-local burst rule.  The sweep re-reads persisted records for every
known client over the trailing window and applies the recurrence rule.

Fail-fast: any store error aborts the sweep with nothing retained, and a
publish error aborts it once that alert's claim has been undone.  The next
scheduled sweep starts over.  Only one sweep may run at a time; that is up
to whatever schedules it.
"""

import logging
import time
from dataclasses import dataclass, field

from detector import metrics
from detector.errors import AlarmError
from detector.evaluator import AlarmEvaluator

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    now: int                                  # epoch ms the window ends at
    clients_scanned: int = 0
    candidates: list = field(default_factory=list)   # AlarmNotification
    published: list = field(default_factory=list)
    skipped: list = field(default_factory=list)      # claim lost


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


class Reconciler:

    def __init__(self, store, dispatcher, evaluator: AlarmEvaluator | None = None,
                 clock=_now_ms):
        self.store = store
        self.dispatcher = dispatcher
        self.evaluator = evaluator or AlarmEvaluator()
        self.clock = clock

    def run(self, now: int | None = None) -> SweepResult:
        """One sweep over [now - window, now].  *now* is epoch milliseconds."""
        now = self.clock() if now is None else now
        started = time.monotonic()
        try:
            result = self._sweep(now)
        except AlarmError:
            metrics.sweeps_total.labels(result="failed").inc()
            raise
        finally:
            metrics.sweep_duration.observe(time.monotonic() - started)
        metrics.sweeps_total.labels(result="ok").inc()
        return result

    def _sweep(self, now: int) -> SweepResult:
        result = SweepResult(now=now)
        start = now - self.evaluator.window_ms

        # Evaluate everything first, then send; a store error while
        # scanning leaves nothing half-sent.
        for client_ip in sorted(self.store.list_distinct_clients()):
            records = self.store.query_window(client_ip, start, now)
            result.clients_scanned += 1
            notification = self.evaluator.check_window(client_ip, records)
            if notification is not None:
                result.candidates.append(notification)
        metrics.clients_scanned.set(result.clients_scanned)

        logger.info("sweep at %d: %d clients, %d candidate alerts",
                    now, result.clients_scanned, len(result.candidates))

        for notification in result.candidates:
            if self.dispatcher.dispatch(notification):
                result.published.append(notification)
            else:
                result.skipped.append(notification)
        return result
