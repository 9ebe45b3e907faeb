"""Streaming detector: processes one batch of WAF log records.

Pure business logic, no Kafka dependency.  The consumer service feeds
batches in; the state store, dispatcher and evaluator are injected.

Per record:
  1. Decode  : raw text -> Event
  2. Persist : upsert the record as Unalarmed, unconditionally
  3. Count   : first sighting registers presence (and the client in the
                inventory), each repeat increments the batch-local count
  4. Evaluate: on a repeat sighting, ask the burst rule
  5. Alert   : claim every persisted record of the client in the trailing
                window, publish, mark the client alarmed for the rest of
                the batch

A failure on one record is recorded and the batch goes on.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import tzinfo

from detector import metrics
from detector.counter import WindowedCounter
from detector.decoder import DEFAULT_TZ, decode_record
from detector.errors import DecodeError, PublishError, StoreError
from detector.evaluator import AlarmEvaluator
from statestore.records import ClientRecord

logger = logging.getLogger(__name__)

OK = "ok"
DECODE_ERROR = "decode_error"
STORE_ERROR = "store_error"
PUBLISH_ERROR = "publish_error"


@dataclass
class RecordOutcome:
    index: int
    outcome: str
    client_ip: str | None = None
    error: str | None = None


@dataclass
class BatchResult:
    outcomes: list[RecordOutcome] = field(default_factory=list)
    alerts: list = field(default_factory=list)   # AlarmNotification, published

    @property
    def ok(self) -> int:
        return sum(1 for o in self.outcomes if o.outcome == OK)

    @property
    def failed(self) -> list[RecordOutcome]:
        return [o for o in self.outcomes if o.outcome != OK]

    def counts(self) -> dict[str, int]:
        tally: dict[str, int] = {}
        for o in self.outcomes:
            tally[o.outcome] = tally.get(o.outcome, 0) + 1
        return tally


class StreamingDetector:

    def __init__(self, store, dispatcher, evaluator: AlarmEvaluator | None = None,
                 tz: tzinfo = DEFAULT_TZ):
        self.store = store
        self.dispatcher = dispatcher
        self.evaluator = evaluator or AlarmEvaluator()
        self.tz = tz

    def process_batch(self, records) -> BatchResult:
        """Run every raw record of one batch; never raises for a bad record."""
        counter = WindowedCounter()
        result = BatchResult()
        records = list(records)
        metrics.batch_size.observe(len(records))

        for index, raw in enumerate(records):
            outcome = self._process_record(index, raw, counter, result)
            metrics.records_total.labels(outcome=outcome.outcome).inc()
            result.outcomes.append(outcome)

        if result.failed:
            logger.warning("batch finished with failures: %s", result.counts())
        return result

    def _process_record(self, index, raw, counter, result) -> RecordOutcome:
        try:
            event = decode_record(raw, self.tz)
        except DecodeError as e:
            logger.error("record %d: %s", index, e)
            return RecordOutcome(index, DECODE_ERROR, error=str(e))

        ip = event.client_ip
        metrics.blocked_by_country.labels(country=event.request.country or "unknown").inc()

        try:
            self.store.upsert(ClientRecord.from_event(event))

            if not counter.observe(ip, event):
                self.store.register_client(ip)
                return RecordOutcome(index, OK, ip)

            notification = self.evaluator.check_burst(ip, counter.entry(ip), event)
            if notification is not None:
                notification = replace(notification, keys=self._window_keys(ip, event))
                if self.dispatcher.dispatch(notification):
                    result.alerts.append(notification)
                # Claimed by us or by someone else: either way this batch
                # must not try again for this client.
                counter.mark_alarmed(ip)
        except StoreError as e:
            logger.error("record %d (%s): %s", index, ip, e)
            return RecordOutcome(index, STORE_ERROR, ip, str(e))
        except PublishError as e:
            logger.error("record %d (%s): %s", index, ip, e)
            return RecordOutcome(index, PUBLISH_ERROR, ip, str(e))

        logger.debug("%s count=%d status=%s", ip, counter.count(ip), counter.status(ip).value)
        return RecordOutcome(index, OK, ip)

    def _window_keys(self, client_ip, event) -> list[int]:
        """Timestamps of every persisted record in [ts - window, ts].

        Claiming the whole window, not just this batch's records, makes a
        detector on an overlapping batch lose the claim to whoever alerted
        first.  Ascending order keeps two claimants contending for the same
        first key.
        """
        ts = event.timestamp_ms
        records = self.store.query_window(client_ip, ts - self.evaluator.window_ms, ts)
        return sorted({r.timestamp for r in records} | {ts})
