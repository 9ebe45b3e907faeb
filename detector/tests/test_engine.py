"""Tests for StreamingDetector: thresholds, dedup, per-record isolation."""

import json
from datetime import timezone

import pytest

from detector.dispatch import AlarmDispatcher
from detector.engine import DECODE_ERROR, OK, PUBLISH_ERROR, STORE_ERROR, StreamingDetector
from detector.errors import PublishError, StoreError
from detector.evaluator import AlarmEvaluator
from detector.rules import BurstRule
from notifier.publishers import LogNotifier, Notifier
from statestore.memory import MemoryStateStore
from statestore.records import AlarmStatus

_T0 = 1700000000000


def _raw(client_ip="10.0.0.1", offset_ms=0, **extra):
    """Helper to build a raw WAF record with sane defaults."""
    doc = {
        "httpRequest": {
            "clientIp": client_ip,
            "country": "NL",
            "headers": [],
            "httpMethod": "GET",
            "uri": "/login",
        },
        "timestamp": _T0 + offset_ms,
    }
    doc.update(extra)
    return json.dumps(doc)


def _burst(client_ip, n, start=0):
    return [_raw(client_ip, offset_ms=start + i * 1000) for i in range(n)]


class _FlakyStore(MemoryStateStore):
    """Fails upsert for one client."""

    def __init__(self, bad_ip):
        super().__init__()
        self.bad_ip = bad_ip

    def upsert(self, record):
        if record.client_ip == self.bad_ip:
            raise StoreError("throttled")
        super().upsert(record)


class _ClaimedElsewhereStore(MemoryStateStore):
    """Every claim is lost, as if another evaluator got there first."""

    def __init__(self):
        super().__init__()
        self.claim_attempts = 0

    def mark_alarmed(self, client_ip, timestamp):
        self.claim_attempts += 1
        return False


class _FailingNotifier(Notifier):
    def publish(self, subject, body):
        raise PublishError("topic unreachable")


def _detector(store=None, notifier=None, evaluator=None):
    store = MemoryStateStore() if store is None else store
    notifier = LogNotifier() if notifier is None else notifier
    return StreamingDetector(store, AlarmDispatcher(store, notifier), evaluator,
                             tz=timezone.utc), store, notifier


# ---------------------------------------------------------------------------
# Threshold: first sighting is presence only, so 5 needs 6
# ---------------------------------------------------------------------------

class TestThreshold:
    def test_six_occurrences_fire_once_on_the_sixth(self):
        detector, store, notifier = _detector()
        records = _burst("10.0.0.1", 6)

        result = detector.process_batch(records[:5])
        assert result.alerts == []

        detector, store, notifier = _detector()
        result = detector.process_batch(records)
        assert len(result.alerts) == 1
        assert len(notifier.published) == 1
        sixth = _T0 + 5 * 1000
        assert result.alerts[0].keys == [_T0 + i * 1000 for i in range(6)]
        assert store.get("10.0.0.1", sixth).status == AlarmStatus.ALARMED

    def test_five_or_fewer_never_fire(self):
        for n in range(1, 6):
            detector, _, notifier = _detector()
            result = detector.process_batch(_burst("10.0.0.1", n))
            assert result.alerts == []
            assert notifier.published == []

    def test_alert_payload_is_earliest_record(self):
        detector, _, notifier = _detector()
        records = _burst("10.0.0.1", 6)
        detector.process_batch(records)
        subject, body = notifier.published[0]
        assert subject == "alert for frequent blocking 10.0.0.1 at 2023-11-14T22:13:20 +00:00:00"
        assert json.loads(body) == json.loads(records[0])

    def test_custom_burst_threshold(self):
        evaluator = AlarmEvaluator(burst=BurstRule(threshold=2))
        detector, _, _ = _detector(evaluator=evaluator)
        result = detector.process_batch(_burst("10.0.0.1", 3))
        assert len(result.alerts) == 1


# ---------------------------------------------------------------------------
# Dedup: one alert per client per batch, none across batches via store status
# ---------------------------------------------------------------------------

class TestDedup:
    def test_more_sightings_do_not_fire_again(self):
        detector, _, notifier = _detector()
        result = detector.process_batch(_burst("10.0.0.1", 20))
        assert len(result.alerts) == 1
        assert len(notifier.published) == 1

    def test_counter_does_not_carry_across_batches(self):
        detector, _, notifier = _detector()
        detector.process_batch(_burst("10.0.0.1", 4))
        result = detector.process_batch(_burst("10.0.0.1", 4, start=10_000))
        assert result.alerts == []
        assert notifier.published == []

    def test_lost_claim_publishes_nothing_and_stops_retrying(self):
        store = _ClaimedElsewhereStore()
        detector, _, notifier = _detector(store=store)
        result = detector.process_batch(_burst("10.0.0.1", 8))
        assert result.alerts == []
        assert notifier.published == []
        assert store.claim_attempts == 1

    def test_overlapping_batches_on_two_detectors_alert_once(self):
        store = MemoryStateStore()
        notifier = LogNotifier()
        first, _, _ = _detector(store, notifier)
        second, _, _ = _detector(store, notifier)
        first_result = first.process_batch(_burst("10.0.0.1", 6))
        second_result = second.process_batch(_burst("10.0.0.1", 6, start=500))
        assert len(first_result.alerts) == 1
        assert second_result.alerts == []
        assert len(notifier.published) == 1
        # Nothing the losing detector wrote stays claimed.
        assert store.get("10.0.0.1", _T0 + 5500).status == AlarmStatus.UNALARMED

    def test_alarmed_record_in_window_suppresses_burst(self):
        detector, store, notifier = _detector()
        detector.process_batch(_burst("10.0.0.1", 6))
        result = detector.process_batch(_burst("10.0.0.1", 6, start=60_000))
        assert result.alerts == []
        assert len(notifier.published) == 1

    def test_redelivered_batch_alerts_again(self):
        # Upsert rewrites status unconditionally, so a redelivered batch
        # starts from Unalarmed records.
        store = MemoryStateStore()
        notifier = LogNotifier()
        first, _, _ = _detector(store, notifier)
        second, _, _ = _detector(store, notifier)
        records = _burst("10.0.0.1", 6)
        first.process_batch(records)
        second.process_batch(records)
        assert len(notifier.published) == 2


class TestClientIsolation:
    def test_clients_counted_separately(self):
        detector, _, _ = _detector()
        records = _burst("10.0.0.1", 3) + _burst("10.0.0.2", 3, start=100)
        result = detector.process_batch(records)
        assert result.alerts == []

    def test_only_offender_alerts(self):
        detector, _, _ = _detector()
        records = _burst("10.0.0.2", 2) + _burst("10.0.0.1", 6, start=100)
        result = detector.process_batch(records)
        assert [a.client_ip for a in result.alerts] == ["10.0.0.1"]

    def test_every_record_is_persisted_and_client_registered(self):
        detector, store, _ = _detector()
        detector.process_batch(_burst("10.0.0.1", 3) + _burst("10.0.0.2", 1, start=50))
        assert len(store) == 4
        assert store.list_distinct_clients() == {"10.0.0.1", "10.0.0.2"}
        rec = store.get("10.0.0.2", _T0 + 50)
        assert rec.status == AlarmStatus.UNALARMED
        assert rec.expire_time == (_T0 + 50) // 1000 + 8 * 3600


# ---------------------------------------------------------------------------
# Per-record isolation
# ---------------------------------------------------------------------------

class TestRecordIsolation:
    def test_malformed_record_does_not_stop_batch(self):
        detector, store, _ = _detector()
        records = _burst("10.0.0.1", 3) + ["{garbage"] + _burst("10.0.0.1", 3, start=10_000)
        result = detector.process_batch(records)
        assert [o.outcome for o in result.outcomes].count(DECODE_ERROR) == 1
        assert result.outcomes[3].outcome == DECODE_ERROR
        assert result.ok == 6
        assert len(result.alerts) == 1
        assert len(store) == 6

    def test_timestamp_out_of_range_for_display_zone_is_isolated(self):
        store = MemoryStateStore()
        detector = StreamingDetector(store, AlarmDispatcher(store, LogNotifier()))
        records = [_raw("10.0.0.1", 253402300799000 - _T0), _raw("10.0.0.2")]
        result = detector.process_batch(records)
        assert [o.outcome for o in result.outcomes] == [DECODE_ERROR, OK]
        assert result.outcomes[1].client_ip == "10.0.0.2"

    def test_store_error_is_isolated(self):
        detector, store, _ = _detector(store=_FlakyStore("10.0.0.9"))
        records = [_raw("10.0.0.9")] + _burst("10.0.0.1", 6, start=10)
        result = detector.process_batch(records)
        assert result.outcomes[0].outcome == STORE_ERROR
        assert result.outcomes[0].client_ip == "10.0.0.9"
        assert result.ok == 6
        assert len(result.alerts) == 1

    def test_publish_error_leaves_record_unalarmed_and_retries_next_sighting(self):
        detector, store, _ = _detector(notifier=_FailingNotifier())
        result = detector.process_batch(_burst("10.0.0.1", 7))
        assert [o.outcome for o in result.outcomes[-2:]] == [PUBLISH_ERROR, PUBLISH_ERROR]
        assert result.alerts == []
        assert store.get("10.0.0.1", _T0 + 5000).status == AlarmStatus.UNALARMED

    def test_counts_summary(self):
        detector, _, _ = _detector()
        result = detector.process_batch([_raw(), "nope", _raw(offset_ms=1)])
        assert result.counts() == {OK: 2, DECODE_ERROR: 1}
        assert len(result.failed) == 1

    @pytest.mark.parametrize("batch", [[], iter([])])
    def test_empty_batch(self, batch):
        detector, _, _ = _detector()
        result = detector.process_batch(batch)
        assert result.outcomes == []
        assert result.alerts == []
