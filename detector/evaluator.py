"""Alarm evaluator: decides whether one client's observations warrant an alert.

Pure logic, no I/O.  Both execution paths funnel through here so the alert
payload is chosen the same way: the earliest record the alert covers.
"""

import json
from dataclasses import dataclass, field

from detector.errors import PublishError
from detector.rules import BurstRule, RecurrenceRule

SUBJECT_TEMPLATE = "alert for frequent blocking {client_ip} at {formatted_timestamp}"

STREAMING = "streaming"
RECONCILE = "reconcile"


@dataclass
class AlarmNotification:
    client_ip: str
    formatted_timestamp: str
    detail: str
    path: str
    # Timestamps (epoch ms) of the records this alert covers.  These are the
    # records the dispatcher claims before publishing.
    keys: list[int] = field(default_factory=list)

    @property
    def subject(self) -> str:
        return SUBJECT_TEMPLATE.format(
            client_ip=self.client_ip,
            formatted_timestamp=self.formatted_timestamp,
        )

    def body(self) -> str:
        return render_body(self.detail)


def render_body(detail: str) -> str:
    """Tab-indented JSON of the original detail.

    Raises PublishError if the stored detail is not valid JSON; the alert
    cannot be delivered in that case.
    """
    try:
        doc = json.loads(detail)
    except (json.JSONDecodeError, TypeError) as e:
        raise PublishError(f"detail is not valid JSON: {e}") from e
    return json.dumps(doc, indent="\t", ensure_ascii=False)


class AlarmEvaluator:

    def __init__(self, burst: BurstRule | None = None, recurrence: RecurrenceRule | None = None):
        self.burst = burst or BurstRule()
        self.recurrence = recurrence or RecurrenceRule()

    @property
    def window_ms(self) -> int:
        return self.recurrence.window_seconds * 1000

    def check_burst(self, client_ip: str, entry, current=None) -> AlarmNotification | None:
        """Streaming rule over one client's batch-local counter entry.

        *current* is the event that triggered the check; its key is the one
        claimed unless the caller widens the claim to the persisted window.
        """
        if entry is None or not self.burst.trigger(entry):
            return None
        earliest = entry.earliest or current
        if earliest is None:
            return None
        claim = current if current is not None else earliest
        return AlarmNotification(
            client_ip=client_ip,
            formatted_timestamp=earliest.formatted_timestamp,
            detail=earliest.detail,
            path=STREAMING,
            keys=[claim.timestamp_ms],
        )

    def check_window(self, client_ip: str, records) -> AlarmNotification | None:
        """Reconcile rule over one client's persisted window."""
        if not self.recurrence.trigger(records):
            return None
        ordered = sorted(records, key=lambda r: r.timestamp)
        first = ordered[0]
        return AlarmNotification(
            client_ip=client_ip,
            formatted_timestamp=first.formatted_timestamp,
            detail=first.detail,
            path=RECONCILE,
            keys=[r.timestamp for r in ordered],
        )
