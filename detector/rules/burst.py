"""Burst: one client blocked over and over inside a single batch.

Streaming path only.  Fires when the client's in-batch count reaches the
threshold and the batch has not already alarmed for it.  The count starts
at 0 on first sighting, so the default threshold of 5 means 6 blocked
requests in one batch.
"""

from detector.rules import Rule
from statestore.records import AlarmStatus


class BurstRule(Rule):
    id = "waf_burst"
    name = "WAF Burst Blocking"
    threshold = 5
    # Bounded by the batch itself, not by wall-clock time.
    window_seconds = 0

    def trigger(self, entry):
        return entry.count >= self.threshold and entry.status != AlarmStatus.ALARMED
