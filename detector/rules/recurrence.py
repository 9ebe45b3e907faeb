"""Recurrence: repeated blocking spread across several batches.

Reconcile path only.  Looks at every persisted record of one client in the
trailing window and fires when there are at least *threshold* of them and
none has been alarmed yet.  A single Alarmed record anywhere in the window
means the window was already reported.
"""

from detector.rules import Rule
from statestore.records import AlarmStatus


class RecurrenceRule(Rule):
    id = "waf_recurrence"
    name = "WAF Recurrent Blocking"
    threshold = 3
    window_seconds = 300

    def trigger(self, records):
        if len(records) < self.threshold:
            return False
        return all(r.status == AlarmStatus.UNALARMED for r in records)
