"""Batch-scoped tally of client sightings.

One WindowedCounter is built per consumed batch and dropped when the batch
is done; it never carries memory across batches.  Persisted alarm status in
the state store is the only thing shared between batches.

Counting is deliberately offset by one: the first sighting only registers
presence (count stays 0) and every repeat adds 1.  With the default burst
threshold of 5 a client therefore needs 6 sightings in one batch to alarm.
"""

from dataclasses import dataclass

from statestore.records import AlarmStatus


@dataclass
class CounterEntry:
    count: int = 0
    status: AlarmStatus = AlarmStatus.UNALARMED
    earliest: object | None = None   # Event with the smallest timestamp seen

    def keep_earliest(self, event) -> None:
        if event is None:
            return
        if self.earliest is None or event.timestamp < self.earliest.timestamp:
            self.earliest = event


class WindowedCounter:
    __slots__ = ("_entries",)

    def __init__(self):
        self._entries: dict[str, CounterEntry] = {}

    def register_first_sighting(self, client_ip: str, event=None) -> CounterEntry:
        """Record presence only.  The count stays at 0."""
        if client_ip in self._entries:
            raise ValueError(f"{client_ip} already registered in this batch")
        entry = CounterEntry()
        entry.keep_earliest(event)
        self._entries[client_ip] = entry
        return entry

    def increment_on_repeat_sighting(self, client_ip: str, event=None) -> CounterEntry:
        entry = self._entries[client_ip]
        entry.count += 1
        entry.keep_earliest(event)
        return entry

    def observe(self, client_ip: str, event=None) -> bool:
        """Return True if the client was already seen in this batch."""
        if client_ip not in self._entries:
            self.register_first_sighting(client_ip, event)
            return False
        self.increment_on_repeat_sighting(client_ip, event)
        return True

    def count(self, client_ip: str) -> int:
        entry = self._entries.get(client_ip)
        return entry.count if entry else 0

    def status(self, client_ip: str) -> AlarmStatus:
        entry = self._entries.get(client_ip)
        return entry.status if entry else AlarmStatus.UNALARMED

    def entry(self, client_ip: str) -> CounterEntry | None:
        return self._entries.get(client_ip)

    def mark_alarmed(self, client_ip: str) -> None:
        self._entries[client_ip].status = AlarmStatus.ALARMED

    def __contains__(self, client_ip: str) -> bool:
        return client_ip in self._entries

    def __len__(self) -> int:
        return len(self._entries)
