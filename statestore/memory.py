"""In-process state store.

Used for local runs without AWS and throughout the tests.  A lock makes
mark_alarmed() a true compare-and-set, so concurrent detectors sharing one
instance in a process behave like they would against DynamoDB.
"""

import threading
from dataclasses import replace

from statestore.base import StateStore
from statestore.records import AlarmStatus, ClientRecord


class MemoryStateStore(StateStore):

    def __init__(self):
        self._records: dict[tuple[str, int], ClientRecord] = {}
        self._clients: set[str] = set()
        self._lock = threading.Lock()

    def upsert(self, record):
        with self._lock:
            self._records[record.key] = replace(record)

    def get(self, client_ip, timestamp):
        with self._lock:
            record = self._records.get((client_ip, timestamp))
            return replace(record) if record else None

    def query_window(self, client_ip, start, end):
        with self._lock:
            hits = [
                replace(r) for (ip, ts), r in self._records.items()
                if ip == client_ip and start <= ts <= end
            ]
        return sorted(hits, key=lambda r: r.timestamp)

    def list_distinct_clients(self):
        with self._lock:
            return set(self._clients)

    def register_client(self, client_ip):
        with self._lock:
            self._clients.add(client_ip)

    def mark_alarmed(self, client_ip, timestamp):
        with self._lock:
            record = self._records.get((client_ip, timestamp))
            if record is None or record.status != AlarmStatus.UNALARMED:
                return False
            record.status = AlarmStatus.ALARMED
            return True

    def reset_alarm(self, client_ip, timestamp):
        with self._lock:
            record = self._records.get((client_ip, timestamp))
            if record is not None:
                record.status = AlarmStatus.UNALARMED

    def __len__(self):
        return len(self._records)
