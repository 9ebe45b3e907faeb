"""Persisted per-client records and their alarm status."""

from dataclasses import dataclass
from enum import Enum

# Records expire this long after the event.  Enforced by the storage
# lifecycle (DynamoDB TTL), never by the core.
EXPIRE_AFTER_SECONDS = 8 * 3600


class AlarmStatus(str, Enum):
    UNALARMED = "Unalarmed"
    ALARMED = "Alarmed"


@dataclass
class ClientRecord:
    """One blocked request, keyed by (client_ip, timestamp)."""

    client_ip: str
    timestamp: int               # epoch milliseconds
    formatted_timestamp: str
    detail: str                  # raw JSON, verbatim
    status: AlarmStatus = AlarmStatus.UNALARMED
    expire_time: int | None = None

    def __post_init__(self):
        self.status = AlarmStatus(self.status)
        if self.expire_time is None:
            self.expire_time = self.timestamp // 1000 + EXPIRE_AFTER_SECONDS

    @property
    def key(self) -> tuple[str, int]:
        return self.client_ip, self.timestamp

    @classmethod
    def from_event(cls, event, status: AlarmStatus = AlarmStatus.UNALARMED):
        return cls(
            client_ip=event.client_ip,
            timestamp=event.timestamp_ms,
            formatted_timestamp=event.formatted_timestamp,
            detail=event.detail,
            status=status,
        )
