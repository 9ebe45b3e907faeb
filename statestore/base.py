"""State store interface the alarm core depends on.

Every method raises detector.errors.StoreError on failure.  There is no
read-modify-write apart from mark_alarmed(), which is the only operation
that may be used to decide who gets to send an alert.
"""

from statestore.records import ClientRecord


class StateStore:

    def upsert(self, record: ClientRecord) -> None:
        """Write one record keyed by (client_ip, timestamp), overwriting its attributes."""
        raise NotImplementedError

    def get(self, client_ip: str, timestamp: int) -> ClientRecord | None:
        raise NotImplementedError

    def query_window(self, client_ip: str, start: int, end: int) -> list[ClientRecord]:
        """Records with start <= timestamp <= end, ascending by timestamp."""
        raise NotImplementedError

    def list_distinct_clients(self) -> set[str]:
        raise NotImplementedError

    def register_client(self, client_ip: str) -> None:
        """Add *client_ip* to the inventory the reconciler scans."""
        raise NotImplementedError

    def mark_alarmed(self, client_ip: str, timestamp: int) -> bool:
        """Move a record Unalarmed -> Alarmed.

        Returns False, without writing, when the record is missing or is
        already Alarmed.
        """
        raise NotImplementedError

    def reset_alarm(self, client_ip: str, timestamp: int) -> None:
        """Put a claimed record back to Unalarmed (publish failed)."""
        raise NotImplementedError
