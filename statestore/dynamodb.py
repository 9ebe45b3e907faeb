"""DynamoDB-backed state store.

Event table:     clientIp (S, hash) + timestamp (N, range)
                 formattedTimestamp (S), expireTime (N, TTL attribute),
                 messageDetail (S), alarmed (S: Alarmed | Unalarmed)
Inventory table: clientIp (S, hash), scanned with a projection only.

Uses the low-level boto3 client so every request is spelled out; the
client is injectable for tests.
"""

import logging

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from detector.errors import StoreError
from statestore.base import StateStore
from statestore.records import AlarmStatus, ClientRecord

logger = logging.getLogger(__name__)

_RETRY_CONFIG = Config(retries={"max_attempts": 5, "mode": "standard"})

_NAMES = {
    "#IP": "clientIp",
    "#TS": "timestamp",
    "#FTS": "formattedTimestamp",
    "#ET": "expireTime",
    "#MD": "messageDetail",
    "#AD": "alarmed",
}


def _key(client_ip: str, timestamp: int) -> dict:
    return {"clientIp": {"S": client_ip}, "timestamp": {"N": str(timestamp)}}


def _names(*placeholders: str) -> dict:
    return {p: _NAMES[p] for p in placeholders}


class DynamoStateStore(StateStore):

    def __init__(self, table_name: str, inventory_table: str | None = None,
                 client=None, region_name: str | None = None):
        if not table_name:
            raise ValueError("event table name is required (set TABLENAME)")
        self.table_name = table_name
        self.inventory_table = inventory_table or None
        self._client = client or boto3.client(
            "dynamodb", region_name=region_name, config=_RETRY_CONFIG,
        )

    # ------------------------------------------------------------------
    # StateStore interface
    # ------------------------------------------------------------------

    def upsert(self, record):
        self._call(
            "update_item",
            TableName=self.table_name,
            Key=_key(record.client_ip, record.timestamp),
            UpdateExpression="SET #FTS = :fts, #ET = :et, #MD = :md, #AD = :ad",
            ExpressionAttributeNames=_names("#FTS", "#ET", "#MD", "#AD"),
            ExpressionAttributeValues={
                ":fts": {"S": record.formatted_timestamp},
                ":et": {"N": str(record.expire_time)},
                ":md": {"S": record.detail},
                ":ad": {"S": record.status.value},
            },
        )

    def get(self, client_ip, timestamp):
        resp = self._call(
            "get_item",
            TableName=self.table_name,
            Key=_key(client_ip, timestamp),
            ConsistentRead=True,
        )
        item = resp.get("Item")
        return self._to_record(item) if item else None

    def query_window(self, client_ip, start, end):
        params = {
            "TableName": self.table_name,
            "KeyConditionExpression": "#IP = :ip AND #TS BETWEEN :start AND :end",
            "ProjectionExpression": "#IP, #TS, #FTS, #ET, #MD, #AD",
            "ExpressionAttributeNames": _names("#IP", "#TS", "#FTS", "#ET", "#MD", "#AD"),
            "ExpressionAttributeValues": {
                ":ip": {"S": client_ip},
                ":start": {"N": str(start)},
                ":end": {"N": str(end)},
            },
            "ScanIndexForward": True,
            "ConsistentRead": True,
        }
        records = []
        for page in self._pages("query", params):
            records.extend(self._to_record(item) for item in page.get("Items", []))
        return records

    def list_distinct_clients(self):
        # Without an inventory table, fall back to scanning the event table.
        table = self.inventory_table or self.table_name
        params = {
            "TableName": table,
            "ProjectionExpression": "#IP",
            "ExpressionAttributeNames": _names("#IP"),
        }
        clients = set()
        for page in self._pages("scan", params):
            for item in page.get("Items", []):
                ip = item.get("clientIp", {}).get("S")
                if ip:
                    clients.add(ip)
        return clients

    def register_client(self, client_ip):
        if not self.inventory_table:
            return
        self._call(
            "put_item",
            TableName=self.inventory_table,
            Item={"clientIp": {"S": client_ip}},
        )

    def mark_alarmed(self, client_ip, timestamp):
        try:
            self._client.update_item(
                TableName=self.table_name,
                Key=_key(client_ip, timestamp),
                UpdateExpression="SET #AD = :alarmed",
                ConditionExpression="#AD = :unalarmed",
                ExpressionAttributeNames=_names("#AD"),
                ExpressionAttributeValues={
                    ":alarmed": {"S": AlarmStatus.ALARMED.value},
                    ":unalarmed": {"S": AlarmStatus.UNALARMED.value},
                },
            )
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException":
                logger.debug("claim lost for %s@%s", client_ip, timestamp)
                return False
            raise StoreError(f"update_item on {self.table_name} failed: {e}") from e
        except BotoCoreError as e:
            raise StoreError(f"update_item on {self.table_name} failed: {e}") from e
        return True

    def reset_alarm(self, client_ip, timestamp):
        self._call(
            "update_item",
            TableName=self.table_name,
            Key=_key(client_ip, timestamp),
            UpdateExpression="SET #AD = :unalarmed",
            ConditionExpression="attribute_exists(#AD)",
            ExpressionAttributeNames=_names("#AD"),
            ExpressionAttributeValues={":unalarmed": {"S": AlarmStatus.UNALARMED.value}},
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _call(self, operation: str, **params) -> dict:
        try:
            return getattr(self._client, operation)(**params)
        except (ClientError, BotoCoreError) as e:
            logger.error("%s on %s failed: %s", operation, params.get("TableName"), e)
            raise StoreError(f"{operation} on {params.get('TableName')} failed: {e}") from e

    def _pages(self, operation: str, params: dict):
        """Yield every page of a query/scan, following LastEvaluatedKey."""
        params = dict(params)
        while True:
            page = self._call(operation, **params)
            yield page
            last_key = page.get("LastEvaluatedKey")
            if not last_key:
                return
            params["ExclusiveStartKey"] = last_key

    @staticmethod
    def _to_record(item: dict) -> ClientRecord:
        try:
            expire = item.get("expireTime", {}).get("N")
            return ClientRecord(
                client_ip=item["clientIp"]["S"],
                timestamp=int(item["timestamp"]["N"]),
                formatted_timestamp=item.get("formattedTimestamp", {}).get("S", ""),
                detail=item.get("messageDetail", {}).get("S", ""),
                status=item.get("alarmed", {}).get("S", AlarmStatus.UNALARMED.value),
                expire_time=int(expire) if expire is not None else None,
            )
        except (KeyError, ValueError) as e:
            raise StoreError(f"malformed item {item!r}: {e}") from e
