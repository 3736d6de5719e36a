from __future__ import annotations

import time
from decimal import Decimal
from typing import Any, Callable

from core.errors import StoreError
from store.kv_interface import KeyValueStoreProtocol

try:
    import boto3  # type: ignore
    from boto3.dynamodb.conditions import Attr  # type: ignore
    from botocore.exceptions import BotoCoreError, ClientError  # type: ignore
except Exception as exc:  # pragma: no cover - import guard for local envs
    boto3 = None
    Attr = None
    BotoCoreError = Exception
    ClientError = Exception
    _BOTO3_IMPORT_ERROR = exc
else:
    _BOTO3_IMPORT_ERROR = None

_CONDITION_FAILED = "ConditionalCheckFailedException"
_INCR_ATTEMPTS = 3


class DynamoKeyValueStore(KeyValueStoreProtocol):
    """Key-value store on a single DynamoDB table.

    Items carry ``pk``, a string value ``v`` or a numeric counter ``n``, and an
    optional ``expires_at_epoch`` used as the table TTL attribute. DynamoDB
    deletes expired items lazily, so reads treat them as absent and writes
    guard on the expiry themselves.
    """

    def __init__(
        self,
        *,
        table_name: str = "shopbot-kv",
        region_name: str | None = None,
        endpoint_url: str | None = None,
        dynamodb_resource: Any | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        if boto3 is None and dynamodb_resource is None:
            raise RuntimeError(f"boto3 is required for DynamoKeyValueStore: {_BOTO3_IMPORT_ERROR}")
        self._clock = clock or time.time
        self._ddb = dynamodb_resource or boto3.resource(
            "dynamodb",
            region_name=region_name,
            endpoint_url=endpoint_url,
        )
        self._table = self._ddb.Table(table_name)

    def ping(self) -> bool:
        try:
            self._table.get_item(Key={"pk": "__ping__"})
        except (ClientError, BotoCoreError):
            return False
        return True

    def get(self, key: str) -> str | None:
        item = self._get_live_item(key)
        if item is None:
            return None
        value = item.get("v")
        return str(value) if value is not None else None

    def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        self._table.put_item(Item=self._value_item(key, value, ttl_seconds))

    def set_if_absent(self, key: str, value: str, ttl_seconds: int | None = None) -> bool:
        try:
            self._table.put_item(
                Item=self._value_item(key, value, ttl_seconds),
                ConditionExpression="attribute_not_exists(pk) OR expires_at_epoch <= :now",
                ExpressionAttributeValues={":now": self._now_epoch()},
            )
            return True
        except ClientError as exc:
            if _error_code(exc) == _CONDITION_FAILED:
                return False
            raise

    def compare_and_set(
        self,
        key: str,
        expected: str | None,
        value: str,
        ttl_seconds: int | None = None,
    ) -> bool:
        if expected is None:
            return self.set_if_absent(key, value, ttl_seconds)
        try:
            self._table.put_item(
                Item=self._value_item(key, value, ttl_seconds),
                ConditionExpression="#v = :expected AND (attribute_not_exists(expires_at_epoch) OR expires_at_epoch > :now)",
                ExpressionAttributeNames={"#v": "v"},
                ExpressionAttributeValues={":expected": expected, ":now": self._now_epoch()},
            )
            return True
        except ClientError as exc:
            if _error_code(exc) == _CONDITION_FAILED:
                return False
            raise

    def delete(self, key: str) -> None:
        self._table.delete_item(Key={"pk": key})

    def expire(self, key: str, ttl_seconds: int) -> None:
        try:
            self._table.update_item(
                Key={"pk": key},
                UpdateExpression="SET expires_at_epoch = :expires",
                ConditionExpression="attribute_exists(pk)",
                ExpressionAttributeValues={":expires": self._now_epoch() + max(1, int(ttl_seconds))},
            )
        except ClientError as exc:
            if _error_code(exc) != _CONDITION_FAILED:
                raise

    def get_counter(self, key: str) -> int | None:
        item = self._get_live_item(key)
        if item is None or item.get("n") is None:
            return None
        return int(item["n"])

    def set_counter(self, key: str, value: int) -> None:
        self._table.put_item(Item={"pk": key, "n": int(value)})

    def incr(self, key: str, amount: int = 1, ttl_seconds: int | None = None) -> int:
        now = self._now_epoch()
        update = "ADD #n :amount"
        values: dict[str, Any] = {":amount": int(amount), ":now": now}
        if ttl_seconds is not None:
            update += " SET expires_at_epoch = if_not_exists(expires_at_epoch, :expires)"
            values[":expires"] = now + max(1, int(ttl_seconds))
        for _ in range(_INCR_ATTEMPTS):
            try:
                resp = self._table.update_item(
                    Key={"pk": key},
                    UpdateExpression=update,
                    ConditionExpression="attribute_not_exists(expires_at_epoch) OR expires_at_epoch > :now",
                    ExpressionAttributeNames={"#n": "n"},
                    ExpressionAttributeValues=values,
                    ReturnValues="UPDATED_NEW",
                )
                return int(resp.get("Attributes", {}).get("n", amount))
            except ClientError as exc:
                if _error_code(exc) != _CONDITION_FAILED:
                    raise
            # The previous window expired but the item has not been reaped yet.
            # Only one writer may reopen it; the others go back to the ADD.
            item: dict[str, Any] = {"pk": key, "n": int(amount)}
            if ttl_seconds is not None:
                item["expires_at_epoch"] = now + max(1, int(ttl_seconds))
            try:
                self._table.put_item(
                    Item=item,
                    ConditionExpression="attribute_not_exists(pk) OR expires_at_epoch <= :now",
                    ExpressionAttributeValues={":now": now},
                )
                return int(amount)
            except ClientError as exc:
                if _error_code(exc) != _CONDITION_FAILED:
                    raise
        raise StoreError(f"counter update kept conflicting: {key}")

    def decrement_if_sufficient(self, key: str, amount: int) -> int | None:
        try:
            resp = self._table.update_item(
                Key={"pk": key},
                UpdateExpression="ADD #n :negative",
                ConditionExpression="attribute_exists(#n) AND #n >= :amount",
                ExpressionAttributeNames={"#n": "n"},
                ExpressionAttributeValues={":negative": -int(amount), ":amount": int(amount)},
                ReturnValues="UPDATED_NEW",
            )
        except ClientError as exc:
            if _error_code(exc) == _CONDITION_FAILED:
                return None
            raise
        return int(resp.get("Attributes", {}).get("n", 0))

    def scan_prefix(self, prefix: str) -> dict[str, str]:
        kwargs: dict[str, Any] = {"FilterExpression": Attr("pk").begins_with(prefix)}
        now = self._now_epoch()
        out: dict[str, str] = {}
        while True:
            resp = self._table.scan(**kwargs)
            for item in resp.get("Items", []):
                if _is_expired(item, now) or item.get("v") is None:
                    continue
                out[str(item["pk"])] = str(item["v"])
            last_key = resp.get("LastEvaluatedKey")
            if not last_key:
                break
            kwargs["ExclusiveStartKey"] = last_key
        return out

    def _get_live_item(self, key: str) -> dict[str, Any] | None:
        resp = self._table.get_item(Key={"pk": key}, ConsistentRead=True)
        item = resp.get("Item")
        if not item or _is_expired(item, self._now_epoch()):
            return None
        return item

    def _value_item(self, key: str, value: str, ttl_seconds: int | None) -> dict[str, Any]:
        item: dict[str, Any] = {"pk": key, "v": value}
        if ttl_seconds is not None:
            item["expires_at_epoch"] = self._now_epoch() + max(1, int(ttl_seconds))
        return item

    def _now_epoch(self) -> int:
        return int(self._clock())


def _is_expired(item: dict[str, Any], now_epoch: int) -> bool:
    expires = item.get("expires_at_epoch")
    if expires is None:
        return False
    if isinstance(expires, Decimal):
        expires = int(expires)
    return int(expires) <= now_epoch


def _error_code(exc: Exception) -> str:
    response = getattr(exc, "response", None) or {}
    return str(response.get("Error", {}).get("Code", ""))
