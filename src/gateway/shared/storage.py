"""
Key-Value Store Module
======================

Small persistence layer behind the CSRF state-token slot.

For On-Call Engineers:
    - The in-memory store is process-local: restarting the app drops any
      outstanding state token, so pending email links stop working.
    - When STATE_TOKEN_TABLE is set the DynamoDB store is used instead.
      If validation always fails, check the table exists and the role has
      GetItem/PutItem/DeleteItem permissions.

For Developers:
    - Values are JSON-compatible dicts. Integers come back from DynamoDB
      as Decimal, so DynamoDBKeyValueStore converts them back to int.
    - Keys use composite format: PK=KV#{key}, SK=VALUE.
    - delete_if() is the consume primitive. On DynamoDB it is a
      conditional DeleteItem, so it holds across processes sharing a table.
"""

from __future__ import annotations

import logging
import os
import threading
from decimal import Decimal
from typing import Any, Protocol

import boto3
from botocore.config import Config

logger = logging.getLogger(__name__)

KV_PREFIX = "KV#"
KV_SORT_KEY = "VALUE"

# Retry configuration for transient failures
RETRY_CONFIG = Config(
    retries={
        "max_attempts": 3,
        "mode": "adaptive",
    },
    connect_timeout=5,
    read_timeout=10,
)


class KeyValueStore(Protocol):
    """Minimal key-value persistence contract."""

    def get(self, key: str) -> dict[str, Any] | None: ...

    def put(self, key: str, value: dict[str, Any]) -> None: ...

    def delete(self, key: str) -> None: ...

    def delete_if(self, key: str, field: str, expected: Any) -> bool: ...


class InMemoryKeyValueStore:
    """Thread-safe dict-backed store. Values are copied on read and write."""

    def __init__(self) -> None:
        self._items: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> dict[str, Any] | None:
        with self._lock:
            value = self._items.get(key)
            return dict(value) if value is not None else None

    def put(self, key: str, value: dict[str, Any]) -> None:
        with self._lock:
            self._items[key] = dict(value)

    def delete(self, key: str) -> None:
        with self._lock:
            self._items.pop(key, None)

    def delete_if(self, key: str, field: str, expected: Any) -> bool:
        """Delete key only if value[field] == expected. Returns True if deleted."""
        with self._lock:
            value = self._items.get(key)
            if value is None or value.get(field) != expected:
                return False
            del self._items[key]
            return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


def _from_dynamodb(value: Any) -> Any:
    """Convert DynamoDB Decimals back to int/float."""
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {k: _from_dynamodb(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_from_dynamodb(v) for v in value]
    return value


def _to_dynamodb(value: Any) -> Any:
    """Convert floats to Decimal for DynamoDB writes."""
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, dict):
        return {k: _to_dynamodb(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_to_dynamodb(v) for v in value]
    return value


class DynamoDBKeyValueStore:
    """DynamoDB-backed store (one item per key).

    Args:
        table_name: DynamoDB table with PK/SK string keys
        region_name: AWS region (defaults to AWS_DEFAULT_REGION / AWS_REGION)
    """

    def __init__(self, table_name: str, region_name: str | None = None) -> None:
        self._table_name = table_name
        self._region_name = region_name
        self._table = None  # Lazy initialization

    def _get_table(self) -> Any:
        """Get DynamoDB table resource (lazy initialization)."""
        if self._table is None:
            region = (
                self._region_name
                or os.environ.get("AWS_DEFAULT_REGION")
                or os.environ.get("AWS_REGION")
            )
            if not region:
                raise ValueError(
                    "AWS_DEFAULT_REGION or AWS_REGION environment variable must be set"
                )
            dynamodb = boto3.resource(
                "dynamodb", region_name=region, config=RETRY_CONFIG
            )
            self._table = dynamodb.Table(self._table_name)
        return self._table

    @staticmethod
    def _key(key: str) -> dict[str, str]:
        return {"PK": f"{KV_PREFIX}{key}", "SK": KV_SORT_KEY}

    def get(self, key: str) -> dict[str, Any] | None:
        response = self._get_table().get_item(Key=self._key(key), ConsistentRead=True)
        item = response.get("Item")
        if not item:
            return None
        return _from_dynamodb(item.get("value", {}))

    def put(self, key: str, value: dict[str, Any]) -> None:
        self._get_table().put_item(
            Item={
                **self._key(key),
                "value": _to_dynamodb(value),
                "entity_type": "KV_ENTRY",
            }
        )

    def delete(self, key: str) -> None:
        self._get_table().delete_item(Key=self._key(key))

    def delete_if(self, key: str, field: str, expected: Any) -> bool:
        """Conditionally delete key, atomically across processes.

        Returns:
            True if the item existed with value[field] == expected and was
            deleted, False if the condition failed (already consumed or
            replaced by another writer)
        """
        table = self._get_table()
        try:
            table.delete_item(
                Key=self._key(key),
                ConditionExpression="#v.#f = :expected",
                ExpressionAttributeNames={"#v": "value", "#f": field},
                ExpressionAttributeValues={":expected": _to_dynamodb(expected)},
            )
        except table.meta.client.exceptions.ConditionalCheckFailedException:
            logger.debug("Conditional delete skipped: condition not met")
            return False
        return True
