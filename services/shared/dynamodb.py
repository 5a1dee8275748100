"""
DynamoDB Helpers
================
Thin wrappers around boto3 for the patterns the funding lifecycle relies on:
- Optimistic locking with version counters (per-item compare-and-set)
- Multi-item transactions that either all commit or none do
- Paginated scans for the read surface
- Decimal → int conversion for items coming back from DynamoDB

Per-event concurrency never takes a lock. Every writer reads the event's
`version`, and its write is conditioned on that version being unchanged.
"""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Iterator

import boto3
from botocore.exceptions import ClientError

logger = logging.getLogger(__name__)

CONDITIONAL_CHECK_FAILED = "ConditionalCheckFailedException"
TRANSACTION_CANCELED = "TransactionCanceledException"


class OptimisticLockError(Exception):
    """Raised when a concurrent update was detected. Caller should retry."""


def dynamodb_resource(region: str, endpoint_url: str | None = None):
    kwargs: dict[str, Any] = {"region_name": region}
    if endpoint_url:
        kwargs["endpoint_url"] = endpoint_url
    return boto3.resource("dynamodb", **kwargs)


def error_code(exc: ClientError) -> str:
    return exc.response.get("Error", {}).get("Code", "")


def put_item_with_optimistic_lock(
    table,
    item: dict,
    key_name: str,
    version_key: str = "version",
) -> dict:
    """
    Write item with optimistic locking and return what was written.

    Increments `version_key` on every write. Version 0 means "new item" and
    the write requires the key to be absent. Otherwise the stored version
    must still equal the one the caller read.
    """
    current_version = int(item.get(version_key, 0))
    new_item = {**item, version_key: current_version + 1}

    try:
        if current_version == 0:
            table.put_item(
                Item=new_item,
                ConditionExpression="attribute_not_exists(#k)",
                ExpressionAttributeNames={"#k": key_name},
            )
        else:
            table.put_item(
                Item=new_item,
                ConditionExpression="#v = :v",
                ExpressionAttributeNames={"#v": version_key},
                ExpressionAttributeValues={":v": current_version},
            )
    except ClientError as e:
        if error_code(e) == CONDITIONAL_CHECK_FAILED:
            raise OptimisticLockError(
                f"Item was modified by another process (version mismatch at v{current_version})"
            ) from e
        raise
    return new_item


def transact_write(client, items: list[dict]) -> None:
    """
    Commit `items` as one DynamoDB transaction.

    `client` must be the high-level resource's `meta.client` so plain Python
    values are serialized for us. A cancelled transaction (some condition
    failed) surfaces as OptimisticLockError; the caller re-reads and decides.
    Anything else (throttling, missing table) propagates as ClientError.
    """
    try:
        client.transact_write_items(TransactItems=items)
    except ClientError as e:
        if error_code(e) in (TRANSACTION_CANCELED, CONDITIONAL_CHECK_FAILED):
            reasons = [r.get("Code") for r in e.response.get("CancellationReasons", [])]
            logger.info("Transaction cancelled", extra={"cancellation_reasons": reasons})
            raise OptimisticLockError("Transaction cancelled by a failed condition") from e
        raise


def scan_all(table, **kwargs) -> Iterator[dict]:
    """Yield every item matching the scan, following LastEvaluatedKey."""
    while True:
        resp = table.scan(**kwargs)
        for item in resp.get("Items", []):
            yield decimal_to_python(item)
        last_key = resp.get("LastEvaluatedKey")
        if not last_key:
            return
        kwargs["ExclusiveStartKey"] = last_key


def decimal_to_python(obj: Any) -> Any:
    """
    DynamoDB returns Decimals for all numbers.
    Recursively convert to int or float for JSON serialization.
    """
    if isinstance(obj, Decimal):
        if obj % 1 == 0:
            return int(obj)
        return float(obj)
    if isinstance(obj, dict):
        return {k: decimal_to_python(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [decimal_to_python(v) for v in obj]
    return obj
