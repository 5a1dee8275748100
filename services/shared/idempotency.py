"""
Idempotent HTTP Commands
========================
API Gateway clients retry. Without a guard, a retried "create event" makes a
second event and a retried "pledge" makes a second pending contribution.

Implementation: DynamoDB conditional write with TTL.
  - On first receipt: atomically write idempotency_key → "IN_FLIGHT"
  - If write fails (key exists): return cached response immediately
  - On success: update record to "COMPLETE" with the result
  - On failure: delete record so the caller can retry

Payment confirmations do not go through here. The ledger makes `confirm()`
idempotent on its own by conditioning on the contribution's status, inside
the same transaction as the increment.
"""
from __future__ import annotations

import functools
import json
import logging
import time
from typing import Any, Callable

from botocore.exceptions import ClientError

from shared.dynamodb import CONDITIONAL_CHECK_FAILED, error_code

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 86400  # 24h


class IdempotencyError(Exception):
    """Raised when an idempotency record is in an unexpected state."""


class IdempotencyAlreadyInProgressError(IdempotencyError):
    """Another invocation with the same key is currently running."""


def idempotent(key_fn: Callable[..., str], table, ttl_seconds: int = DEFAULT_TTL_SECONDS):
    """
    Decorator that makes a function idempotent using the given DynamoDB table.

    Usage:
        @idempotent(key_fn=lambda: request_key, table=services.idempotency_table)
        def _create():
            ...

    The wrapped function must return something json.dumps can handle.
    """
    def decorator(fn: Callable) -> Callable:
        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            key = key_fn(*args, **kwargs)
            now = int(time.time())

            try:
                table.put_item(
                    Item={
                        "idempotency_key": key,
                        "status": "IN_FLIGHT",
                        "created_at": now,
                        "ttl": now + ttl_seconds,
                    },
                    ConditionExpression="attribute_not_exists(idempotency_key)",
                )
            except ClientError as e:
                if error_code(e) != CONDITIONAL_CHECK_FAILED:
                    raise

                existing = table.get_item(
                    Key={"idempotency_key": key}, ConsistentRead=True
                ).get("Item", {})
                status = existing.get("status")

                if status == "COMPLETE":
                    logger.info("Idempotency cache hit", extra={"idempotency_key": key})
                    return json.loads(existing["result"])

                if status == "IN_FLIGHT":
                    raise IdempotencyAlreadyInProgressError(
                        f"Request {key!r} is already being processed. "
                        "Retry after a short delay."
                    )

                logger.warning("Unknown idempotency status %r for key=%s, deleting", status, key)
                table.delete_item(Key={"idempotency_key": key})
                raise IdempotencyError(f"Unexpected idempotency state: {status}")

            try:
                result = fn(*args, **kwargs)
            except Exception:
                # Release the key so the caller can retry with it
                table.delete_item(Key={"idempotency_key": key})
                raise

            table.update_item(
                Key={"idempotency_key": key},
                UpdateExpression="SET #s = :s, #r = :r",
                ExpressionAttributeNames={"#s": "status", "#r": "result"},
                ExpressionAttributeValues={":s": "COMPLETE", ":r": json.dumps(result, default=str)},
            )
            return result

        return wrapper
    return decorator


def idempotency_key_from_headers(headers: dict[str, Any] | None, scope: str) -> str | None:
    """
    The client-supplied Idempotency-Key header, namespaced by route so the
    same UUID reused on two different endpoints can't collide.
    """
    headers = headers or {}
    key = headers.get("Idempotency-Key") or headers.get("idempotency-key")
    return f"{scope}:{key}" if key else None
