"""
Process Configuration
=====================
Built once per process from the environment and passed by reference into
FundingServices. Nothing below the handlers reads os.environ directly.
"""
from __future__ import annotations

import os
from typing import Mapping

from pydantic import BaseModel, Field

_TRUE = {"1", "true", "yes", "on"}


def _flag(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUE


class FundingConfig(BaseModel):
    region: str = "us-east-1"
    endpoint_url: str | None = None

    events_table: str = "giftpool-events"
    contributions_table: str = "giftpool-contributions"
    orders_table: str = "giftpool-orders"
    products_table: str = "giftpool-products"
    idempotency_table: str = "giftpool-idempotency"
    idempotency_ttl_seconds: int = Field(default=86400, gt=0)

    notification_topic_arn: str = ""

    # Completion policy
    auto_complete_on_target: bool = True
    allow_partial_checkout: bool = True
    partial_checkout_min_percent: int = Field(default=0, ge=0, le=100)

    max_write_attempts: int = Field(default=5, ge=1)
    currency: str = "KES"
    log_level: str = "INFO"

    model_config = {"frozen": True}

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "FundingConfig":
        env = os.environ if env is None else env
        return cls(
            region=env.get("AWS_DEFAULT_REGION", "us-east-1"),
            endpoint_url=env.get("AWS_ENDPOINT_URL") or None,
            events_table=env.get("EVENTS_TABLE", "giftpool-events"),
            contributions_table=env.get("CONTRIBUTIONS_TABLE", "giftpool-contributions"),
            orders_table=env.get("ORDERS_TABLE", "giftpool-orders"),
            products_table=env.get("PRODUCTS_TABLE", "giftpool-products"),
            idempotency_table=env.get("IDEMPOTENCY_TABLE", "giftpool-idempotency"),
            idempotency_ttl_seconds=int(env.get("IDEMPOTENCY_TTL_SECONDS", "86400")),
            notification_topic_arn=env.get("NOTIFICATION_TOPIC_ARN", ""),
            auto_complete_on_target=_flag(env, "AUTO_COMPLETE_ON_TARGET", True),
            allow_partial_checkout=_flag(env, "ALLOW_PARTIAL_CHECKOUT", True),
            partial_checkout_min_percent=int(env.get("PARTIAL_CHECKOUT_MIN_PERCENT", "0")),
            max_write_attempts=int(env.get("MAX_WRITE_ATTEMPTS", "5")),
            currency=env.get("CURRENCY", "KES"),
            log_level=env.get("LOG_LEVEL", "INFO").upper(),
        )
