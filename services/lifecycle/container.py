"""
Service Wiring
==============
Builds every lifecycle component from one FundingConfig. Lambda handlers call
`default_services()` once per container; tests call `FundingServices.build()`
with their own config, DynamoDB resource, notifier, catalog and clock.
"""
from __future__ import annotations

import functools
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

import boto3

from event_service.aggregate import EventAggregate
from event_service.repository import EventRepository
from ledger_service.ledger import ContributionLedger
from ledger_service.repository import ContributionRepository
from order_service.projection import OrderProjection
from order_service.repository import OrderRepository
from shared.catalog import Catalog, DynamoCatalog
from shared.config import FundingConfig
from shared.dynamodb import dynamodb_resource
from shared.events import utcnow
from shared.logger import configure_logging
from shared.notifier import LogNotifier, Notifier, SnsNotifier

from .state_machine import FundingLifecycle


@dataclass
class FundingServices:
    config: FundingConfig
    events: EventAggregate
    ledger: ContributionLedger
    lifecycle: FundingLifecycle
    orders: OrderProjection
    idempotency_table: Any

    @classmethod
    def build(
        cls,
        config: FundingConfig,
        *,
        dynamodb=None,
        notifier: Notifier | None = None,
        catalog: Catalog | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> "FundingServices":
        configure_logging(config.log_level)

        dynamodb = dynamodb or dynamodb_resource(config.region, config.endpoint_url)
        if notifier is None:
            if config.notification_topic_arn:
                kwargs = {"region_name": config.region}
                if config.endpoint_url:
                    kwargs["endpoint_url"] = config.endpoint_url
                notifier = SnsNotifier(boto3.client("sns", **kwargs), config.notification_topic_arn)
            else:
                notifier = LogNotifier()
        catalog = catalog or DynamoCatalog(dynamodb.Table(config.products_table))

        event_repo = EventRepository(dynamodb.Table(config.events_table))
        contribution_repo = ContributionRepository(dynamodb.Table(config.contributions_table))
        projection = OrderProjection(OrderRepository(dynamodb.Table(config.orders_table)), config.currency)

        lifecycle = FundingLifecycle(config, event_repo, contribution_repo, projection, notifier, clock)
        return cls(
            config=config,
            events=EventAggregate(event_repo, lifecycle, catalog, clock, config.max_write_attempts),
            ledger=ContributionLedger(contribution_repo, event_repo, lifecycle, notifier, clock),
            lifecycle=lifecycle,
            orders=projection,
            idempotency_table=dynamodb.Table(config.idempotency_table),
        )


@functools.lru_cache(maxsize=1)
def default_services() -> FundingServices:
    """One container per Lambda execution environment, built from os.environ."""
    return FundingServices.build(FundingConfig.from_env())
