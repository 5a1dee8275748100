"""
Pytest configuration and shared fixtures.
Unit tests use moto (AWS mocks in-process).
Integration tests use LocalStack (real service emulation via Docker).
"""
import os
import sys
from datetime import datetime, timedelta, timezone

# No X-Ray daemon in tests; must be set before aws_xray_sdk is imported
os.environ.setdefault("AWS_XRAY_SDK_ENABLED", "false")

sys.path.insert(0, "services")

import boto3
import pytest
from moto import mock_aws

from shared.catalog import ProductSnapshot
from shared.errors import ValidationError

TABLES = [
    ("test-events", "event_id"),
    ("test-contributions", "payment_reference"),
    ("test-orders", "event_id"),
    ("test-products", "product_id"),
    ("test-idempotency", "idempotency_key"),
]

PRODUCTS = {
    "p-watch": ProductSnapshot(
        product_id="p-watch", name="Watch", seller_id="seller-1", unit_price_cents=4000, available_stock=10
    ),
    "p-speaker": ProductSnapshot(
        product_id="p-speaker", name="Speaker", seller_id="seller-1", unit_price_cents=6000, available_stock=5
    ),
    "p-mug": ProductSnapshot(
        product_id="p-mug", name="Mug", seller_id="seller-2", unit_price_cents=1500, available_stock=100
    ),
    "p-rare": ProductSnapshot(
        product_id="p-rare", name="Rare print", seller_id="seller-2", unit_price_cents=25000, available_stock=1
    ),
    "p-retired": ProductSnapshot(
        product_id="p-retired", name="Old lamp", seller_id="seller-1", unit_price_cents=3000,
        available_stock=4, active=False,
    ),
}

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
TODAY = NOW.date()


@pytest.fixture(autouse=True)
def aws_env(monkeypatch):
    """Set fake AWS credentials so boto3 doesn't error in tests."""
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "test")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "test")
    monkeypatch.setenv("EVENTS_TABLE", "test-events")
    monkeypatch.setenv("CONTRIBUTIONS_TABLE", "test-contributions")
    monkeypatch.setenv("ORDERS_TABLE", "test-orders")
    monkeypatch.setenv("PRODUCTS_TABLE", "test-products")
    monkeypatch.setenv("IDEMPOTENCY_TABLE", "test-idempotency")
    monkeypatch.delenv("NOTIFICATION_TOPIC_ARN", raising=False)
    monkeypatch.delenv("AWS_ENDPOINT_URL", raising=False)


def create_tables(client):
    for table_name, pk in TABLES:
        client.create_table(
            TableName=table_name,
            AttributeDefinitions=[{"AttributeName": pk, "AttributeType": "S"}],
            KeySchema=[{"AttributeName": pk, "KeyType": "HASH"}],
            BillingMode="PAY_PER_REQUEST",
        )


@pytest.fixture
def dynamodb_tables(aws_env):
    """
    Create all required DynamoDB tables using moto (in-process mock).
    Faster than LocalStack for unit tests, no Docker required.
    """
    with mock_aws():
        create_tables(boto3.client("dynamodb", region_name="us-east-1"))
        yield boto3.resource("dynamodb", region_name="us-east-1")


# ---------------------------------------------------------------------------
# Collaborator fakes
# ---------------------------------------------------------------------------

class StaticCatalog:
    def __init__(self, products=None):
        self.products = dict(PRODUCTS if products is None else products)
        self.lookups = 0

    def lookup(self, product_id):
        self.lookups += 1
        try:
            return self.products[product_id]
        except KeyError:
            raise ValidationError(f"Product not found: {product_id!r}") from None


class RecordingNotifier:
    def __init__(self):
        self.sent = []
        self.broken = False

    def notify(self, kind, payload):
        if self.broken:
            raise ConnectionError("notification topic unreachable")
        self.sent.append((kind.value, payload))

    def kinds(self, event_id=None):
        return [kind for kind, payload in self.sent if event_id is None or payload.get("event_id") == event_id]


class FixedClock:
    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def catalog():
    return StaticCatalog()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def config():
    from shared.config import FundingConfig
    return FundingConfig.from_env()


@pytest.fixture
def services(dynamodb_tables, config, notifier, catalog, clock):
    from lifecycle.container import FundingServices
    return FundingServices.build(
        config, dynamodb=dynamodb_tables, notifier=notifier, catalog=catalog, clock=clock
    )


# ---------------------------------------------------------------------------
# Event builders
# ---------------------------------------------------------------------------

@pytest.fixture
def make_event(services):
    """Create an event from (product_id, quantity) pairs, optionally activating it."""
    from shared.events import EventCategory, FundingWindow, LineItemRequest, Visibility

    def _make(items=(("p-watch", 1), ("p-speaker", 1)), activate=True, owner_id="owner-1",
              start=TODAY, end=None, visibility=Visibility.PUBLIC, title="Amani's birthday"):
        event = services.events.create(
            owner_id=owner_id,
            line_items=[LineItemRequest(product_id=p, quantity=q) for p, q in items],
            window=FundingWindow(start_date=start, end_date=end or start + timedelta(days=30)),
            visibility=visibility,
            title=title,
            category=EventCategory.BIRTHDAY,
            description="Gifts for the big day",
        )
        if activate:
            event = services.events.activate(event.event_id)
        return event

    return _make


@pytest.fixture
def pledge(services):
    """Record a pending contribution and return its payment reference."""
    counter = [0]

    def _pledge(event_id, amount_cents, contributor_id="fan-1", **kwargs):
        counter[0] += 1
        reference = kwargs.pop("payment_reference", f"pay-{counter[0]}")
        services.ledger.record(
            event_id=event_id,
            contributor_id=contributor_id,
            amount_cents=amount_cents,
            payment_reference=reference,
            **kwargs,
        )
        return reference

    return _pledge


@pytest.fixture
def confirmed_total(dynamodb_tables):
    """Sum of confirmed contributions, read straight from the ledger table."""
    from ledger_service.repository import ContributionRepository
    from shared.events import ContributionStatus
    repo = ContributionRepository(dynamodb_tables.Table("test-contributions"))

    def _total(event_id):
        return sum(c.amount_cents for c in repo.list_for_event(event_id, ContributionStatus.CONFIRMED))

    return _total
