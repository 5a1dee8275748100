"""
GiftPool Schemas
================
Domain models for the funding lifecycle, shared by every service as Pydantic
models. Persisted items are produced with `to_item()` and read back with
`from_item()`, so the DynamoDB shape and the domain shape never drift apart.

Money is integer minor units everywhere (`*_cents`), never floats.
"""
from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from shared.dynamodb import decimal_to_python


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Domain enums
# ---------------------------------------------------------------------------

class EventStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_open(self) -> bool:
        return self in (EventStatus.DRAFT, EventStatus.ACTIVE)

    @property
    def is_terminal(self) -> bool:
        return self in (EventStatus.COMPLETED, EventStatus.CANCELLED)


class EventCategory(str, Enum):
    BIRTHDAY = "birthday"
    WEDDING = "wedding"
    GRADUATION = "graduation"
    BABY_SHOWER = "baby_shower"
    HOUSE_WARMING = "house_warming"
    ANNIVERSARY = "anniversary"
    OTHER = "other"


class Visibility(str, Enum):
    PUBLIC = "public"
    PRIVATE = "private"
    UNLISTED = "unlisted"


class ContributionStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class PaymentMethod(str, Enum):
    MPESA = "mpesa"
    CARD = "card"
    PAYPAL = "paypal"


class PaymentOutcome(str, Enum):
    CONFIRMED = "confirmed"
    FAILED = "failed"


class OrderStatus(str, Enum):
    PLACED = "placed"


class CompletionTrigger(str, Enum):
    TARGET_REACHED = "target_reached"
    MANUAL_CHECKOUT = "manual_checkout"


class NotificationKind(str, Enum):
    ACTIVATED = "activated"
    CONTRIBUTION_RECEIVED = "contribution_received"
    PAYMENT_FAILED = "payment_failed"
    TARGET_REACHED = "target_reached"
    CHECKOUT_READY = "checkout_ready"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# ---------------------------------------------------------------------------
# Persistence mixin
# ---------------------------------------------------------------------------

class _Item(BaseModel):
    def to_item(self) -> dict[str, Any]:
        """Serialize for DynamoDB: dates as ISO strings, enums as values."""
        return self.model_dump(mode="json", exclude_none=True)

    @classmethod
    def from_item(cls, item: dict[str, Any]):
        return cls.model_validate(decimal_to_python(item))


# ---------------------------------------------------------------------------
# Event aggregate
# ---------------------------------------------------------------------------

class LineItem(BaseModel):
    """A product frozen at the price the catalog quoted when it was added."""
    product_id: str
    name: str = ""
    seller_id: str
    quantity: int = Field(ge=1)
    unit_price_cents: int = Field(gt=0)

    @property
    def line_total_cents(self) -> int:
        return self.quantity * self.unit_price_cents


class FundingWindow(BaseModel):
    start_date: date
    end_date: date


class Event(_Item):
    event_id: str = Field(default_factory=new_id)
    owner_id: str
    title: str
    category: EventCategory
    custom_category: str | None = None
    description: str = ""
    line_items: list[LineItem]
    target_amount_cents: int
    current_amount_cents: int = 0
    start_date: date
    end_date: date
    visibility: Visibility = Visibility.PRIVATE
    status: EventStatus = EventStatus.DRAFT
    share_code: str = ""
    access_code: str | None = None
    order_id: str | None = None
    cancel_reason: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    activated_at: datetime | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None
    version: int = 0

    @property
    def window(self) -> FundingWindow:
        return FundingWindow(start_date=self.start_date, end_date=self.end_date)

    @property
    def target_reached(self) -> bool:
        return self.current_amount_cents >= self.target_amount_cents

    @property
    def etag(self) -> str:
        return f'"{self.version}"'


def target_for(line_items: list[LineItem]) -> int:
    return sum(item.line_total_cents for item in line_items)


class Progress(BaseModel):
    event_id: str
    status: EventStatus
    current_amount_cents: int
    target_amount_cents: int
    remaining_amount_cents: int
    percent: float
    days_left: int


def progress_of(event: Event, today: date) -> Progress:
    current = event.current_amount_cents
    target = event.target_amount_cents
    # Floored to hundredths so a shortfall never displays as 100%
    percent = min(100.0, (current * 10000 // target) / 100) if target > 0 else 0.0
    return Progress(
        event_id=event.event_id,
        status=event.status,
        current_amount_cents=current,
        target_amount_cents=target,
        remaining_amount_cents=max(0, target - current),
        percent=percent,
        days_left=max(0, (event.end_date - today).days),
    )


class CheckoutEligibility(BaseModel):
    event_id: str
    eligible: bool
    reasons: list[str] = Field(default_factory=list)
    percent: float
    funding: str  # complete | partial | insufficient
    window_elapsed: bool


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------

class Contribution(_Item):
    contribution_id: str = Field(default_factory=new_id)
    event_id: str
    contributor_id: str | None = None
    amount_cents: int = Field(gt=0)
    payment_reference: str
    payment_method: PaymentMethod = PaymentMethod.CARD
    message: str | None = None
    anonymous: bool = False
    status: ContributionStatus = ContributionStatus.PENDING
    failure_reason: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    confirmed_at: datetime | None = None

    def public_view(self) -> dict[str, Any]:
        """What other contributors may see about this pledge."""
        view = self.model_dump(
            mode="json",
            include={"contribution_id", "amount_cents", "message", "created_at", "contributor_id"},
        )
        if self.anonymous:
            view["contributor_id"] = None
            view["contributor_name"] = "Anonymous"
        return view


class ContributionSummary(BaseModel):
    event_id: str
    total_contributions: int
    total_amount_cents: int
    average_contribution_cents: int
    max_contribution_cents: int
    min_contribution_cents: int
    unique_contributor_count: int
    progress: Progress


class ConfirmationResult(BaseModel):
    """What `confirm()` hands back; identical on every redelivery."""
    contribution: Contribution
    event_status: EventStatus
    current_amount_cents: int
    applied: bool
    order_id: str | None = None


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------

class Order(_Item):
    event_id: str  # table key: one order per event
    order_id: str = Field(default_factory=new_id)
    seller_id: str
    buyer_id: str
    line_items: list[LineItem]
    total_amount_cents: int
    funded_amount_cents: int
    currency: str = "KES"
    trigger: CompletionTrigger
    status: OrderStatus = OrderStatus.PLACED
    created_at: datetime = Field(default_factory=utcnow)


# ---------------------------------------------------------------------------
# Request bodies (API Gateway / SQS)
# ---------------------------------------------------------------------------

class LineItemRequest(BaseModel):
    product_id: str
    quantity: int = 1


class CreateEventRequest(BaseModel):
    owner_id: str
    title: str
    category: EventCategory
    custom_category: str | None = None
    description: str = ""
    visibility: Visibility = Visibility.PRIVATE
    start_date: date
    end_date: date
    line_items: list[LineItemRequest] = Field(default_factory=list)


class EditEventRequest(BaseModel):
    title: str | None = None
    category: EventCategory | None = None
    custom_category: str | None = None
    description: str | None = None
    visibility: Visibility | None = None
    start_date: date | None = None
    end_date: date | None = None
    line_items: list[LineItemRequest] | None = None


class CancelEventRequest(BaseModel):
    reason: str = ""


class RecordContributionRequest(BaseModel):
    contributor_id: str | None = None
    amount_cents: int
    payment_reference: str
    payment_method: PaymentMethod = PaymentMethod.CARD
    message: str | None = None
    anonymous: bool = False


class PaymentConfirmationSignal(BaseModel):
    """Inbound message from the payment collaborator. Delivered at-least-once."""
    payment_reference: str
    event_id: str
    amount_cents: int
    outcome: PaymentOutcome
    reason: str = ""


class EventFilter(BaseModel):
    status: str = EventStatus.ACTIVE.value  # or "all"
    visibility: Visibility | None = None
    category: EventCategory | None = None
    owner_id: str | None = None
    search: str | None = None
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=12, ge=1, le=50)


# ---------------------------------------------------------------------------
# Outbound notification envelope
# ---------------------------------------------------------------------------

class LifecycleNotice(BaseModel):
    """
    Published on every notify() call. Routing metadata lives in the envelope,
    the lifecycle facts in `payload`.
    """
    notice_id: str = Field(default_factory=new_id)
    kind: NotificationKind
    occurred_at: datetime = Field(default_factory=utcnow)
    source_service: str = "giftpool-lifecycle"
    payload: dict[str, Any]
