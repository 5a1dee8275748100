"""
Event Aggregate
===============
Owner-facing operations on an event: create, edit, activate, cancel, and the
read surface (progress, listing, share links).

The aggregate validates input and freezes catalog prices into line items. It
never changes `status` itself; activation, cancellation and completion go
through FundingLifecycle so that every transition has one code path.

Edits race with ledger increments on the same item. Both sides write with a
compare-and-set on `version`, so an edit never overwrites an increment it did
not see: it re-reads and re-applies instead.
"""
from __future__ import annotations

import logging
import math
import secrets
from datetime import date, datetime
from typing import Any, Callable

from shared.catalog import Catalog
from shared.dynamodb import OptimisticLockError
from shared.errors import ConflictError, InvalidStateError, NotFoundError, ValidationError
from shared.events import (
    EditEventRequest,
    Event,
    EventCategory,
    EventFilter,
    EventStatus,
    FundingWindow,
    LineItem,
    LineItemRequest,
    Progress,
    Visibility,
    progress_of,
    target_for,
    utcnow,
)

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 100
MAX_DESCRIPTION_LENGTH = 1000
MAX_CUSTOM_CATEGORY_LENGTH = 50


class EventAggregate:
    def __init__(
        self,
        repo,
        lifecycle,
        catalog: Catalog,
        clock: Callable[[], datetime] = utcnow,
        max_write_attempts: int = 5,
    ):
        self._repo = repo
        self._lifecycle = lifecycle
        self._catalog = catalog
        self._clock = clock
        self._max_write_attempts = max_write_attempts

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def create(
        self,
        owner_id: str,
        line_items: list[LineItemRequest],
        window: FundingWindow,
        visibility: Visibility,
        title: str,
        category: EventCategory,
        description: str = "",
        custom_category: str | None = None,
    ) -> Event:
        if not owner_id:
            raise ValidationError("owner_id is required")
        title = _check_title(title)
        _check_description(description)
        custom_category = _check_category(category, custom_category)
        self._check_window(window, check_start=True)
        snapshot = self._snapshot(line_items)

        now = self._clock()
        event = Event(
            owner_id=owner_id,
            title=title,
            category=category,
            custom_category=custom_category,
            description=description,
            line_items=snapshot,
            target_amount_cents=target_for(snapshot),
            current_amount_cents=0,
            start_date=window.start_date,
            end_date=window.end_date,
            visibility=visibility,
            status=EventStatus.DRAFT,
            share_code=secrets.token_hex(8),
            access_code=None if visibility == Visibility.PUBLIC else secrets.token_hex(3).upper(),
            created_at=now,
            updated_at=now,
        )
        stored = self._repo.create(event)

        logger.info(
            "Event created",
            extra={
                "event_id": stored.event_id,
                "owner_id": owner_id,
                "target_amount_cents": stored.target_amount_cents,
                "line_item_count": len(snapshot),
            },
        )
        return stored

    def edit(self, event_id: str, changes: EditEventRequest, expected_version: int | None = None) -> Event:
        """
        Apply `changes` to a draft or active event.

        `expected_version` is the ETag the client last saw. A mismatch is a
        ConflictError so the client can reload before retrying. Without it,
        concurrent ledger writes are absorbed by re-reading.
        """
        fields = changes.model_dump(exclude_unset=True)
        # Resolve the catalog once, outside the retry loop
        snapshot = None
        if fields.get("line_items") is not None:
            snapshot = self._snapshot(changes.line_items)

        for _ in range(self._max_write_attempts):
            event = self._repo.require(event_id)
            if expected_version is not None and event.version != expected_version:
                raise ConflictError(
                    f"Event {event_id!r} is at version {event.version}, not {expected_version}"
                )
            if not event.status.is_open:
                raise InvalidStateError(f"Cannot edit an event that is {event.status.value}")

            updated = self._apply(event, fields, snapshot)
            try:
                stored = self._repo.save(updated)
            except OptimisticLockError:
                continue

            logger.info(
                "Event edited",
                extra={
                    "event_id": event_id,
                    "fields": sorted(fields),
                    "target_amount_cents": stored.target_amount_cents,
                    "version": stored.version,
                },
            )
            if stored.status == EventStatus.ACTIVE and self._lifecycle.evaluate(event_id) is not None:
                return self._repo.require(event_id)
            return stored

        raise ConflictError(f"Too many concurrent writes to event {event_id!r} during edit; retry")

    def activate(self, event_id: str) -> Event:
        return self._lifecycle.activate(event_id)

    def cancel(self, event_id: str, reason: str = "") -> Event:
        return self._lifecycle.cancel(event_id, reason)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_event(self, event_id: str) -> Event:
        return self._repo.require(event_id)

    def get_progress(self, event_id: str) -> Progress:
        return progress_of(self._repo.require(event_id), self._today())

    def find_by_share_code(self, share_code: str) -> Event:
        event = self._repo.find_by_share_code(share_code)
        if event is None:
            raise NotFoundError(f"No event is shared under {share_code!r}")
        return event

    def list_events(self, flt: EventFilter) -> dict[str, Any]:
        matches = self._repo.search(flt)
        start = (flt.page - 1) * flt.limit
        return {
            "events": matches[start:start + flt.limit],
            "pagination": {
                "page": flt.page,
                "limit": flt.limit,
                "total": len(matches),
                "pages": math.ceil(len(matches) / flt.limit),
            },
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _today(self) -> date:
        return self._clock().date()

    def _apply(self, event: Event, fields: dict[str, Any], snapshot: list[LineItem] | None) -> Event:
        update: dict[str, Any] = {"updated_at": self._clock()}

        if "title" in fields:
            update["title"] = _check_title(fields["title"])
        if "description" in fields:
            description = fields["description"] or ""
            _check_description(description)
            update["description"] = description
        if "visibility" in fields and fields["visibility"] is not None:
            visibility = Visibility(fields["visibility"])
            update["visibility"] = visibility
            if visibility == Visibility.PUBLIC:
                update["access_code"] = None
            elif event.access_code is None:
                update["access_code"] = secrets.token_hex(3).upper()

        if "category" in fields or "custom_category" in fields:
            category = EventCategory(fields.get("category") or event.category)
            custom = fields["custom_category"] if "custom_category" in fields else event.custom_category
            update["category"] = category
            update["custom_category"] = _check_category(category, custom)

        if "start_date" in fields or "end_date" in fields:
            window = FundingWindow(
                start_date=fields.get("start_date") or event.start_date,
                end_date=fields.get("end_date") or event.end_date,
            )
            self._check_window(window, check_start=window.start_date != event.start_date)
            update["start_date"] = window.start_date
            update["end_date"] = window.end_date

        if snapshot is not None:
            target = target_for(snapshot)
            if target < event.current_amount_cents:
                raise ValidationError(
                    f"New target {target} is below the {event.current_amount_cents} already contributed"
                )
            update["line_items"] = snapshot
            update["target_amount_cents"] = target

        return event.model_copy(update=update)

    def _check_window(self, window: FundingWindow, check_start: bool) -> None:
        if check_start and window.start_date < self._today():
            raise ValidationError("Start date cannot be in the past")
        if window.end_date < window.start_date:
            raise ValidationError("End date must be on or after the start date")

    def _snapshot(self, requested: list[LineItemRequest] | None) -> list[LineItem]:
        """Freeze the catalog's current price and seller into each line item."""
        if not requested:
            raise ValidationError("Select at least one product")

        items = []
        for request in requested:
            if request.quantity < 1:
                raise ValidationError(f"Quantity for {request.product_id!r} must be at least 1")
            product = self._catalog.lookup(request.product_id)
            if not product.active:
                raise ValidationError(f"Product {product.name or product.product_id!r} is not available")
            if product.unit_price_cents <= 0:
                raise ValidationError(f"Product {product.product_id!r} has no valid price")
            if request.quantity > product.available_stock:
                raise ValidationError(
                    f"Only {product.available_stock} of {product.name or product.product_id!r} in stock"
                )
            items.append(LineItem(
                product_id=product.product_id,
                name=product.name,
                seller_id=product.seller_id,
                quantity=request.quantity,
                unit_price_cents=product.unit_price_cents,
            ))
        return items


def _check_title(title: str | None) -> str:
    title = (title or "").strip()
    if not title:
        raise ValidationError("Event title is required")
    if len(title) > MAX_TITLE_LENGTH:
        raise ValidationError(f"Event title cannot exceed {MAX_TITLE_LENGTH} characters")
    return title


def _check_description(description: str) -> None:
    if len(description) > MAX_DESCRIPTION_LENGTH:
        raise ValidationError(f"Description cannot exceed {MAX_DESCRIPTION_LENGTH} characters")


def _check_category(category: EventCategory, custom_category: str | None) -> str | None:
    if category != EventCategory.OTHER:
        return None
    custom_category = (custom_category or "").strip()
    if not custom_category:
        raise ValidationError("Custom category is required when category is 'other'")
    if len(custom_category) > MAX_CUSTOM_CATEGORY_LENGTH:
        raise ValidationError(
            f"Custom category cannot exceed {MAX_CUSTOM_CATEGORY_LENGTH} characters"
        )
    return custom_category
