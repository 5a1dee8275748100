"""
Order Projection
================
Materializes the seller order for a completed event.

`create_from_event()` does not write anything. It returns the order and the
TransactWriteItems entry that stores it; the state machine commits that entry
in the same transaction that flips the event to `completed`. So the order
exists if and only if the flip happened, and only the caller whose
transaction commits ever materializes one.
"""
from __future__ import annotations

from shared.errors import NotFoundError
from shared.events import CompletionTrigger, Event, Order, new_id

from .repository import OrderRepository


class OrderProjection:
    def __init__(self, repo: OrderRepository, currency: str = "KES"):
        self._repo = repo
        self._currency = currency

    def create_from_event(self, event: Event, trigger: CompletionTrigger) -> tuple[Order, dict]:
        """
        Seller attribution comes from the first line item. Every mirrored line
        keeps its own seller_id, so multi-seller wishlists are still routable.
        """
        order = Order(
            order_id=new_id(),
            event_id=event.event_id,
            seller_id=event.line_items[0].seller_id,
            buyer_id=event.owner_id,
            line_items=[item.model_copy() for item in event.line_items],
            total_amount_cents=event.target_amount_cents,
            funded_amount_cents=event.current_amount_cents,
            currency=self._currency,
            trigger=trigger,
        )
        return order, self._repo.create_op(order)

    def get_order(self, order_id: str) -> Order:
        order = self._repo.get(order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id!r} not found")
        return order

    def get_for_event(self, event_id: str) -> Order:
        order = self._repo.get_for_event(event_id)
        if order is None:
            raise NotFoundError(f"No order has been placed for event {event_id!r}")
        return order

    def list_for_seller(self, seller_id: str) -> list[Order]:
        return self._repo.list_for_seller(seller_id)
