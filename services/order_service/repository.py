"""
Order Repository
================
All DynamoDB access for orders lives here.

Table design:
  PK: event_id    → one order per event, enforced by the key itself
  order_id        → public identifier, looked up by scan

The order is only ever written as part of the completion transaction. The
`attribute_not_exists(event_id)` condition on that write is the last line of
defence for "at most one order per event": even a caller that somehow got
past the version check cannot materialize a second one.
"""
from __future__ import annotations

from boto3.dynamodb.conditions import Attr

from shared.dynamodb import scan_all
from shared.events import Order


class OrderRepository:
    def __init__(self, table):
        self._table = table

    def create_op(self, order: Order) -> dict:
        return {
            "Put": {
                "TableName": self._table.name,
                "Item": order.to_item(),
                "ConditionExpression": "attribute_not_exists(event_id)",
            }
        }

    def get_for_event(self, event_id: str) -> Order | None:
        resp = self._table.get_item(Key={"event_id": event_id}, ConsistentRead=True)
        item = resp.get("Item")
        return Order.from_item(item) if item else None

    def get(self, order_id: str) -> Order | None:
        for item in scan_all(self._table, FilterExpression=Attr("order_id").eq(order_id)):
            return Order.from_item(item)
        return None

    def list_for_seller(self, seller_id: str) -> list[Order]:
        orders = [
            Order.from_item(item)
            for item in scan_all(self._table, FilterExpression=Attr("seller_id").eq(seller_id))
        ]
        orders.sort(key=lambda o: o.created_at, reverse=True)
        return orders
