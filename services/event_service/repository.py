"""
Event Repository
================
All DynamoDB access for the event aggregate lives here.

Table design:
  PK: event_id
  version → optimistic-lock counter, bumped on every write

Two write styles, same rule:
  save()            single-item compare-and-set (edits, activate, cancel)
  versioned_put()   the same compare-and-set as a TransactWriteItems entry,
                    for writes that must commit together with a contribution
                    or an order

Both take the event *as read* (carrying the version the caller saw) with the
caller's changes applied, and store it at version + 1.
"""
from __future__ import annotations

from boto3.dynamodb.conditions import Attr

from shared.dynamodb import put_item_with_optimistic_lock, scan_all
from shared.errors import NotFoundError
from shared.events import Event, EventFilter


class EventRepository:
    def __init__(self, table):
        self._table = table

    @property
    def client(self):
        return self._table.meta.client

    def get(self, event_id: str) -> Event | None:
        resp = self._table.get_item(Key={"event_id": event_id}, ConsistentRead=True)
        item = resp.get("Item")
        return Event.from_item(item) if item else None

    def require(self, event_id: str) -> Event:
        event = self.get(event_id)
        if event is None:
            raise NotFoundError(f"Event {event_id!r} not found")
        return event

    def create(self, event: Event) -> Event:
        item = put_item_with_optimistic_lock(
            self._table, {**event.to_item(), "version": 0}, key_name="event_id"
        )
        return Event.from_item(item)

    def save(self, event: Event) -> Event:
        """Raises OptimisticLockError if someone wrote since `event.version`."""
        item = put_item_with_optimistic_lock(self._table, event.to_item(), key_name="event_id")
        return Event.from_item(item)

    def versioned_put(self, event: Event) -> dict:
        item = {**event.to_item(), "version": event.version + 1}
        return {
            "Put": {
                "TableName": self._table.name,
                "Item": item,
                "ConditionExpression": "#v = :expected",
                "ExpressionAttributeNames": {"#v": "version"},
                "ExpressionAttributeValues": {":expected": event.version},
            }
        }

    def find_by_share_code(self, share_code: str) -> Event | None:
        for item in scan_all(self._table, FilterExpression=Attr("share_code").eq(share_code)):
            return Event.from_item(item)
        return None

    def search(self, flt: EventFilter) -> list[Event]:
        """Every event matching the filter, newest first. Pagination is the caller's."""
        condition = None
        clauses = []
        if flt.status != "all":
            clauses.append(Attr("status").eq(flt.status))
        if flt.visibility is not None:
            clauses.append(Attr("visibility").eq(flt.visibility.value))
        if flt.category is not None:
            clauses.append(Attr("category").eq(flt.category.value))
        if flt.owner_id:
            clauses.append(Attr("owner_id").eq(flt.owner_id))
        for clause in clauses:
            condition = clause if condition is None else condition & clause

        kwargs = {"FilterExpression": condition} if condition is not None else {}
        events = [Event.from_item(item) for item in scan_all(self._table, **kwargs)]

        if flt.search:
            # DynamoDB `contains` is case-sensitive; match in Python instead
            needle = flt.search.lower()
            events = [
                e for e in events
                if needle in e.title.lower()
                or needle in e.description.lower()
                or needle in (e.custom_category or "").lower()
            ]

        events.sort(key=lambda e: e.created_at, reverse=True)
        return events

