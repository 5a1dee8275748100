"""
Order projection tests.
"""
import sys
sys.path.insert(0, "services")

import pytest

from shared.dynamodb import OptimisticLockError, transact_write
from shared.errors import NotFoundError
from shared.events import CompletionTrigger, OrderStatus


def test_create_from_event_mirrors_snapshot_without_writing(services, make_event, dynamodb_tables):
    event = make_event(items=(("p-mug", 2), ("p-watch", 1)))

    order, op = services.orders.create_from_event(event, CompletionTrigger.MANUAL_CHECKOUT)

    assert order.event_id == event.event_id
    assert order.buyer_id == "owner-1"
    assert order.seller_id == "seller-2"  # first line item's seller
    assert [li.product_id for li in order.line_items] == ["p-mug", "p-watch"]
    assert order.total_amount_cents == 2 * 1500 + 4000
    assert order.status == OrderStatus.PLACED
    assert order.currency == "KES"
    assert op["Put"]["ConditionExpression"] == "attribute_not_exists(event_id)"
    assert dynamodb_tables.Table("test-orders").scan()["Count"] == 0


def test_second_order_for_same_event_is_refused(services, make_event, dynamodb_tables):
    event = make_event()
    client = dynamodb_tables.meta.client
    _, first = services.orders.create_from_event(event, CompletionTrigger.TARGET_REACHED)
    _, second = services.orders.create_from_event(event, CompletionTrigger.MANUAL_CHECKOUT)

    transact_write(client, [first])
    with pytest.raises(OptimisticLockError):
        transact_write(client, [second])

    assert dynamodb_tables.Table("test-orders").scan()["Count"] == 1


def test_reads_after_completion(services, make_event, pledge):
    event = make_event()
    result = services.ledger.confirm(pledge(event.event_id, 10000), 10000)

    by_id = services.orders.get_order(result.order_id)
    by_event = services.orders.get_for_event(event.event_id)

    assert by_id.order_id == by_event.order_id == result.order_id
    assert [o.order_id for o in services.orders.list_for_seller("seller-1")] == [result.order_id]
    assert services.orders.list_for_seller("seller-2") == []


def test_missing_orders_are_not_found(services, make_event):
    event = make_event()
    with pytest.raises(NotFoundError):
        services.orders.get_order("nope")
    with pytest.raises(NotFoundError):
        services.orders.get_for_event(event.event_id)
