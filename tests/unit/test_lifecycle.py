"""
Lifecycle state machine tests.

The properties that matter most:
  - the event total always equals the sum of confirmed contributions
  - a payment reference is applied once, however often it is delivered
  - completion (status flip + order) happens exactly once, even when two
    confirmations race across the target
  - a failed order write leaves nothing behind and is healed by redelivery
"""
import sys
sys.path.insert(0, "services")

from datetime import timedelta

import pytest
from botocore.exceptions import ClientError

from event_service.repository import EventRepository
from shared.errors import InvalidStateError, RetryableError, ValidationError
from shared.events import ContributionStatus, EventStatus


def _order_count(dynamodb_tables):
    return dynamodb_tables.Table("test-orders").scan()["Count"]


def _race_on_first_read(monkeypatch, run_competitor):
    """
    Make the next EventRepository.require() return the event as it was
    *before* `run_competitor()` committed, i.e. the caller acts on a stale
    read exactly as if the two confirmations ran concurrently.
    """
    real_require = EventRepository.require
    fired = []

    def stale_require(self, event_id):
        event = real_require(self, event_id)
        if not fired:
            fired.append(event.version)
            run_competitor()
        return event

    monkeypatch.setattr(EventRepository, "require", stale_require)
    return fired


# ---------------------------------------------------------------------------
# Confirmation + idempotence
# ---------------------------------------------------------------------------

def test_confirm_increments_current_amount(services, make_event, pledge, confirmed_total):
    event = make_event()
    ref = pledge(event.event_id, 2500)

    result = services.ledger.confirm(ref, 2500)

    stored = services.events.get_event(event.event_id)
    assert result.applied is True
    assert result.current_amount_cents == 2500
    assert stored.current_amount_cents == 2500 == confirmed_total(event.event_id)
    assert stored.status == EventStatus.ACTIVE


def test_confirm_uses_final_amount_from_payment(services, make_event, pledge):
    """The collaborator's settled amount wins over the pledged amount."""
    event = make_event()
    ref = pledge(event.event_id, 3000)

    result = services.ledger.confirm(ref, 2900)

    assert result.contribution.amount_cents == 2900
    assert services.events.get_event(event.event_id).current_amount_cents == 2900


def test_same_reference_three_times_applies_once(services, make_event, pledge, confirmed_total):
    event = make_event()
    ref = pledge(event.event_id, 4000)

    first = services.ledger.confirm(ref, 4000)
    second = services.ledger.confirm(ref, 4000)
    third = services.ledger.confirm(ref, 4000)

    assert first.applied is True
    assert second.applied is False and third.applied is False
    assert second.current_amount_cents == third.current_amount_cents == 4000
    assert services.events.get_event(event.event_id).current_amount_cents == 4000
    assert confirmed_total(event.event_id) == 4000


def test_duplicate_delivery_does_not_notify_again(services, make_event, pledge, notifier):
    event = make_event()
    ref = pledge(event.event_id, 1000)

    services.ledger.confirm(ref, 1000)
    services.ledger.confirm(ref, 1000)

    assert notifier.kinds(event.event_id).count("contribution_received") == 1


def test_reaching_target_completes_event_and_places_order(services, make_event, pledge, notifier, dynamodb_tables):
    event = make_event()
    services.ledger.confirm(pledge(event.event_id, 4000), 4000)

    result = services.ledger.confirm(pledge(event.event_id, 6000), 6000)

    stored = services.events.get_event(event.event_id)
    assert result.event_status == EventStatus.COMPLETED
    assert stored.status == EventStatus.COMPLETED
    assert stored.completed_at is not None
    assert stored.order_id == result.order_id
    assert _order_count(dynamodb_tables) == 1

    order = services.orders.get_for_event(event.event_id)
    assert order.order_id == stored.order_id
    assert order.funded_amount_cents == 10000
    assert order.trigger.value == "target_reached"

    kinds = notifier.kinds(event.event_id)
    assert kinds.index("target_reached") < kinds.index("checkout_ready") < kinds.index("completed")
    assert kinds.count("completed") == 1


def test_overfunding_in_one_payment_completes(services, make_event, pledge):
    event = make_event()
    result = services.ledger.confirm(pledge(event.event_id, 12000), 12000)

    assert result.event_status == EventStatus.COMPLETED
    assert services.events.get_event(event.event_id).current_amount_cents == 12000


def test_auto_complete_disabled_keeps_event_active(dynamodb_tables, config, notifier, catalog, clock):
    from lifecycle.container import FundingServices
    from shared.events import EventCategory, FundingWindow, LineItemRequest, Visibility

    services = FundingServices.build(
        config.model_copy(update={"auto_complete_on_target": False}),
        dynamodb=dynamodb_tables, notifier=notifier, catalog=catalog, clock=clock,
    )
    event = services.events.create(
        owner_id="owner-1",
        line_items=[LineItemRequest(product_id="p-mug", quantity=2)],
        window=FundingWindow(start_date=clock().date(), end_date=clock().date()),
        visibility=Visibility.PUBLIC,
        title="Office mugs",
        category=EventCategory.OTHER,
        custom_category="Farewell",
    )
    services.events.activate(event.event_id)
    services.ledger.record(event.event_id, "fan-1", 3000, "pay-mugs")

    result = services.ledger.confirm("pay-mugs", 3000)

    assert result.event_status == EventStatus.ACTIVE
    assert services.lifecycle.checkout_eligibility(event.event_id).funding == "complete"


# ---------------------------------------------------------------------------
# Concurrency: single-winner completion
# ---------------------------------------------------------------------------

def test_concurrent_confirmations_complete_exactly_once(
    services, make_event, pledge, notifier, dynamodb_tables, confirmed_total, monkeypatch
):
    """Target 10000; 4000 and 6000 confirmed concurrently."""
    event = make_event()
    ref_a = pledge(event.event_id, 4000)
    ref_b = pledge(event.event_id, 6000)

    competitor = []
    fired = _race_on_first_read(
        monkeypatch, lambda: competitor.append(services.ledger.confirm(ref_b, 6000))
    )

    result_a = services.ledger.confirm(ref_a, 4000)
    result_b = competitor[0]

    stored = services.events.get_event(event.event_id)
    assert fired, "the competing confirmation never ran"
    assert result_a.applied and result_b.applied
    assert stored.status == EventStatus.COMPLETED
    assert stored.current_amount_cents == 10000 == confirmed_total(event.event_id)
    assert _order_count(dynamodb_tables) == 1
    assert notifier.kinds(event.event_id).count("completed") == 1


def test_two_confirmations_both_crossing_target_place_one_order(
    services, make_event, pledge, notifier, dynamodb_tables, confirmed_total, monkeypatch
):
    """Both racers see 5000/10000 and each would cross the target alone."""
    event = make_event()
    services.ledger.confirm(pledge(event.event_id, 5000), 5000)
    ref_a = pledge(event.event_id, 5000)
    ref_b = pledge(event.event_id, 5000)

    competitor = []
    _race_on_first_read(monkeypatch, lambda: competitor.append(services.ledger.confirm(ref_b, 5000)))

    result_a = services.ledger.confirm(ref_a, 5000)

    stored = services.events.get_event(event.event_id)
    assert competitor[0].event_status == EventStatus.COMPLETED
    assert result_a.applied is True
    assert result_a.event_status == EventStatus.COMPLETED
    assert result_a.order_id == competitor[0].order_id
    assert stored.current_amount_cents == 15000 == confirmed_total(event.event_id)
    assert _order_count(dynamodb_tables) == 1
    assert notifier.kinds(event.event_id).count("completed") == 1
    assert notifier.kinds(event.event_id).count("target_reached") == 1


def test_same_reference_delivered_concurrently_applies_once(
    services, make_event, pledge, confirmed_total, monkeypatch
):
    event = make_event()
    ref = pledge(event.event_id, 3000)

    competitor = []
    _race_on_first_read(monkeypatch, lambda: competitor.append(services.ledger.confirm(ref, 3000)))

    late = services.ledger.confirm(ref, 3000)

    assert competitor[0].applied is True
    assert late.applied is False
    assert services.events.get_event(event.event_id).current_amount_cents == 3000
    assert confirmed_total(event.event_id) == 3000


def test_write_attempts_exhausted_raises_conflict(services, make_event, pledge, monkeypatch):
    from lifecycle import state_machine
    from shared.dynamodb import OptimisticLockError
    from shared.errors import ConflictError

    event = make_event()
    ref = pledge(event.event_id, 1000)

    def always_cancelled(client, items):
        raise OptimisticLockError("Transaction cancelled by a failed condition")

    monkeypatch.setattr(state_machine, "transact_write", always_cancelled)

    with pytest.raises(ConflictError):
        services.ledger.confirm(ref, 1000)
    assert services.ledger.get(ref).status == ContributionStatus.PENDING


# ---------------------------------------------------------------------------
# Failure handling
# ---------------------------------------------------------------------------

def test_order_write_failure_leaves_nothing_and_redelivery_heals(
    services, make_event, pledge, dynamodb_tables, monkeypatch
):
    from lifecycle import state_machine

    event = make_event()
    ref = pledge(event.event_id, 10000)
    real_transact = state_machine.transact_write
    broken = [True]

    def flaky_orders(client, items):
        if broken[0] and any(op["Put"]["TableName"] == "test-orders" for op in items):
            raise ClientError(
                {"Error": {"Code": "ProvisionedThroughputExceededException", "Message": "slow down"}},
                "TransactWriteItems",
            )
        return real_transact(client, items)

    monkeypatch.setattr(state_machine, "transact_write", flaky_orders)

    with pytest.raises(RetryableError):
        services.ledger.confirm(ref, 10000)

    stored = services.events.get_event(event.event_id)
    assert stored.status == EventStatus.ACTIVE
    assert stored.current_amount_cents == 0
    assert services.ledger.get(ref).status == ContributionStatus.PENDING
    assert _order_count(dynamodb_tables) == 0

    broken[0] = False
    result = services.ledger.confirm(ref, 10000)

    assert result.applied is True
    assert result.event_status == EventStatus.COMPLETED
    assert _order_count(dynamodb_tables) == 1


def test_activation_completes_event_funded_while_draft(
    services, make_event, pledge, dynamodb_tables, notifier
):
    """Money confirmed while still a draft; activation completes it."""
    event = make_event(activate=False)
    ref = pledge(event.event_id, 10000)
    services.ledger.confirm(ref, 10000)
    assert services.events.get_event(event.event_id).status == EventStatus.DRAFT

    activated = services.events.activate(event.event_id)

    assert activated.status == EventStatus.COMPLETED
    assert _order_count(dynamodb_tables) == 1
    kinds = notifier.kinds(event.event_id)
    assert kinds.index("activated") < kinds.index("completed")


def test_notification_failure_does_not_roll_back(services, make_event, pledge, notifier, dynamodb_tables):
    event = make_event()
    ref = pledge(event.event_id, 10000)
    notifier.broken = True

    result = services.ledger.confirm(ref, 10000)

    assert result.event_status == EventStatus.COMPLETED
    assert services.events.get_event(event.event_id).status == EventStatus.COMPLETED
    assert _order_count(dynamodb_tables) == 1


def test_failed_payment_cannot_be_confirmed(services, make_event, pledge):
    event = make_event()
    ref = pledge(event.event_id, 1000)
    services.ledger.fail(ref, "insufficient funds")

    with pytest.raises(InvalidStateError):
        services.ledger.confirm(ref, 1000)
    assert services.events.get_event(event.event_id).current_amount_cents == 0


def test_late_confirmation_on_completed_event_counts_but_keeps_status(
    services, make_event, pledge, dynamodb_tables
):
    event = make_event()
    late_ref = pledge(event.event_id, 700)
    services.ledger.confirm(pledge(event.event_id, 10000), 10000)

    result = services.ledger.confirm(late_ref, 700)

    stored = services.events.get_event(event.event_id)
    assert result.applied is True
    assert stored.status == EventStatus.COMPLETED
    assert stored.current_amount_cents == 10700
    assert _order_count(dynamodb_tables) == 1


# ---------------------------------------------------------------------------
# Owner transitions
# ---------------------------------------------------------------------------

def test_activate_is_idempotent(services, make_event, notifier):
    event = make_event()

    again = services.events.activate(event.event_id)

    assert again.status == EventStatus.ACTIVE
    assert again.version == event.version
    assert notifier.kinds(event.event_id).count("activated") == 1


def test_cancel_from_draft_and_active(services, make_event, notifier):
    draft = make_event(activate=False)
    active = make_event()

    cancelled_draft = services.events.cancel(draft.event_id, "changed plans")
    cancelled_active = services.events.cancel(active.event_id)

    assert cancelled_draft.status == EventStatus.CANCELLED
    assert cancelled_draft.cancel_reason == "changed plans"
    assert cancelled_active.status == EventStatus.CANCELLED
    assert "cancelled" in notifier.kinds(draft.event_id)


@pytest.mark.parametrize("action", ["activate", "cancel", "checkout"])
def test_nothing_leaves_completed(services, make_event, pledge, action):
    event = make_event()
    services.ledger.confirm(pledge(event.event_id, 10000), 10000)

    with pytest.raises(InvalidStateError):
        getattr(services.lifecycle, action)(event.event_id)
    assert services.events.get_event(event.event_id).status == EventStatus.COMPLETED


@pytest.mark.parametrize("action", ["activate", "cancel", "checkout"])
def test_nothing_leaves_cancelled(services, make_event, action):
    event = make_event()
    services.events.cancel(event.event_id)

    with pytest.raises(InvalidStateError):
        getattr(services.lifecycle, action)(event.event_id)
    assert services.events.get_event(event.event_id).status == EventStatus.CANCELLED


def test_cancelled_event_rejects_new_pledges(services, make_event, pledge):
    event = make_event()
    services.events.cancel(event.event_id)

    with pytest.raises(ValidationError):
        pledge(event.event_id, 1000)


# ---------------------------------------------------------------------------
# Manual checkout
# ---------------------------------------------------------------------------

def test_manual_checkout_with_partial_funding(services, make_event, pledge, notifier, dynamodb_tables):
    event = make_event()
    services.ledger.confirm(pledge(event.event_id, 3000), 3000)

    order = services.lifecycle.checkout(event.event_id)

    stored = services.events.get_event(event.event_id)
    assert stored.status == EventStatus.COMPLETED
    assert stored.order_id == order.order_id
    assert order.trigger.value == "manual_checkout"
    assert order.funded_amount_cents == 3000
    assert order.total_amount_cents == 10000
    kinds = notifier.kinds(event.event_id)
    assert "target_reached" not in kinds
    assert kinds[-2:] == ["checkout_ready", "completed"]
    assert _order_count(dynamodb_tables) == 1


def test_manual_checkout_on_draft_is_invalid_state(services, make_event):
    event = make_event(activate=False)

    with pytest.raises(InvalidStateError):
        services.lifecycle.checkout(event.event_id)


def test_checkout_below_minimum_waits_for_end_date(dynamodb_tables, config, notifier, catalog, clock):
    from lifecycle.container import FundingServices
    from shared.events import EventCategory, FundingWindow, LineItemRequest, Visibility

    services = FundingServices.build(
        config.model_copy(update={"partial_checkout_min_percent": 50}),
        dynamodb=dynamodb_tables, notifier=notifier, catalog=catalog, clock=clock,
    )
    today = clock().date()
    event = services.events.create(
        owner_id="owner-1",
        line_items=[LineItemRequest(product_id="p-speaker", quantity=1)],
        window=FundingWindow(start_date=today, end_date=today + timedelta(days=7)),
        visibility=Visibility.PRIVATE,
        title="New speaker",
        category=EventCategory.HOUSE_WARMING,
    )
    services.events.activate(event.event_id)
    services.ledger.record(event.event_id, "fan-1", 1200, "pay-small")
    services.ledger.confirm("pay-small", 1200)

    eligibility = services.lifecycle.checkout_eligibility(event.event_id)
    assert eligibility.eligible is False
    assert eligibility.funding == "insufficient"
    assert eligibility.percent == 20.0
    with pytest.raises(ValidationError):
        services.lifecycle.checkout(event.event_id)

    clock.advance(days=8)

    eligibility = services.lifecycle.checkout_eligibility(event.event_id)
    assert eligibility.eligible is True
    assert eligibility.window_elapsed is True
    assert services.lifecycle.checkout(event.event_id).funded_amount_cents == 1200


def test_checkout_allowed_at_any_funding_without_minimum(services, make_event):
    event = make_event()
    eligibility = services.lifecycle.checkout_eligibility(event.event_id)

    assert eligibility.eligible is True
    assert eligibility.funding == "partial"
    assert eligibility.reasons == []


def _big_ticket_services(dynamodb_tables, config, notifier, catalog, clock, **overrides):
    from lifecycle.container import FundingServices
    from shared.catalog import ProductSnapshot
    from shared.events import EventCategory, FundingWindow, LineItemRequest, Visibility

    catalog.products["p-sofa"] = ProductSnapshot(
        product_id="p-sofa", name="Sofa", seller_id="seller-3", unit_price_cents=1_000_000, available_stock=2
    )
    services = FundingServices.build(
        config.model_copy(update=overrides),
        dynamodb=dynamodb_tables, notifier=notifier, catalog=catalog, clock=clock,
    )
    today = clock().date()
    event = services.events.create(
        owner_id="owner-1",
        line_items=[LineItemRequest(product_id="p-sofa", quantity=1)],
        window=FundingWindow(start_date=today, end_date=today + timedelta(days=7)),
        visibility=Visibility.PUBLIC,
        title="New sofa",
        category=EventCategory.HOUSE_WARMING,
    )
    services.events.activate(event.event_id)
    return services, event


def test_one_cent_short_is_not_complete_without_partial_checkout(dynamodb_tables, config, notifier, catalog, clock):
    services, event = _big_ticket_services(
        dynamodb_tables, config, notifier, catalog, clock, allow_partial_checkout=False
    )
    services.ledger.record(event.event_id, "fan-1", 999_999, "pay-nearly")
    services.ledger.confirm("pay-nearly", 999_999)

    eligibility = services.lifecycle.checkout_eligibility(event.event_id)
    assert eligibility.eligible is False
    assert eligibility.funding == "insufficient"
    assert eligibility.percent == 99.99
    with pytest.raises(ValidationError):
        services.lifecycle.checkout(event.event_id)

    progress = services.events.get_progress(event.event_id)
    assert progress.percent == 99.99
    assert progress.remaining_amount_cents == 1
    assert services.events.get_event(event.event_id).status == EventStatus.ACTIVE


def test_partial_minimum_is_compared_in_cents(dynamodb_tables, config, notifier, catalog, clock):
    services, event = _big_ticket_services(
        dynamodb_tables, config, notifier, catalog, clock, partial_checkout_min_percent=50
    )
    services.ledger.record(event.event_id, "fan-1", 499_960, "pay-half")
    services.ledger.confirm("pay-half", 499_960)

    eligibility = services.lifecycle.checkout_eligibility(event.event_id)
    assert eligibility.eligible is False
    assert eligibility.funding == "insufficient"

    services.ledger.record(event.event_id, "fan-2", 40, "pay-topup")
    services.ledger.confirm("pay-topup", 40)

    eligibility = services.lifecycle.checkout_eligibility(event.event_id)
    assert eligibility.eligible is True
    assert eligibility.funding == "partial"
    assert eligibility.percent == 50.0
