"""
Funding Lifecycle State Machine
===============================
The only code path allowed to change an event's `status`.

Transitions:
  draft   --activate-->            active
  active  --target reached-->      completed   (order + notices, exactly once)
  active  --manual checkout-->     completed   (order + notices, exactly once)
  draft   --cancel-->              cancelled
  active  --cancel-->              cancelled
completed and cancelled are terminal.

Single-winner completion
------------------------
There is no lock. Every writer reads the event, computes the next state and
commits it conditioned on the version it read. When a confirmed contribution
pushes the total across the target, one TransactWriteItems call carries:

    1. contribution  pending → confirmed    (condition: still pending)
    2. event         total += amount, status → completed
                                            (condition: version unchanged)
    3. order         put                    (condition: none for this event)

Two confirmations racing past the target both read version N; one commits,
the other's transaction is cancelled, it re-reads version N+1, sees
`completed`, and only applies its increment. The flip and the order write
share one atomic unit, so an event is completed iff its order exists. If the
order write fails for any reason other than a condition, nothing commits and
the caller gets a RetryableError with the event still `active`.

Notifications go out only after the transaction commits.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Iterator

from botocore.exceptions import ClientError

from shared.config import FundingConfig
from shared.dynamodb import OptimisticLockError, transact_write
from shared.errors import ConflictError, InvalidStateError, RetryableError, ValidationError
from shared.events import (
    CheckoutEligibility,
    CompletionTrigger,
    ConfirmationResult,
    Contribution,
    ContributionStatus,
    Event,
    EventStatus,
    NotificationKind,
    Order,
    progress_of,
    utcnow,
)
from shared.notifier import Notifier, dispatch

logger = logging.getLogger(__name__)

ACTIVATE = "activate"
COMPLETE = "complete"
CANCEL = "cancel"

_TRANSITIONS: dict[tuple[EventStatus, str], EventStatus] = {
    (EventStatus.DRAFT, ACTIVATE): EventStatus.ACTIVE,
    (EventStatus.ACTIVE, COMPLETE): EventStatus.COMPLETED,
    (EventStatus.DRAFT, CANCEL): EventStatus.CANCELLED,
    (EventStatus.ACTIVE, CANCEL): EventStatus.CANCELLED,
}


def next_status(current: EventStatus, action: str) -> EventStatus:
    try:
        return _TRANSITIONS[(current, action)]
    except KeyError:
        raise InvalidStateError(f"Cannot {action} an event that is {current.value}") from None


class FundingLifecycle:
    def __init__(
        self,
        config: FundingConfig,
        events,
        contributions,
        projection,
        notifier: Notifier,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._config = config
        self._events = events
        self._contributions = contributions
        self._projection = projection
        self._notifier = notifier
        self._clock = clock

    # ------------------------------------------------------------------
    # Owner-initiated transitions
    # ------------------------------------------------------------------

    def activate(self, event_id: str) -> Event:
        """draft → active. Activating an active event is a no-op."""
        for _ in self._attempts():
            event = self._events.require(event_id)
            if event.status == EventStatus.ACTIVE:
                return event
            status = next_status(event.status, ACTIVATE)
            now = self._clock()
            try:
                stored = self._events.save(event.model_copy(update={
                    "status": status, "activated_at": now, "updated_at": now,
                }))
            except OptimisticLockError:
                continue

            logger.info("Event activated", extra={"event_id": event_id, "version": stored.version})
            self._notify(NotificationKind.ACTIVATED, stored)

            # Pledges confirmed while still a draft may already cover the target
            if self.evaluate(event_id) is not None:
                return self._events.require(event_id)
            return stored
        raise self._exhausted(event_id, ACTIVATE)

    def cancel(self, event_id: str, reason: str = "") -> Event:
        """draft|active → cancelled."""
        for _ in self._attempts():
            event = self._events.require(event_id)
            status = next_status(event.status, CANCEL)
            now = self._clock()
            try:
                stored = self._events.save(event.model_copy(update={
                    "status": status,
                    "cancel_reason": reason or None,
                    "cancelled_at": now,
                    "updated_at": now,
                }))
            except OptimisticLockError:
                continue

            logger.info(
                "Event cancelled",
                extra={"event_id": event_id, "reason": reason, "from_status": event.status.value},
            )
            self._notify(NotificationKind.CANCELLED, stored, reason=reason)
            return stored
        raise self._exhausted(event_id, CANCEL)

    def checkout(self, event_id: str) -> Order:
        """Creator-initiated active → completed, subject to checkout_eligibility()."""
        for _ in self._attempts():
            event = self._events.require(event_id)
            if event.status == EventStatus.COMPLETED:
                raise InvalidStateError(f"Event {event_id!r} has already been checked out")
            next_status(event.status, COMPLETE)

            eligibility = self._eligibility(event)
            if not eligibility.eligible:
                raise ValidationError("Event is not eligible for checkout: " + "; ".join(eligibility.reasons))

            completed, order, order_op = self._completion(event, CompletionTrigger.MANUAL_CHECKOUT)
            try:
                self._commit([self._events.versioned_put(completed), order_op], event_id)
            except OptimisticLockError:
                continue

            self._announce_completion(completed, order)
            return order
        raise self._exhausted(event_id, COMPLETE)

    def checkout_eligibility(self, event_id: str) -> CheckoutEligibility:
        return self._eligibility(self._events.require(event_id))

    # ------------------------------------------------------------------
    # Ledger-driven transitions
    # ------------------------------------------------------------------

    def apply_confirmation(self, contribution: Contribution, amount_cents: int) -> ConfirmationResult:
        """
        Confirm `contribution` for `amount_cents`, add it to the event total
        and, if that crosses the target, complete the event, all in one
        transaction.
        """
        reference = contribution.payment_reference
        for _ in self._attempts():
            current = self._contributions.get(reference) or contribution
            if current.status == ContributionStatus.CONFIRMED:
                return self._already_applied(current)
            if current.status == ContributionStatus.FAILED:
                raise InvalidStateError(f"Payment {reference!r} already failed and cannot be confirmed")

            event = self._events.require(current.event_id)
            now = self._clock()
            confirmed = current.model_copy(update={
                "status": ContributionStatus.CONFIRMED,
                "amount_cents": amount_cents,
                "confirmed_at": now,
                "updated_at": now,
            })
            funded = event.model_copy(update={
                "current_amount_cents": event.current_amount_cents + amount_cents,
                "updated_at": now,
            })

            order = None
            order_op = None
            if self._should_complete(funded):
                funded, order, order_op = self._completion(funded, CompletionTrigger.TARGET_REACHED)
            elif event.status.is_terminal:
                logger.warning(
                    "Late confirmation on a closed event",
                    extra={"event_id": event.event_id, "status": event.status.value,
                           "payment_reference": reference},
                )

            ops = [self._contributions.confirm_op(confirmed), self._events.versioned_put(funded)]
            if order_op is not None:
                ops.append(order_op)
            try:
                self._commit(ops, event.event_id)
            except OptimisticLockError:
                logger.info(
                    "Confirmation lost a race, re-reading",
                    extra={"event_id": event.event_id, "payment_reference": reference},
                )
                continue

            logger.info(
                "Contribution applied",
                extra={
                    "event_id": event.event_id,
                    "payment_reference": reference,
                    "amount_cents": amount_cents,
                    "current_amount_cents": funded.current_amount_cents,
                    "target_amount_cents": funded.target_amount_cents,
                },
            )
            if order is not None:
                self._announce_completion(funded, order)

            return ConfirmationResult(
                contribution=confirmed,
                event_status=funded.status,
                current_amount_cents=funded.current_amount_cents,
                applied=True,
                order_id=funded.order_id,
            )
        raise self._exhausted(contribution.event_id, "confirm")

    def evaluate(self, event_id: str) -> Order | None:
        """
        Re-run the completion guard. Returns the order if this call was the
        one that completed the event, None otherwise.
        """
        for _ in self._attempts():
            event = self._events.require(event_id)
            if not self._should_complete(event):
                return None
            completed, order, order_op = self._completion(event, CompletionTrigger.TARGET_REACHED)
            try:
                self._commit([self._events.versioned_put(completed), order_op], event_id)
            except OptimisticLockError:
                continue
            self._announce_completion(completed, order)
            return order
        raise self._exhausted(event_id, COMPLETE)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _attempts(self) -> Iterator[int]:
        return iter(range(self._config.max_write_attempts))

    def _exhausted(self, event_id: str, action: str) -> ConflictError:
        logger.warning(
            "Write attempts exhausted",
            extra={"event_id": event_id, "action": action, "attempts": self._config.max_write_attempts},
        )
        return ConflictError(f"Too many concurrent writes to event {event_id!r} during {action}; retry")

    def _should_complete(self, event: Event) -> bool:
        return (
            self._config.auto_complete_on_target
            and event.status == EventStatus.ACTIVE
            and event.target_reached
        )

    def _completion(self, event: Event, trigger: CompletionTrigger) -> tuple[Event, Order, dict]:
        status = next_status(event.status, COMPLETE)
        now = self._clock()
        completed = event.model_copy(update={"status": status, "completed_at": now, "updated_at": now})
        order, order_op = self._projection.create_from_event(completed, trigger)
        return completed.model_copy(update={"order_id": order.order_id}), order, order_op

    def _commit(self, ops: list[dict], event_id: str) -> None:
        try:
            transact_write(self._events.client, ops)
        except ClientError as e:
            logger.exception("Lifecycle transaction failed", extra={"event_id": event_id})
            raise RetryableError(f"Could not apply the change to event {event_id!r}; retry") from e

    def _already_applied(self, contribution: Contribution) -> ConfirmationResult:
        # Redelivery heals a completion that previously failed with a retryable error
        self.evaluate(contribution.event_id)
        event = self._events.require(contribution.event_id)
        logger.info(
            "Duplicate confirmation ignored",
            extra={"event_id": event.event_id, "payment_reference": contribution.payment_reference},
        )
        return ConfirmationResult(
            contribution=contribution,
            event_status=event.status,
            current_amount_cents=event.current_amount_cents,
            applied=False,
            order_id=event.order_id,
        )

    def _eligibility(self, event: Event) -> CheckoutEligibility:
        today = self._clock().date()
        progress = progress_of(event, today)
        window_elapsed = today > event.end_date
        reasons = []

        if event.target_reached:
            funding = "complete"
        elif self._config.allow_partial_checkout and self._meets_partial_minimum(event):
            funding = "partial"
        else:
            funding = "insufficient"

        if event.status != EventStatus.ACTIVE:
            reasons.append("Event must be active to check out")
        if funding == "insufficient" and not window_elapsed:
            if self._config.allow_partial_checkout:
                reasons.append(
                    f"Event must reach {self._config.partial_checkout_min_percent}% funding "
                    "or pass its end date"
                )
            else:
                reasons.append("Event must reach its target or pass its end date")

        return CheckoutEligibility(
            event_id=event.event_id,
            eligible=not reasons,
            reasons=reasons,
            percent=progress.percent,
            funding=funding,
            window_elapsed=window_elapsed,
        )

    def _meets_partial_minimum(self, event: Event) -> bool:
        # Integer cents; the displayed percent is floored
        return event.current_amount_cents * 100 >= self._config.partial_checkout_min_percent * event.target_amount_cents

    def _announce_completion(self, event: Event, order: Order) -> None:
        logger.info(
            "Event completed",
            extra={
                "event_id": event.event_id,
                "order_id": order.order_id,
                "trigger": order.trigger.value,
                "current_amount_cents": event.current_amount_cents,
                "target_amount_cents": event.target_amount_cents,
            },
        )
        extra = {"order_id": order.order_id, "trigger": order.trigger.value}
        if event.target_reached:
            self._notify(NotificationKind.TARGET_REACHED, event, **extra)
        self._notify(NotificationKind.CHECKOUT_READY, event, seller_id=order.seller_id, **extra)
        self._notify(NotificationKind.COMPLETED, event, **extra)

    def _notify(self, kind: NotificationKind, event: Event, **extra: Any) -> None:
        payload = {
            "event_id": event.event_id,
            "owner_id": event.owner_id,
            "title": event.title,
            "status": event.status.value,
            "current_amount_cents": event.current_amount_cents,
            "target_amount_cents": event.target_amount_cents,
            **extra,
        }
        dispatch(self._notifier, kind, payload)
