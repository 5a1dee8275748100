"""
Contribution Ledger
===================
Pledges against an event, and the confirmation signal that turns a pledge
into money on the event.

    record()   → pending contribution, no effect on the event total
    confirm()  → confirmed, event total += amount, completion evaluated
    fail()     → failed, no effect on the event total

The payment collaborator delivers confirmations at least once. `confirm()`
applies a payment reference exactly once: the pending → confirmed write is
conditioned on the contribution still being pending and rides in the same
transaction as the increment (see FundingLifecycle.apply_confirmation).
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from shared.dynamodb import OptimisticLockError
from shared.errors import InvalidStateError, NotFoundError, ValidationError
from shared.events import (
    ConfirmationResult,
    Contribution,
    ContributionStatus,
    ContributionSummary,
    NotificationKind,
    PaymentConfirmationSignal,
    PaymentMethod,
    PaymentOutcome,
    progress_of,
    utcnow,
)
from shared.notifier import Notifier, dispatch

logger = logging.getLogger(__name__)


class ContributionLedger:
    def __init__(
        self,
        repo,
        events,
        lifecycle,
        notifier: Notifier,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._repo = repo
        self._events = events
        self._lifecycle = lifecycle
        self._notifier = notifier
        self._clock = clock

    def record(
        self,
        event_id: str,
        contributor_id: str | None,
        amount_cents: int,
        payment_reference: str,
        payment_method: PaymentMethod = PaymentMethod.CARD,
        message: str | None = None,
        anonymous: bool = False,
    ) -> Contribution:
        if amount_cents <= 0:
            raise ValidationError("Contribution amount must be positive")
        payment_reference = (payment_reference or "").strip()
        if not payment_reference:
            raise ValidationError("payment_reference is required")

        event = self._events.require(event_id)
        if not event.status.is_open:
            raise ValidationError(f"Event is {event.status.value} and no longer accepts contributions")

        now = self._clock()
        contribution = self._repo.add(Contribution(
            event_id=event_id,
            contributor_id=contributor_id,
            amount_cents=amount_cents,
            payment_reference=payment_reference,
            payment_method=payment_method,
            message=message,
            anonymous=anonymous,
            created_at=now,
            updated_at=now,
        ))
        logger.info(
            "Contribution recorded",
            extra={
                "event_id": event_id,
                "payment_reference": payment_reference,
                "amount_cents": amount_cents,
                "payment_method": PaymentMethod(payment_method).value,
            },
        )
        return contribution

    def confirm(self, payment_reference: str, final_amount_cents: int) -> ConfirmationResult:
        if final_amount_cents <= 0:
            raise ValidationError("Confirmed amount must be positive")
        contribution = self._require(payment_reference)

        result = self._lifecycle.apply_confirmation(contribution, final_amount_cents)
        if result.applied:
            dispatch(self._notifier, NotificationKind.CONTRIBUTION_RECEIVED, {
                "event_id": contribution.event_id,
                "payment_reference": payment_reference,
                "contributor_id": None if contribution.anonymous else contribution.contributor_id,
                "amount_cents": final_amount_cents,
                "current_amount_cents": result.current_amount_cents,
                "status": result.event_status.value,
            })
        return result

    def fail(self, payment_reference: str, reason: str = "") -> Contribution:
        """Mark a pending contribution failed. Failing it again is a no-op."""
        for _ in range(2):
            contribution = self._require(payment_reference)
            if contribution.status == ContributionStatus.FAILED:
                return contribution
            if contribution.status == ContributionStatus.CONFIRMED:
                raise InvalidStateError(f"Payment {payment_reference!r} is already confirmed")
            try:
                self._repo.mark_failed(payment_reference, reason, self._clock())
            except OptimisticLockError:
                # Confirmed or failed in between; the re-read decides
                continue

            logger.info(
                "Contribution failed",
                extra={
                    "event_id": contribution.event_id,
                    "payment_reference": payment_reference,
                    "reason": reason,
                },
            )
            dispatch(self._notifier, NotificationKind.PAYMENT_FAILED, {
                "event_id": contribution.event_id,
                "payment_reference": payment_reference,
                "contributor_id": contribution.contributor_id,
                "amount_cents": contribution.amount_cents,
                "reason": reason,
            })
            return self._require(payment_reference)
        return self._require(payment_reference)

    def handle_signal(self, signal: PaymentConfirmationSignal) -> ConfirmationResult | Contribution:
        """Route one payment-collaborator message to confirm() or fail()."""
        contribution = self._require(signal.payment_reference)
        if contribution.event_id != signal.event_id:
            raise ValidationError(
                f"Payment {signal.payment_reference!r} belongs to event "
                f"{contribution.event_id!r}, not {signal.event_id!r}"
            )
        if signal.outcome == PaymentOutcome.CONFIRMED:
            return self.confirm(signal.payment_reference, signal.amount_cents)
        return self.fail(signal.payment_reference, signal.reason)

    def get(self, payment_reference: str) -> Contribution:
        return self._require(payment_reference)

    def list_for_event(self, event_id: str) -> list[dict]:
        self._events.require(event_id)
        return [
            c.public_view()
            for c in self._repo.list_for_event(event_id, ContributionStatus.CONFIRMED)
        ]

    def list_for_contributor(self, contributor_id: str) -> list[Contribution]:
        return self._repo.list_for_contributor(contributor_id)

    def summarize(self, event_id: str) -> ContributionSummary:
        event = self._events.require(event_id)
        confirmed = self._repo.list_for_event(event_id, ContributionStatus.CONFIRMED)
        amounts = [c.amount_cents for c in confirmed]
        total = sum(amounts)
        return ContributionSummary(
            event_id=event_id,
            total_contributions=len(amounts),
            total_amount_cents=total,
            average_contribution_cents=total // len(amounts) if amounts else 0,
            max_contribution_cents=max(amounts, default=0),
            min_contribution_cents=min(amounts, default=0),
            unique_contributor_count=len({c.contributor_id for c in confirmed if c.contributor_id}),
            progress=progress_of(event, self._clock().date()),
        )

    def _require(self, payment_reference: str) -> Contribution:
        contribution = self._repo.get(payment_reference)
        if contribution is None:
            raise NotFoundError(f"No contribution with payment reference {payment_reference!r}")
        return contribution
