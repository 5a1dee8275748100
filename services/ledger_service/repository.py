"""
Contribution Repository
=======================
Table design:
  PK: payment_reference

Keying the ledger by the external payment reference makes the reference
unique for free (conditional put on attribute_not_exists), and lets the
at-least-once confirmation signal find its contribution in a single GetItem.
"""
from __future__ import annotations

from datetime import datetime

from boto3.dynamodb.conditions import Attr
from botocore.exceptions import ClientError

from shared.dynamodb import CONDITIONAL_CHECK_FAILED, OptimisticLockError, error_code, scan_all
from shared.errors import ValidationError
from shared.events import Contribution, ContributionStatus


class ContributionRepository:
    def __init__(self, table):
        self._table = table

    def add(self, contribution: Contribution) -> Contribution:
        try:
            self._table.put_item(
                Item=contribution.to_item(),
                ConditionExpression="attribute_not_exists(payment_reference)",
            )
        except ClientError as e:
            if error_code(e) == CONDITIONAL_CHECK_FAILED:
                raise ValidationError(
                    f"Payment reference {contribution.payment_reference!r} is already in use"
                ) from e
            raise
        return contribution

    def get(self, payment_reference: str) -> Contribution | None:
        resp = self._table.get_item(
            Key={"payment_reference": payment_reference}, ConsistentRead=True
        )
        item = resp.get("Item")
        return Contribution.from_item(item) if item else None

    def confirm_op(self, confirmed: Contribution) -> dict:
        """
        Transaction entry that writes the confirmed contribution, but only if
        it is still pending. A second delivery of the same confirmation fails
        this condition and cancels the whole transaction, increment included.
        """
        return {
            "Put": {
                "TableName": self._table.name,
                "Item": confirmed.to_item(),
                "ConditionExpression": "#s = :pending",
                "ExpressionAttributeNames": {"#s": "status"},
                "ExpressionAttributeValues": {":pending": ContributionStatus.PENDING.value},
            }
        }

    def mark_failed(self, payment_reference: str, reason: str, now: datetime) -> None:
        try:
            self._table.update_item(
                Key={"payment_reference": payment_reference},
                UpdateExpression="SET #s = :failed, failure_reason = :r, updated_at = :u",
                ConditionExpression="#s = :pending",
                ExpressionAttributeNames={"#s": "status"},
                ExpressionAttributeValues={
                    ":failed": ContributionStatus.FAILED.value,
                    ":pending": ContributionStatus.PENDING.value,
                    ":r": reason,
                    ":u": now.isoformat(),
                },
            )
        except ClientError as e:
            if error_code(e) == CONDITIONAL_CHECK_FAILED:
                raise OptimisticLockError(
                    f"Contribution {payment_reference!r} is no longer pending"
                ) from e
            raise

    def list_for_event(
        self, event_id: str, status: ContributionStatus | None = None
    ) -> list[Contribution]:
        condition = Attr("event_id").eq(event_id)
        if status is not None:
            condition = condition & Attr("status").eq(status.value)
        return self._sorted(scan_all(self._table, FilterExpression=condition))

    def list_for_contributor(self, contributor_id: str) -> list[Contribution]:
        return self._sorted(
            scan_all(self._table, FilterExpression=Attr("contributor_id").eq(contributor_id))
        )

    @staticmethod
    def _sorted(items) -> list[Contribution]:
        contributions = [Contribution.from_item(item) for item in items]
        contributions.sort(key=lambda c: c.created_at, reverse=True)
        return contributions
