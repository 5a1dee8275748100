"""
Ledger Service Lambda Handlers
==============================
Two entry points:

`handler` (API Gateway):
  POST /events/{event_id}/contributions           → record a pledge (Idempotency-Key honoured)
  GET  /events/{event_id}/contributions           → confirmed contributions, anonymous masked
  GET  /events/{event_id}/contributions/summary   → totals + progress
  GET  /contributors/{contributor_id}/contributions

`confirmation_handler` (SQS): the payment collaborator's confirmation signal,
delivered at least once. Each record is routed to confirm() or fail().

SQS partial batch failure:
  - validation / wrong state / not found → logged and acknowledged. Redelivery
    cannot change the outcome, so the message is not retried.
  - conflict / retryable → reported in batchItemFailures; SQS redelivers, and
    confirm() is idempotent, so a redelivery either applies the payment or
    heals a completion that failed half-way.
"""
from __future__ import annotations

import json

from aws_xray_sdk.core import patch_all, xray_recorder

from lifecycle.container import FundingServices, default_services
from shared.events import PaymentConfirmationSignal, RecordContributionRequest
from shared.http import error_response, parse_body, parse_model, path_param, response
from shared.idempotency import IdempotencyAlreadyInProgressError, idempotency_key_from_headers, idempotent
from shared.result import attempt

# Patch boto3 clients for X-Ray distributed tracing
patch_all()

from shared.logger import get_logger
logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# HTTP entry point
# ---------------------------------------------------------------------------

def handler(event: dict, context, services: FundingServices | None = None) -> dict:
    http_method = event.get("httpMethod", "")
    resource = event.get("resource", "")
    route = _ROUTES.get((http_method, resource))
    if route is None:
        return response(404, {"error": "Not Found"})

    try:
        services = services or default_services()
        with xray_recorder.in_subsegment(route.__name__.lstrip("_")):
            result = attempt(route, services, event)
        return result.value if result.ok else error_response(result)
    except IdempotencyAlreadyInProgressError as e:
        return response(409, {"error": str(e)})
    except Exception:
        logger.exception(
            "Unhandled exception in ledger_service handler",
            extra={"http_method": http_method, "resource": resource},
        )
        return response(500, {"error": "Internal server error"})


def _record_contribution(services: FundingServices, api_event: dict) -> dict:
    event_id = path_param(api_event, "event_id")
    request = parse_body(RecordContributionRequest, api_event)

    def _record():
        contribution = services.ledger.record(
            event_id=event_id,
            contributor_id=request.contributor_id,
            amount_cents=request.amount_cents,
            payment_reference=request.payment_reference,
            payment_method=request.payment_method,
            message=request.message,
            anonymous=request.anonymous,
        )
        return contribution.model_dump(mode="json")

    key = idempotency_key_from_headers(api_event.get("headers"), f"contribute:{event_id}")
    if key:
        _record = idempotent(
            key_fn=lambda: key,
            table=services.idempotency_table,
            ttl_seconds=services.config.idempotency_ttl_seconds,
        )(_record)

    return response(201, _record())


def _list_contributions(services: FundingServices, api_event: dict) -> dict:
    event_id = path_param(api_event, "event_id")
    return response(200, {"event_id": event_id, "contributions": services.ledger.list_for_event(event_id)})


def _summarize(services: FundingServices, api_event: dict) -> dict:
    summary = services.ledger.summarize(path_param(api_event, "event_id"))
    return response(200, summary.model_dump(mode="json"))


def _list_for_contributor(services: FundingServices, api_event: dict) -> dict:
    contributor_id = path_param(api_event, "contributor_id")
    contributions = services.ledger.list_for_contributor(contributor_id)
    return response(200, {
        "contributor_id": contributor_id,
        "contributions": [c.model_dump(mode="json") for c in contributions],
    })


_ROUTES = {
    ("POST", "/events/{event_id}/contributions"): _record_contribution,
    ("GET", "/events/{event_id}/contributions"): _list_contributions,
    ("GET", "/events/{event_id}/contributions/summary"): _summarize,
    ("GET", "/contributors/{contributor_id}/contributions"): _list_for_contributor,
}


# ---------------------------------------------------------------------------
# SQS entry point
# ---------------------------------------------------------------------------

def confirmation_handler(event: dict, context, services: FundingServices | None = None) -> dict:
    """
    Returns {"batchItemFailures": [...]} so only the records that can succeed
    on a later attempt are redelivered.
    """
    services = services or default_services()
    failures = []

    for record in event.get("Records", []):
        message_id = record.get("messageId")
        try:
            with xray_recorder.in_subsegment("payment_confirmation"):
                result = attempt(_process_record, services, record)
        except Exception:
            logger.exception("Failed to process payment confirmation", extra={"message_id": message_id})
            failures.append({"itemIdentifier": message_id})
            continue

        if result.ok:
            continue
        if result.retryable:
            logger.warning(
                "Payment confirmation will be retried",
                extra={"message_id": message_id, "kind": result.kind.value, "detail": result.detail},
            )
            failures.append({"itemIdentifier": message_id})
        else:
            logger.error(
                "Payment confirmation rejected",
                extra={"message_id": message_id, "kind": result.kind.value, "detail": result.detail},
            )

    return {"batchItemFailures": failures}


def _process_record(services: FundingServices, record: dict):
    try:
        body = json.loads(record.get("body") or "{}")
    except json.JSONDecodeError:
        body = None
    signal = parse_model(PaymentConfirmationSignal, body)

    logger.info(
        "Payment signal received",
        extra={
            "event_id": signal.event_id,
            "payment_reference": signal.payment_reference,
            "outcome": signal.outcome.value,
        },
    )
    return services.ledger.handle_signal(signal)
