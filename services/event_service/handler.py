"""
Event Service Lambda Handler
============================
Owner-facing routes for the event aggregate:

  POST  /events                        → create a draft (Idempotency-Key honoured)
  GET   /events                        → list/search, paginated
  GET   /events/{event_id}             → read, ETag = version
  PATCH /events/{event_id}             → edit (If-Match honoured)
  GET   /events/{event_id}/progress    → funding progress
  POST  /events/{event_id}/activate    → draft → active
  POST  /events/{event_id}/cancel      → draft|active → cancelled
  GET   /events/{event_id}/checkout    → would a manual checkout be accepted?
  POST  /events/{event_id}/checkout    → manual checkout, places the order
  GET   /shared/{share_code}           → resolve a share link

The handler is thin: parse → service call → response. Lifecycle rules live in
EventAggregate and FundingLifecycle.
"""
from __future__ import annotations

from aws_xray_sdk.core import patch_all, xray_recorder

from lifecycle.container import FundingServices, default_services
from shared.errors import ValidationError
from shared.events import (
    CancelEventRequest,
    CreateEventRequest,
    EditEventRequest,
    Event,
    EventFilter,
    FundingWindow,
)
from shared.http import error_response, header, parse_body, parse_model, path_param, query_params, response
from shared.idempotency import IdempotencyAlreadyInProgressError, idempotency_key_from_headers, idempotent
from shared.result import attempt

# Patch boto3 clients for X-Ray distributed tracing
patch_all()

from shared.logger import get_logger
logger = get_logger(__name__)


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
            "Unhandled exception in event_service handler",
            extra={"http_method": http_method, "resource": resource},
        )
        return response(500, {"error": "Internal server error"})


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def _create_event(services: FundingServices, api_event: dict) -> dict:
    request = parse_body(CreateEventRequest, api_event)

    def _create():
        event = services.events.create(
            owner_id=request.owner_id,
            line_items=request.line_items,
            window=FundingWindow(start_date=request.start_date, end_date=request.end_date),
            visibility=request.visibility,
            title=request.title,
            category=request.category,
            description=request.description,
            custom_category=request.custom_category,
        )
        return _event_body(event)

    key = idempotency_key_from_headers(api_event.get("headers"), "create-event")
    if key:
        _create = idempotent(
            key_fn=lambda: key,
            table=services.idempotency_table,
            ttl_seconds=services.config.idempotency_ttl_seconds,
        )(_create)

    body = _create()
    return response(201, body, {"ETag": f'"{body["version"]}"'})


def _edit_event(services: FundingServices, api_event: dict) -> dict:
    changes = parse_body(EditEventRequest, api_event)
    event = services.events.edit(
        path_param(api_event, "event_id"), changes, expected_version=_if_match(api_event)
    )
    return _event_response(event)


def _activate_event(services: FundingServices, api_event: dict) -> dict:
    return _event_response(services.events.activate(path_param(api_event, "event_id")))


def _cancel_event(services: FundingServices, api_event: dict) -> dict:
    request = parse_body(CancelEventRequest, api_event)
    return _event_response(services.events.cancel(path_param(api_event, "event_id"), request.reason))


def _checkout(services: FundingServices, api_event: dict) -> dict:
    order = services.lifecycle.checkout(path_param(api_event, "event_id"))
    return response(201, order.model_dump(mode="json"))


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

def _list_events(services: FundingServices, api_event: dict) -> dict:
    flt = parse_model(EventFilter, query_params(api_event))
    page = services.events.list_events(flt)
    return response(200, {
        "events": [_event_body(e) for e in page["events"]],
        "pagination": page["pagination"],
    })


def _get_event(services: FundingServices, api_event: dict) -> dict:
    return _event_response(services.events.get_event(path_param(api_event, "event_id")))


def _get_progress(services: FundingServices, api_event: dict) -> dict:
    progress = services.events.get_progress(path_param(api_event, "event_id"))
    return response(200, progress.model_dump(mode="json"))


def _get_checkout_eligibility(services: FundingServices, api_event: dict) -> dict:
    eligibility = services.lifecycle.checkout_eligibility(path_param(api_event, "event_id"))
    return response(200, eligibility.model_dump(mode="json"))


def _find_by_share_code(services: FundingServices, api_event: dict) -> dict:
    return _event_response(services.events.find_by_share_code(path_param(api_event, "share_code")))


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _event_body(event: Event) -> dict:
    return event.model_dump(mode="json")


def _event_response(event: Event) -> dict:
    return response(200, _event_body(event), {"ETag": event.etag})


def _if_match(api_event: dict) -> int | None:
    raw = header(api_event, "If-Match")
    if not raw or raw.strip() == "*":
        return None
    value = raw.strip()
    if value.startswith("W/"):
        value = value[2:]
    try:
        return int(value.strip('"'))
    except ValueError:
        raise ValidationError(f"If-Match must be an ETag returned by this API, got {raw!r}") from None


_ROUTES = {
    ("POST", "/events"): _create_event,
    ("GET", "/events"): _list_events,
    ("GET", "/events/{event_id}"): _get_event,
    ("PATCH", "/events/{event_id}"): _edit_event,
    ("GET", "/events/{event_id}/progress"): _get_progress,
    ("POST", "/events/{event_id}/activate"): _activate_event,
    ("POST", "/events/{event_id}/cancel"): _cancel_event,
    ("GET", "/events/{event_id}/checkout"): _get_checkout_eligibility,
    ("POST", "/events/{event_id}/checkout"): _checkout,
    ("GET", "/shared/{share_code}"): _find_by_share_code,
}
