"""
Order Service Lambda Handler
============================
Read-only routes over the order projection:
  GET /orders/{order_id}             → one order
  GET /events/{event_id}/order       → the order placed for an event
  GET /sellers/{seller_id}/orders    → a seller's orders, newest first

Orders are never created over HTTP. The only writer is the completion
transaction in FundingLifecycle.
"""
from __future__ import annotations

from aws_xray_sdk.core import patch_all, xray_recorder

from lifecycle.container import FundingServices, default_services
from shared.http import error_response, path_param, response
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
    except Exception:
        logger.exception(
            "Unhandled exception in order_service handler",
            extra={"http_method": http_method, "resource": resource},
        )
        return response(500, {"error": "Internal server error"})


def _get_order(services: FundingServices, api_event: dict) -> dict:
    order = services.orders.get_order(path_param(api_event, "order_id"))
    return response(200, order.model_dump(mode="json"))


def _get_event_order(services: FundingServices, api_event: dict) -> dict:
    order = services.orders.get_for_event(path_param(api_event, "event_id"))
    return response(200, order.model_dump(mode="json"))


def _list_seller_orders(services: FundingServices, api_event: dict) -> dict:
    seller_id = path_param(api_event, "seller_id")
    orders = services.orders.list_for_seller(seller_id)
    return response(200, {"seller_id": seller_id, "orders": [o.model_dump(mode="json") for o in orders]})


_ROUTES = {
    ("GET", "/orders/{order_id}"): _get_order,
    ("GET", "/events/{event_id}/order"): _get_event_order,
    ("GET", "/sellers/{seller_id}/orders"): _list_seller_orders,
}
