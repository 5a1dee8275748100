"""
API Gateway proxy helpers shared by the HTTP handlers.
"""
from __future__ import annotations

import json
from typing import Any, Type, TypeVar

import pydantic

from shared.errors import ErrorKind, ValidationError
from shared.result import Err

M = TypeVar("M", bound=pydantic.BaseModel)

STATUS_FOR_KIND = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.INVALID_STATE: 409,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.RETRYABLE: 503,
}


def response(status_code: int, body: Any, headers: dict[str, str] | None = None) -> dict:
    return {
        "statusCode": status_code,
        "headers": {"Content-Type": "application/json", **(headers or {})},
        "body": json.dumps(body, default=str),
    }


def error_response(err: Err) -> dict:
    headers = {"Retry-After": "1"} if err.retryable else None
    return response(
        STATUS_FOR_KIND[err.kind],
        {"error": err.detail, "kind": err.kind.value, "retryable": err.retryable},
        headers,
    )


def parse_body(model: Type[M], api_event: dict) -> M:
    """Decode and validate the JSON body, reporting problems as ValidationError."""
    try:
        payload = json.loads(api_event.get("body") or "{}")
    except json.JSONDecodeError as e:
        raise ValidationError(f"Request body is not valid JSON: {e.msg}") from e
    return parse_model(model, payload)


def parse_model(model: Type[M], payload: Any) -> M:
    try:
        return model.model_validate(payload)
    except pydantic.ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'body'}: {err['msg']}" for err in e.errors()
        )
        raise ValidationError(f"Invalid request: {problems}") from e


def path_param(api_event: dict, name: str) -> str:
    return (api_event.get("pathParameters") or {}).get(name, "")


def query_params(api_event: dict) -> dict[str, str]:
    return dict(api_event.get("queryStringParameters") or {})


def header(api_event: dict, name: str) -> str | None:
    headers = api_event.get("headers") or {}
    lowered = name.lower()
    for key, value in headers.items():
        if key.lower() == lowered:
            return value
    return None
