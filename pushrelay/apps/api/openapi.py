from __future__ import annotations

from typing import Any

from pushrelay.apps.api.response import API_VERSION, ErrorEnvelope


def _documented_error(description: str, code: str, message: str) -> dict[str, Any]:
    example = {
        "error": {"code": code, "message": message},
        "meta": {"request_id": "req_example", "api_version": API_VERSION},
    }
    return {
        "model": ErrorEnvelope,
        "description": description,
        "content": {"application/json": {"example": example}},
    }


DEFAULT_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    400: _documented_error("Malformed push token or incomplete payload", "INVALID_PUSH_TOKEN", "Invalid push token"),
    401: _documented_error("Missing or wrong shared secret", "AUTH_UNAUTHORIZED", "Invalid webhook secret"),
    422: _documented_error("Request body failed validation", "REQUEST_VALIDATION_ERROR", "Validation error"),
    500: _documented_error("Unexpected failure", "INTERNAL_ERROR", "Internal server error"),
    503: _documented_error("Registry store unreachable; safe to retry", "SERVICE_UNAVAILABLE", "Store unavailable"),
}
