from typing import Any, Dict, Optional

from fastapi.responses import JSONResponse, Response


CORS_HEADERS: Dict[str, str] = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "Content-Type",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
}


class UpstreamError(RuntimeError):
    """Raised when a third-party provider answers with a non-2xx status."""

    def __init__(self, provider: str, status_code: int, payload: Any = None):
        self.provider = provider
        self.status_code = status_code
        self.payload = payload
        super().__init__(f"{provider} returned HTTP {status_code}")


class UnsupportedEndpointShape(UpstreamError):
    """The endpoint rejected the request shape (400/404); another shape may work."""


class BadRequest(ValueError):
    """Caller input failed validation."""


def json_response(content: Any, status_code: int = 200, headers: Optional[Dict[str, str]] = None) -> JSONResponse:
    return JSONResponse(content, status_code=status_code, headers={**CORS_HEADERS, **(headers or {})})


def error_response(status_code: int, message: str, **extra: Any) -> JSONResponse:
    """Standard error body: {"error": <message>, ...extra}."""
    body: Dict[str, Any] = {"error": message}
    if extra:
        body.update(extra)
    return json_response(body, status_code=status_code)


def preflight_response() -> Response:
    return Response(status_code=204, headers=CORS_HEADERS)


def method_not_allowed() -> JSONResponse:
    return error_response(405, "Method not allowed")


__all__ = [
    "CORS_HEADERS",
    "UpstreamError",
    "UnsupportedEndpointShape",
    "BadRequest",
    "json_response",
    "error_response",
    "preflight_response",
    "method_not_allowed",
]
