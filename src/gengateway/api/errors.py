"""Translate gateway errors into OpenAI-style HTTP error responses."""

import structlog
from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from gengateway.providers.errors import ApiError, ErrorCode

_log = structlog.get_logger(__name__)

# ---------------------------------------------------------------------------
# HTTP status and OpenAI error type for each error kind
# ---------------------------------------------------------------------------
_ERROR_STATUS: dict[ErrorCode, int] = {
    ErrorCode.AUTH_REQUIRED: 401,
    ErrorCode.AUTH_INVALID: 401,
    ErrorCode.RATE_LIMITED: 429,
    ErrorCode.QUOTA_EXCEEDED: 402,
    ErrorCode.TIMEOUT: 504,
    ErrorCode.PROVIDER_ERROR: 502,
    ErrorCode.INVALID_PARAMS: 400,
    ErrorCode.INVALID_PROMPT: 400,
    ErrorCode.GENERATION_FAILED: 502,
}

_ERROR_TYPE: dict[ErrorCode, str] = {
    ErrorCode.AUTH_REQUIRED: "authentication_error",
    ErrorCode.AUTH_INVALID: "authentication_error",
    ErrorCode.RATE_LIMITED: "rate_limit_error",
    ErrorCode.QUOTA_EXCEEDED: "insufficient_quota",
    ErrorCode.TIMEOUT: "timeout_error",
    ErrorCode.INVALID_PARAMS: "invalid_request_error",
    ErrorCode.INVALID_PROMPT: "invalid_request_error",
}


def status_for(error: ApiError) -> int:
    return _ERROR_STATUS.get(error.code, 500)


def error_body(error: ApiError) -> dict:
    body = {
        "message": error.message,
        "type": _ERROR_TYPE.get(error.code, "api_error"),
        "code": error.code.value,
        "provider": error.provider,
    }
    if "param" in error.details:
        body["param"] = error.details["param"]
    return {"error": body}


def error_response(error: ApiError, headers: dict[str, str] | None = None) -> JSONResponse:
    return JSONResponse(status_code=status_for(error), content=error_body(error), headers=headers)


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    _log.warning(
        "api_error",
        path=request.url.path,
        error_code=exc.code.value,
        provider=exc.provider,
        error=exc.message,
    )
    return error_response(exc)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report body validation failures as ``INVALID_PARAMS`` with the first offending field."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    loc = [str(part) for part in first.get("loc", ()) if part != "body"]
    param = ".".join(loc) or "body"
    message = f"{param}: {first.get('msg', 'invalid value')}"
    return JSONResponse(
        status_code=400,
        content={
            "error": {
                "message": message,
                "type": "invalid_request_error",
                "code": ErrorCode.INVALID_PARAMS.value,
                "provider": None,
                "param": param,
            }
        },
    )
