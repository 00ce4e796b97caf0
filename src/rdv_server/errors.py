"""Global exception handlers — map exceptions to HTTP status codes.

The orchestrator never raises for conversational errors; what reaches
these handlers are lookups of unknown sessions (``ValueError("... not
found")``) and genuine bugs.  Installing the handlers globally keeps route
handlers focused on the happy path.
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

# --- Keyword patterns in ValueError messages and their HTTP status codes ---
# Checked in order; first match wins.
_VALUE_ERROR_PATTERNS: list[tuple[str, int]] = [
    ("not found", 404),
]


# --- Client-safe messages keyed by HTTP status code ---
# Session ids and internal details stay in the server log.
_SAFE_MESSAGES: dict[int, str] = {
    404: "Resource not found",
    400: "Invalid request",
}


async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    """Map ``ValueError`` to 404 (not found) or 400.

    The raw exception message is logged server-side but never sent to the
    client.
    """
    msg = str(exc)
    status = 400
    for pattern, code in _VALUE_ERROR_PATTERNS:
        if pattern in msg.lower():
            status = code
            break

    logger.warning("ValueError [%d] at %s: %s", status, request.url.path, msg)
    return JSONResponse(status_code=status, content={"detail": _SAFE_MESSAGES.get(status, "Invalid request")})


async def key_error_handler(request: Request, exc: KeyError) -> JSONResponse:
    """Map ``KeyError`` to 404."""
    logger.warning("KeyError at %s: %s", request.url.path, exc)
    return JSONResponse(status_code=404, content={"detail": "Resource not found"})


async def generic_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unhandled exceptions — log full traceback, return 500."""
    logger.exception("Unhandled exception at %s", request.url.path)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )
