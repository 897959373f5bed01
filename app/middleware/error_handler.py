"""
Error middleware: turns exceptions escaping the routers into JSON errors.
"""
import logging
from typing import Callable

from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from app.infrastructure.external_api_client import ExternalAPIError
from app.services.domain.group_formation_engine import GroupFormationCancelled

logger = logging.getLogger(__name__)

# nginx's "client closed request"
STATUS_CLIENT_CLOSED_REQUEST = 499


def error_response(status_code: int, error: str, detail: str) -> JSONResponse:
    """Uniform error body: {"error": ..., "detail": ...}."""
    return JSONResponse(status_code=status_code, content={"error": error, "detail": detail})


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """
    Last line of error handling for the API.

    - ExternalAPIError: the status chosen by the client (upstream 4xx, 502, 504)
    - GroupFormationCancelled: 499
    - ValueError: 400, e.g. duplicate plot ids in a snapshot
    - anything else: 500 with the traceback logged
    """

    async def dispatch(self, request: Request, call_next: Callable):
        where = {"path": request.url.path, "method": request.method}
        try:
            return await call_next(request)
        except ExternalAPIError as e:
            logger.error(f"Farm API failure ({e.status_code}): {e.message}",
                         extra={**where, "status_code": e.status_code})
            return error_response(e.status_code, "External API error", e.message)
        except GroupFormationCancelled as e:
            logger.info(f"Request cancelled during group formation: {e}", extra=where)
            return error_response(STATUS_CLIENT_CLOSED_REQUEST, "Request cancelled", str(e))
        except ValueError as e:
            logger.warning(f"Rejected request: {e}", extra=where)
            return error_response(status.HTTP_400_BAD_REQUEST, "Invalid request", str(e))
        except Exception as e:
            logger.exception(f"Unhandled exception: {e}", extra=where)
            return error_response(
                status.HTTP_500_INTERNAL_SERVER_ERROR,
                "Internal server error",
                "An unexpected error occurred",
            )
