"""
Custom middleware for audit logging and error handling
"""

import logging
import time
import uuid
from typing import Callable

import anyio
from fastapi import HTTPException, Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)


class AuditMiddleware(BaseHTTPMiddleware):
    """Logs every API request with a request id echoed in X-Request-ID"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        # Honour an id set by the gateway, otherwise mint one
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id

        start_time = time.time()
        logger.info(
            f"Request started - ID: {request_id}, Method: {request.method}, "
            f"Path: {request.url.path}, Client: {request.client.host if request.client else 'unknown'}"
        )

        response = await call_next(request)

        process_time = time.time() - start_time
        logger.info(
            f"Request completed - ID: {request_id}, Status: {response.status_code}, "
            f"Time: {process_time:.3f}s"
        )

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{process_time:.3f}"
        return response


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Turns unexpected exceptions into a structured 500 response"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)
        except HTTPException:
            raise
        except (anyio.EndOfStream, anyio.WouldBlock) as exc:
            # Client went away; not a server error
            logger.debug(
                f"Client connection issue - Request ID: "
                f"{getattr(request.state, 'request_id', 'N/A')}, Error: {type(exc).__name__}"
            )
            raise
        except Exception as exc:
            request_id = getattr(request.state, "request_id", str(uuid.uuid4()))
            logger.error(
                f"Unhandled server exception - Request ID: {request_id}, Error: {str(exc)}",
                exc_info=True,
            )
            return JSONResponse(
                status_code=500,
                content={
                    "error_code": "INTERNAL_SERVER_ERROR",
                    "message": "An internal server error occurred.",
                    "request_id": request_id,
                    "support_reference": f"ERR-{request_id[:8]}",
                },
            )
