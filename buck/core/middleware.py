"""FastAPI middleware binding request and user ids for structured logging."""

import uuid

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from buck.core.logging import get_logger, request_id_var, user_id_var

logger = get_logger(__name__)


class ObservabilityMiddleware(BaseHTTPMiddleware):
    """Sets request_id / user_id context vars for the lifetime of one request."""

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request_token = request_id_var.set(request_id)
        user_token = user_id_var.set(request.headers.get("x-user-id") or None)

        try:
            logger.debug("request_started", method=request.method, path=request.url.path)

            response = await call_next(request)
            response.headers["x-request-id"] = request_id

            logger.debug(
                "request_finished",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
            )
            return response
        finally:
            user_id_var.reset(user_token)
            request_id_var.reset(request_token)
