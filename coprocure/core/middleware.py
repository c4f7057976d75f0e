"""
Request correlation middleware.

Every response carries ``X-Correlation-ID``: the caller's value when it sent
one, otherwise a fresh UUID. Workflow operations mint their own correlation
ids; this header only ties log lines of one HTTP request together.
"""
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from coprocure.core.identity import new_correlation_id
from coprocure.core.logging import bind_request_correlation_id, reset_request_correlation_id

CORRELATION_HEADER = "X-Correlation-ID"


class CorrelationMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next) -> Response:
        correlation_id = request.headers.get(CORRELATION_HEADER) or new_correlation_id()

        token = bind_request_correlation_id(correlation_id)
        try:
            response = await call_next(request)
        finally:
            reset_request_correlation_id(token)

        response.headers[CORRELATION_HEADER] = correlation_id
        return response
