"""
Log context for bulk-add requests.

Every log record carries the request id and, once a route has loaded or
created one, the bulk-add batch id. Worker tasks spawned while resolving a
batch copy the current context, so their records are tagged as well.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

REQUEST_ID_HEADER = "X-Request-Id"

request_id_var: ContextVar[str] = ContextVar("request_id", default="-")
batch_id_var: ContextVar[str] = ContextVar("batch_id", default="-")


def get_request_id() -> str:
    return request_id_var.get()


@contextmanager
def bind_batch_id(batch_id: str) -> Iterator[None]:
    token = batch_id_var.set(batch_id)
    try:
        yield
    finally:
        batch_id_var.reset(token)


class RequestIdLogFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get()
        record.batch_id = batch_id_var.get()
        return True


class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid4().hex[:12]

        token = request_id_var.set(request_id)
        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(token)

        response.headers[REQUEST_ID_HEADER] = request_id
        return response
