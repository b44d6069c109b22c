from __future__ import annotations

import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional

REQUEST_ID_HEADER = "X-Request-ID"

_request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)


def generate_request_id() -> str:
    return uuid.uuid4().hex


def set_request_id(request_id: str | None) -> None:
    """Store request id in context (None to clear)."""
    _request_id_ctx.set(request_id)


def get_request_id() -> Optional[str]:
    return _request_id_ctx.get()


@contextmanager
def bound_request_id(request_id: str | None = None) -> Iterator[str]:
    """Bind a request id for the duration of the block, restoring the previous one afterwards."""
    value = request_id or generate_request_id()
    token = _request_id_ctx.set(value)
    try:
        yield value
    finally:
        _request_id_ctx.reset(token)
