from __future__ import annotations
from contextvars import ContextVar
from typing import Optional

# Context-local (safe for async tasks)
_current_request_id: ContextVar[Optional[str]] = ContextVar(
    "current_request_id", default=None
)


def set_request_id(request_id: str) -> None:
    _current_request_id.set(request_id)


def get_request_id() -> Optional[str]:
    return _current_request_id.get()


def clear_request_id() -> None:
    _current_request_id.set(None)
