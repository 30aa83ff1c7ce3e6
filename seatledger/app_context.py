"""Shared application context for reusable dependencies."""
from __future__ import annotations

from typing import Any, Callable, Optional

_get_conn: Optional[Callable[[], Any]] = None
_get_request_context: Optional[Callable[..., Any]] = None
_create_access_token: Optional[Callable[..., str]] = None


def configure(
    *,
    get_conn: Callable[[], Any],
    get_request_context: Callable[..., Any],
    create_access_token: Callable[..., str],
) -> None:
    """Register application-wide dependencies required by modular routers."""

    global _get_conn
    global _get_request_context
    global _create_access_token

    _get_conn = get_conn
    _get_request_context = get_request_context
    _create_access_token = create_access_token


def _require(value: Optional[Any], name: str) -> Any:
    if value is None:
        raise RuntimeError(f"Application context has not been configured yet: {name}")
    return value


def get_conn() -> Any:
    conn_factory = _require(_get_conn, "get_conn")
    return conn_factory()


def get_request_context(*args: Any, **kwargs: Any) -> Any:
    dependency = _require(_get_request_context, "get_request_context")
    return dependency(*args, **kwargs)


def create_access_token(*, subject: str) -> str:
    factory = _require(_create_access_token, "create_access_token")
    return factory(subject=subject)
