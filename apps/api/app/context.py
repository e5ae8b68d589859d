"""Per-request values shared by log records, audit rows and background jobs."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar, Token

correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)
dealership_id_var: ContextVar[str | None] = ContextVar("dealership_id", default=None)


def set_correlation_id(value: str | None) -> Token[str | None]:
    return correlation_id_var.set(value)


def reset_correlation_id(token: Token[str | None]) -> None:
    correlation_id_var.reset(token)


def get_correlation_id() -> str | None:
    return correlation_id_var.get()


def get_dealership_id() -> str | None:
    return dealership_id_var.get()


@contextmanager
def bound_request(correlation_id: str | None, dealership_id: str | None = None) -> Iterator[None]:
    """Bind both values for the duration of a request or job, restoring the previous ones after."""

    correlation_token = correlation_id_var.set(correlation_id)
    dealership_token = dealership_id_var.set(dealership_id)
    try:
        yield
    finally:
        dealership_id_var.reset(dealership_token)
        correlation_id_var.reset(correlation_token)
