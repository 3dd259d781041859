"""
Transaction guard support.

A retrying transaction may run its body several times. Resolving nodes
inside such a body would re-run their side effects (and their glazes) on
every retry, so the resolver refuses unless every node involved is marked
transaction_allowed.

The engine only needs a predicate answering "is this call inside a retrying
atomic block?". The default predicate reads a ContextVar set by atomic();
hosts with their own transaction machinery pass a different probe to the
Kiln.

Example:
    def transfer():
        kiln = new_context(registry)
        ...

    run_in_transaction(transfer, retries=3)
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from typing import TypeVar

logger = logging.getLogger(__name__)

TransactionProbe = Callable[[], bool]

T = TypeVar("T")

# Nesting depth of atomic() blocks for the current thread / task
_atomic_depth: ContextVar[int] = ContextVar("kiln_atomic_depth", default=0)


class TransactionConflict(Exception):
    """Raised inside an atomic body to request a retry."""

    pass


class TransactionAborted(Exception):
    """Raised by run_in_transaction when every attempt hit a conflict."""

    def __init__(self, attempts: int, last_conflict: TransactionConflict):
        self.attempts = attempts
        self.last_conflict = last_conflict
        super().__init__(f"Transaction aborted after {attempts} attempt(s): {last_conflict}")


def in_transaction() -> bool:
    """Default probe: True while inside an atomic() block."""
    return _atomic_depth.get() > 0


@contextmanager
def atomic() -> Iterator[None]:
    """Mark the enclosed block as a retryable atomic block. Nestable."""
    token = _atomic_depth.set(_atomic_depth.get() + 1)
    try:
        yield
    finally:
        _atomic_depth.reset(token)


def run_in_transaction(body: Callable[[], T], retries: int = 3) -> T:
    """
    Run ``body`` inside atomic(), re-running it on TransactionConflict.

    Args:
        body: Zero-argument callable; may be executed more than once
        retries: Extra attempts after the first one

    Returns:
        The body's return value from the first attempt that does not conflict
    """
    attempts = retries + 1
    last_conflict: TransactionConflict | None = None
    for attempt in range(1, attempts + 1):
        try:
            with atomic():
                return body()
        except TransactionConflict as e:
            last_conflict = e
            logger.debug(
                f"Transaction conflict on attempt {attempt}/{attempts}: {e}",
                extra={"event": "transaction_retry"},
            )
    assert last_conflict is not None
    raise TransactionAborted(attempts, last_conflict)
