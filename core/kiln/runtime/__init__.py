"""Runtime: kilns, resolution, lifecycle and the transaction guard."""

from kiln.runtime.context import EntryState, Kiln, ResolvedEntry, new_context
from kiln.runtime.lifecycle import FiringResult, KilnHandler, fire, firing
from kiln.runtime.resolver import Lookup, resolve, unsafe_for_transaction
from kiln.runtime.transaction import (
    TransactionAborted,
    TransactionConflict,
    atomic,
    in_transaction,
    run_in_transaction,
)

__all__ = [
    "EntryState",
    "Kiln",
    "ResolvedEntry",
    "new_context",
    "Lookup",
    "resolve",
    "unsafe_for_transaction",
    "fire",
    "firing",
    "FiringResult",
    "KilnHandler",
    "atomic",
    "in_transaction",
    "run_in_transaction",
    "TransactionConflict",
    "TransactionAborted",
]
