"""
Kiln - the per-invocation context.

A Kiln holds everything one request (or one operation) needs:
- supplied raw values (coals)
- memoized entries for every node resolved so far
- the stack of cleanup actions acquired by those nodes

It is created fresh for each invocation and closed exactly once by
finalize(). After that every supply or resolution raises ContextClosed.

Thread safety: a re-entrant lock is held for the whole of a top-level
resolution. A second thread resolving against the same kiln waits and then
sees the memoized value, so no node body runs twice and nobody observes a
half-resolved entry.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Any

from kiln.config import get_guard_transactions
from kiln.errors import (
    CleanupFailed,
    ContextClosed,
    InputAlreadyConsumed,
    KilnError,
    NotARawNode,
)
from kiln.graph.node import NodeDefinition, NodeRef, Outcome, node_name
from kiln.graph.registry import NodeRegistry, default_registry
from kiln.runtime.transaction import TransactionProbe, in_transaction
from kiln.schemas.firing import CleanupRecord, FiringSummary, NodeRecord, NodeStatus

logger = logging.getLogger(__name__)


class EntryState(StrEnum):
    """Lifecycle of one memoized entry."""

    UNRESOLVED = "unresolved"
    RESOLVING = "resolving"
    RESOLVED = "resolved"
    FAILED = "failed"


EntryKey = tuple[str, tuple[Any, ...]]


@dataclass
class ResolvedEntry:
    """Memoized outcome of resolving one node (with one argument tuple) in one kiln."""

    node: NodeDefinition
    args: tuple[Any, ...] = ()
    state: EntryState = EntryState.UNRESOLVED
    value: Any = None
    error: BaseException | None = None
    latency_ms: int = 0

    @property
    def key(self) -> EntryKey:
        return (self.node.name, self.args)


class Kiln:
    """
    One invocation's working memory.

    Example:
        kiln = Kiln(registry)
        kiln.supply("user-id", "alice")
        try:
            value = fire(kiln, "greeting")
        except Exception:
            kiln.finalize(Outcome.FAILURE)
            raise
        kiln.finalize(Outcome.SUCCESS)
    """

    def __init__(
        self,
        registry: NodeRegistry | None = None,
        transaction_probe: TransactionProbe | None = None,
        guard_transactions: bool | None = None,
        context_id: str | None = None,
    ):
        """
        Create an open kiln.

        Args:
            registry: Node definitions to resolve against (default registry if omitted)
            transaction_probe: Predicate for "inside a retrying transaction"
            guard_transactions: Enable the transaction guard (config default if omitted)
            context_id: Identifier used in logs and summaries (random if omitted)
        """
        self.registry = registry if registry is not None else default_registry()
        self.id = context_id or uuid.uuid4().hex
        self.transaction_probe = transaction_probe or in_transaction
        self.guard_transactions = (
            get_guard_transactions() if guard_transactions is None else guard_transactions
        )

        self._entries: dict[EntryKey, ResolvedEntry] = {}
        self._supplied: dict[str, Any] = {}
        self._cleanups: list[ResolvedEntry] = []  # acquisition order
        self._resolving: list[EntryKey] = []  # current resolution path
        self._lock = threading.RLock()

        self._closed = False
        self._outcome: Outcome | None = None
        self._started_at = datetime.now()
        self._finalized_at: datetime | None = None
        self._cleanup_records: list[CleanupRecord] = []

        logger.debug(f"Created kiln {self.id}", extra={"event": "kiln_created"})

    # === STATE ===

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def outcome(self) -> Outcome | None:
        return self._outcome

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    def check_open(self) -> None:
        if self._closed:
            raise ContextClosed(self.id)

    # === INPUTS ===

    def supply(self, node: NodeRef, value: Any) -> None:
        """
        Set the value of a raw node for this kiln.

        Raises:
            ContextClosed: the kiln was finalized
            UnknownNode: the node is not registered
            NotARawNode: the node is derived
            InputAlreadyConsumed: the raw node was already resolved here
        """
        name = node_name(node)
        with self._lock:
            self.check_open()
            definition = self.registry.get(name)
            if not definition.is_raw:
                raise NotARawNode(name)
            entry = self._entries.get((name, ()))
            if entry is not None and entry.state == EntryState.RESOLVED:
                raise InputAlreadyConsumed(name)
            self._supplied[name] = value

    def supply_many(self, inputs: Mapping[NodeRef, Any]) -> None:
        for node, value in inputs.items():
            self.supply(node, value)

    def is_supplied(self, node: NodeRef) -> bool:
        return node_name(node) in self._supplied

    def supplied_value(self, name: str) -> tuple[bool, Any]:
        """Return (found, value) for a raw node."""
        if name in self._supplied:
            return True, self._supplied[name]
        return False, None

    # === ENTRIES (used by the resolver) ===

    def entry(self, definition: NodeDefinition, args: tuple[Any, ...]) -> ResolvedEntry:
        """Get or create the entry for a node call. Caller must hold the lock."""
        key = (definition.name, args)
        existing = self._entries.get(key)
        if existing is None:
            existing = ResolvedEntry(node=definition, args=args)
            self._entries[key] = existing
        return existing

    def peek(self, node: NodeRef, *args: Any) -> ResolvedEntry | None:
        return self._entries.get((node_name(node), args))

    def is_resolved(self, node: NodeRef, *args: Any) -> bool:
        entry = self.peek(node, *args)
        return entry is not None and entry.state == EntryState.RESOLVED

    @property
    def resolution_path(self) -> list[EntryKey]:
        return self._resolving

    def register_cleanup(self, entry: ResolvedEntry) -> None:
        """Track a resolved entry whose node declared cleanup. Caller must hold the lock."""
        self._cleanups.append(entry)

    @property
    def pending_cleanups(self) -> int:
        return len(self._cleanups)

    # === FINALIZE ===

    def finalize(self, outcome: Outcome | str) -> None:
        """
        Close the kiln and run every pending cleanup once.

        Cleanups run most recently acquired first. For each node the
        unconditional cleanup runs if declared, else the variant matching
        ``outcome``. A failing cleanup does not stop the others; all failures
        are raised together afterwards as CleanupFailed. A cleanup raising a
        BaseException (KeyboardInterrupt, SystemExit, ...) does not stop the
        others either; the first such exception is re-raised once every
        cleanup was attempted.

        Raises:
            ContextClosed: the kiln was already finalized
            CleanupFailed: at least one cleanup raised
        """
        outcome = Outcome(outcome)
        with self._lock:
            self.check_open()
            if self._resolving:
                raise KilnError(f"Kiln {self.id} cannot be finalized while a node is resolving")
            self._closed = True
            self._outcome = outcome
            pending = list(reversed(self._cleanups))
            self._cleanups.clear()

        failures: list[tuple[str, BaseException]] = []
        interrupt: BaseException | None = None
        for entry in pending:
            selected = entry.node.cleanup_for(outcome)
            if selected is None:
                continue
            variant, action = selected
            try:
                action(entry.value)
            except BaseException as e:
                if isinstance(e, Exception):
                    failures.append((entry.node.name, e))
                elif interrupt is None:
                    interrupt = e
                self._cleanup_records.append(
                    CleanupRecord(
                        node_id=entry.node.name, variant=variant, success=False, error=str(e)
                    )
                )
                logger.error(
                    f"Cleanup '{variant}' for node '{entry.node.name}' failed: {e}",
                    exc_info=True,
                    extra={"event": "cleanup_failed", "node_id": entry.node.name},
                )
            else:
                self._cleanup_records.append(
                    CleanupRecord(node_id=entry.node.name, variant=variant)
                )

        self._finalized_at = datetime.now()
        logger.info(
            f"Kiln {self.id} finalized as {outcome} "
            f"({len(self._cleanup_records)} cleanup(s), {len(failures)} failed)",
            extra={"event": "kiln_finalized"},
        )
        if interrupt is not None:
            if failures:
                interrupt.add_note(str(CleanupFailed(failures, outcome)))
            raise interrupt
        if failures:
            raise CleanupFailed(failures, outcome)

    # === REPORTING ===

    def summary(self) -> FiringSummary:
        """Snapshot of every entry and cleanup so far."""
        with self._lock:
            nodes = []
            for entry in self._entries.values():
                if entry.state == EntryState.UNRESOLVED:
                    continue
                nodes.append(
                    NodeRecord(
                        node_id=entry.node.name,
                        args=list(entry.args),
                        status=NodeStatus(entry.state.value),
                        error=str(entry.error) if entry.error is not None else None,
                        latency_ms=entry.latency_ms,
                    )
                )
            return FiringSummary(
                context_id=self.id,
                outcome=self._outcome.value if self._outcome is not None else None,
                started_at=self._started_at,
                finalized_at=self._finalized_at,
                nodes=nodes,
                cleanups=list(self._cleanup_records),
            )

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"Kiln(id={self.id[:8]}, {state}, entries={len(self._entries)})"


def new_context(registry: NodeRegistry | None = None, **kwargs: Any) -> Kiln:
    """Create a fresh kiln for one invocation."""
    return Kiln(registry=registry, **kwargs)
