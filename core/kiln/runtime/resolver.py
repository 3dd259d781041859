"""
Resolution engine: resolve(kiln, node, *args) -> value.

Resolution is demand driven. A derived node's compute function receives a
Lookup bound to the kiln and pulls each dependency when it needs it, so
only the nodes an entry point actually touches are ever computed, and each
of them once per kiln.

Entry states:
    UNRESOLVED -> RESOLVING -> RESOLVED | FAILED

Seeing a RESOLVING entry from inside its own resolution is a cycle.
FAILED entries re-raise their recorded error instead of recomputing.
"""

from __future__ import annotations

import logging
import time
from typing import Any

from kiln.errors import (
    ComputationFailed,
    CyclicDependency,
    KilnError,
    TransactionNotAllowed,
    UnsuppliedInput,
)
from kiln.graph.glaze import run_chain
from kiln.graph.node import NodeDefinition, NodeRef
from kiln.graph.registry import NodeRegistry
from kiln.runtime.context import EntryState, Kiln, ResolvedEntry

logger = logging.getLogger(__name__)


class Lookup:
    """
    Capability to resolve nodes in one kiln.

    Handed to compute functions and glazes in place of any ambient
    "current context":

        @clay(deps=["user-id"])
        def greeting(lookup):
            return "hello " + lookup("user-id")
    """

    __slots__ = ("_kiln",)

    def __init__(self, kiln: Kiln):
        self._kiln = kiln

    @property
    def kiln(self) -> Kiln:
        return self._kiln

    def __call__(self, node: NodeRef, *args: Any) -> Any:
        return resolve(self._kiln, node, *args)

    def __repr__(self) -> str:
        return f"Lookup({self._kiln!r})"


def resolve(kiln: Kiln, node: NodeRef, *args: Any) -> Any:
    """
    Resolve a node in a kiln, computing it on first use.

    Args:
        kiln: The invocation's kiln
        node: Node name or definition (always re-read from the registry)
        *args: Node arguments; must be hashable, part of the memo key

    Returns:
        The node's value

    Raises:
        ContextClosed, UnknownNode, TransactionNotAllowed, CyclicDependency,
        UnsuppliedInput, ComputationFailed
    """
    with kiln.lock:
        kiln.check_open()
        definition = kiln.registry.get(node)
        if definition.is_raw and args:
            raise TypeError(f"Raw node '{definition.name}' takes no arguments")
        _guard_transaction(kiln, definition)

        entry = kiln.entry(definition, tuple(args))
        if entry.state == EntryState.RESOLVED:
            return entry.value
        if entry.state == EntryState.FAILED:
            assert entry.error is not None
            raise entry.error
        if entry.state == EntryState.RESOLVING:
            path = [name for name, _ in kiln.resolution_path]
            raise CyclicDependency(definition.name, path)

        return _compute(kiln, entry)


def _compute(kiln: Kiln, entry: ResolvedEntry) -> Any:
    definition = entry.node
    entry.state = EntryState.RESOLVING
    kiln.resolution_path.append(entry.key)
    start = time.perf_counter()
    acquired = False
    try:
        if definition.is_raw:
            found, value = kiln.supplied_value(definition.name)
            if not found:
                # Not memoized: supplying later and resolving again must work
                entry.state = EntryState.UNRESOLVED
                raise UnsuppliedInput(definition.name)
        else:
            value, acquired = _run_derived(kiln, entry)
    except KilnError as e:
        if entry.state != EntryState.UNRESOLVED:
            _record_failure(entry, e, start)
        raise
    except Exception as e:
        failure = ComputationFailed(definition.name, e)
        _record_failure(entry, failure, start)
        raise failure from e
    except BaseException:
        # Interrupted rather than failed: a later resolve computes it again
        entry.state = EntryState.UNRESOLVED
        raise
    finally:
        kiln.resolution_path.pop()

    entry.value = value
    entry.state = EntryState.RESOLVED
    entry.latency_ms = int((time.perf_counter() - start) * 1000)
    if definition.has_cleanup and acquired:
        kiln.register_cleanup(entry)
    logger.debug(
        f"Resolved node '{definition.name}'",
        extra={
            "event": "node_resolved",
            "node_id": definition.name,
            "latency_ms": entry.latency_ms,
        },
    )
    return value


def _run_derived(kiln: Kiln, entry: ResolvedEntry) -> tuple[Any, bool]:
    """
    Run the glaze chain around the compute function.

    Returns (value, acquired). ``acquired`` is False when a glaze
    short-circuited before the compute function ran; such a value was not
    produced by the node, so its cleanup is not registered.
    """
    definition = entry.node
    assert definition.compute is not None
    lookup = Lookup(kiln)
    ran = False

    def body() -> Any:
        nonlocal ran
        ran = True
        return definition.compute(lookup, *entry.args)

    value = run_chain(definition, entry.args, lookup, body)
    return value, ran


def _record_failure(entry: ResolvedEntry, error: BaseException, start: float) -> None:
    entry.state = EntryState.FAILED
    entry.error = error
    entry.latency_ms = int((time.perf_counter() - start) * 1000)
    logger.debug(
        f"Node '{entry.node.name}' failed: {error}",
        extra={"event": "node_failed", "node_id": entry.node.name},
    )


# === TRANSACTION GUARD ===


def _guard_transaction(kiln: Kiln, definition: NodeDefinition) -> None:
    if not kiln.guard_transactions or not kiln.transaction_probe():
        return
    offending = unsafe_for_transaction(kiln.registry, definition)
    if offending:
        raise TransactionNotAllowed(definition.name, offending)


def unsafe_for_transaction(registry: NodeRegistry, definition: NodeDefinition) -> list[str]:
    """
    Names of nodes reachable through declared deps that are not transaction safe.

    Raw nodes are always safe. Unknown dependency names count as unsafe.
    """
    offending: list[str] = []
    seen: set[str] = set()
    stack = [definition.name]
    while stack:
        name = stack.pop()
        if name in seen:
            continue
        seen.add(name)
        if name not in registry:
            offending.append(name)
            continue
        current = registry.get(name)
        if current.is_raw:
            continue
        if not current.transaction_allowed:
            offending.append(name)
        stack.extend(current.deps)
    return sorted(offending)
