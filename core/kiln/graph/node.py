"""
Node definitions - the statically declared units of value in a kiln graph.

Two kinds of node exist:
- raw ("coal"): the value is supplied by the driver for each kiln
- derived ("clay"): the value is computed from other nodes on demand

Definitions are immutable. Redefining a node replaces the registry slot
with a new NodeDefinition; it never mutates the old one.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from kiln.graph.glaze import Glaze


class NodeKind(StrEnum):
    """Whether a node is supplied or computed."""

    RAW = "raw"  # Coal: supplied into the kiln
    DERIVED = "derived"  # Clay: computed by a function of other nodes


class Outcome(StrEnum):
    """How a kiln ended. Selects which cleanup variant runs."""

    SUCCESS = "success"
    FAILURE = "failure"


Cleanup = Callable[[Any], Any]


@dataclass(frozen=True)
class NodeDefinition:
    """
    A named node in the graph.

    The compute function is called as ``compute(lookup, *args)`` where
    ``lookup`` resolves other nodes in the same kiln. ``deps`` lists the
    nodes the compute function is expected to look up; lookups stay lazy,
    the declaration feeds static validation and the transaction guard.
    """

    name: str
    kind: NodeKind
    compute: Callable[..., Any] | None = None
    deps: tuple[str, ...] = ()
    glazes: tuple[Glaze, ...] = ()
    cleanup: Cleanup | None = None
    cleanup_success: Cleanup | None = None
    cleanup_failure: Cleanup | None = None
    transaction_allowed: bool = False
    description: str = ""

    @property
    def is_raw(self) -> bool:
        return self.kind == NodeKind.RAW

    @property
    def has_cleanup(self) -> bool:
        return any(
            fn is not None for fn in (self.cleanup, self.cleanup_success, self.cleanup_failure)
        )

    def cleanup_for(self, outcome: Outcome) -> tuple[str, Cleanup] | None:
        """
        Pick the cleanup variant to run for an outcome.

        The unconditional cleanup wins when declared; otherwise the
        success/failure specific one. Returns (variant name, function).
        """
        if self.cleanup is not None:
            return "cleanup", self.cleanup
        if outcome == Outcome.SUCCESS and self.cleanup_success is not None:
            return "cleanup_success", self.cleanup_success
        if outcome == Outcome.FAILURE and self.cleanup_failure is not None:
            return "cleanup_failure", self.cleanup_failure
        return None


NodeRef = str | NodeDefinition


def node_name(node: NodeRef) -> str:
    """Return the registry name for a node reference (name or definition)."""
    if isinstance(node, NodeDefinition):
        return node.name
    if isinstance(node, str):
        return node
    raise TypeError(f"Expected a node name or NodeDefinition, got {type(node).__name__}")
