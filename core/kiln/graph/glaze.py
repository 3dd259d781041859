"""
Glazes - interceptors wrapped around a derived node's computation.

A glaze is declared on the node that uses it, so the full set of
cross-cutting behavior for a node is visible at its definition site.
There is no global weaving: a node runs exactly the glazes it lists.

Chain order follows declaration order. For glazes [A, B] on node N:

    A (before) -> B (before) -> N.compute -> B (after) -> A (after)

Example:
    @glaze()
    def require_logged_on(call):
        if call.lookup("current-user") is None:
            raise AccessDenied("login required")
        return call.proceed()

    @clay(deps=["current-user"], glazes=[require_logged_on])
    def inbox(lookup):
        ...
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from kiln.errors import GlazeProtocolError

if TYPE_CHECKING:
    from kiln.graph.node import NodeDefinition
    from kiln.runtime.resolver import Lookup

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Glaze:
    """A named interceptor. ``operation`` receives a GlazeCall."""

    name: str
    operation: Callable[[GlazeCall], Any]
    description: str = ""


class GlazeCall:
    """
    One glaze's view of the node call it wraps.

    Attributes:
        node: Definition of the node being computed
        args: Arguments the node was looked up with
        lookup: Resolves other nodes in the same kiln
    """

    def __init__(
        self,
        glaze: Glaze,
        node: NodeDefinition,
        args: tuple[Any, ...],
        lookup: Lookup,
        continuation: Callable[[], Any],
    ):
        self.glaze = glaze
        self.node = node
        self.args = args
        self.lookup = lookup
        self._continuation = continuation
        self._proceeded = False

    @property
    def proceeded(self) -> bool:
        return self._proceeded

    def proceed(self) -> Any:
        """Run the rest of the chain (inner glazes, then the compute function)."""
        if self._proceeded:
            raise GlazeProtocolError(self.glaze.name, self.node.name)
        self._proceeded = True
        return self._continuation()


def run_chain(
    node: NodeDefinition,
    args: tuple[Any, ...],
    lookup: Lookup,
    body: Callable[[], Any],
    glazes: Sequence[Glaze] | None = None,
) -> Any:
    """
    Run ``body`` wrapped in the node's glazes, first glaze outermost.

    Args:
        node: Node being computed
        args: Node arguments, exposed to each glaze
        lookup: Lookup bound to the current kiln
        body: Zero-argument callable producing the node's value
        glazes: Override for node.glazes

    Returns:
        Whatever the outermost glaze returns (the body's value unless a
        glaze short-circuits or transforms it)
    """
    chain = tuple(node.glazes if glazes is None else glazes)

    def stage(index: int) -> Any:
        if index == len(chain):
            return body()
        current = chain[index]
        call = GlazeCall(
            glaze=current,
            node=node,
            args=args,
            lookup=lookup,
            continuation=lambda: stage(index + 1),
        )
        return current.operation(call)

    return stage(0)


def glaze(name: str | None = None, description: str = "") -> Callable[[Callable], Glaze]:
    """
    Decorator turning a function of GlazeCall into a Glaze.

    The glaze name defaults to the function name with underscores
    replaced by dashes.
    """

    def decorator(fn: Callable[[GlazeCall], Any]) -> Glaze:
        glaze_name = name or fn.__name__.replace("_", "-")
        doc = (fn.__doc__ or "").strip()
        return Glaze(name=glaze_name, operation=fn, description=description or doc)

    return decorator


def _log_operation(call: GlazeCall) -> Any:
    node_id = call.node.name
    logger.info(
        f"Entering node '{node_id}'",
        extra={"event": "node_enter", "node_id": node_id},
    )
    start = time.perf_counter()
    try:
        result = call.proceed()
    except Exception:
        latency_ms = int((time.perf_counter() - start) * 1000)
        logger.warning(
            f"Node '{node_id}' raised",
            extra={"event": "node_error", "node_id": node_id, "latency_ms": latency_ms},
        )
        raise
    latency_ms = int((time.perf_counter() - start) * 1000)
    logger.info(
        f"Leaving node '{node_id}'",
        extra={"event": "node_exit", "node_id": node_id, "latency_ms": latency_ms},
    )
    return result


log_glaze = Glaze(
    name="log",
    operation=_log_operation,
    description="Log entry, exit and failure of the wrapped node",
)
