"""
Lifecycle - driving a kiln from creation to finalize.

The driver's job for each request:
1. Create a kiln
2. Supply the raw inputs
3. Fire the nodes that answer the request (action, then rendering, ...)
4. Finalize with SUCCESS if every firing worked, FAILURE otherwise

Step 4 always runs. firing() and KilnHandler both guarantee it.

Example:
    handler = KilnHandler(targets=["edit-message-action!", "response"])
    result = handler.handle({"request": request})
    if not result.success:
        render_error(result.failed_node, result.error)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

from kiln.config import KilnConfig
from kiln.errors import CleanupFailed, ComputationFailed, KilnError
from kiln.graph.node import NodeRef, Outcome, node_name
from kiln.graph.registry import NodeRegistry, default_registry
from kiln.observability import set_trace_context
from kiln.runtime.context import Kiln
from kiln.runtime.resolver import resolve
from kiln.schemas.firing import FiringSummary

logger = logging.getLogger(__name__)


def fire(kiln: Kiln, node: NodeRef, *args: Any) -> Any:
    """Resolve a node as an entry point of the invocation."""
    name = node_name(node)
    logger.debug(f"Firing node '{name}'", extra={"event": "node_fired", "node_id": name})
    return resolve(kiln, node, *args)


@contextmanager
def firing(
    registry: NodeRegistry | None = None,
    inputs: Mapping[NodeRef, Any] | None = None,
    **kiln_options: Any,
) -> Iterator[Kiln]:
    """
    Create a kiln, yield it, and finalize it on the way out.

    Finalizes with SUCCESS when the block completes and FAILURE when it
    raises. On the failure path a CleanupFailed from finalize is logged and
    attached to the original exception as a note; the original is re-raised.
    """
    kiln = Kiln(registry=registry, **kiln_options)
    set_trace_context(context_id=kiln.id)
    try:
        if inputs:
            kiln.supply_many(inputs)
        yield kiln
    except BaseException as e:
        _finalize_after_error(kiln, e)
        raise
    else:
        kiln.finalize(Outcome.SUCCESS)


@dataclass
class FiringResult:
    """Result of handling one request through a KilnHandler."""

    success: bool
    values: dict[str, Any] = field(default_factory=dict)
    error: BaseException | None = None
    failed_node: str | None = None
    cleanup_errors: list[tuple[str, BaseException]] = field(default_factory=list)
    summary: FiringSummary | None = None

    @property
    def is_clean(self) -> bool:
        """True only if the request succeeded and every cleanup succeeded."""
        return self.success and not self.cleanup_errors

    def value(self, node: NodeRef) -> Any:
        return self.values[node_name(node)]


class KilnHandler:
    """
    Generic request driver: one kiln per call to handle().

    The handler seals its registry (unless configured otherwise) so no node
    can be redefined underneath concurrent requests.
    """

    def __init__(
        self,
        targets: Sequence[NodeRef],
        registry: NodeRegistry | None = None,
        config: KilnConfig | None = None,
        transaction_probe: Any = None,
    ):
        """
        Args:
            targets: Nodes fired in order for each request
            registry: Node definitions (default registry if omitted)
            config: Runtime configuration (loaded from disk/env if omitted)
            transaction_probe: Override for the transaction predicate
        """
        self.registry = registry if registry is not None else default_registry()
        self.config = config or KilnConfig()
        self.targets = [node_name(t) for t in targets]
        self.transaction_probe = transaction_probe
        for target in self.targets:
            self.registry.get(target)
        if self.config.seal_registry:
            self.registry.seal()

    def new_kiln(self) -> Kiln:
        return Kiln(
            registry=self.registry,
            transaction_probe=self.transaction_probe,
            guard_transactions=self.config.guard_transactions,
        )

    def handle(self, inputs: Mapping[NodeRef, Any] | None = None) -> FiringResult:
        """
        Run one request: supply inputs, fire every target, finalize.

        Engine and node failures are returned in the FiringResult rather
        than raised; the kiln is finalized as FAILURE in that case. Anything
        else (KeyboardInterrupt, SystemExit, ...) also finalizes the kiln
        as FAILURE and is then re-raised.
        """
        kiln = self.new_kiln()
        set_trace_context(context_id=kiln.id)
        result = FiringResult(success=True)

        try:
            kiln.supply_many(inputs or {})
            for target in self.targets:
                result.values[target] = fire(kiln, target)
        except KilnError as e:
            result.success = False
            result.error = e
            result.failed_node = _failed_node(e)
            logger.warning(
                f"Request failed in kiln {kiln.id}: {e}",
                extra={"event": "request_failed", "node_id": result.failed_node},
            )
        except BaseException as e:
            _finalize_after_error(kiln, e)
            raise

        outcome = Outcome.SUCCESS if result.success else Outcome.FAILURE
        try:
            kiln.finalize(outcome)
        except CleanupFailed as e:
            result.cleanup_errors = e.failures

        result.summary = kiln.summary()
        return result

    async def handle_async(self, inputs: Mapping[NodeRef, Any] | None = None) -> FiringResult:
        """handle() run in a worker thread, for asyncio servers."""
        return await asyncio.to_thread(self.handle, inputs)


def _finalize_after_error(kiln: Kiln, error: BaseException) -> None:
    """Finalize as FAILURE; a CleanupFailed is logged and noted on ``error``."""
    try:
        kiln.finalize(Outcome.FAILURE)
    except CleanupFailed as cleanup_error:
        logger.error(
            f"Cleanup failed while finalizing kiln {kiln.id} after an error: {cleanup_error}",
            extra={"event": "cleanup_failed"},
        )
        error.add_note(str(cleanup_error))


def _failed_node(error: KilnError) -> str | None:
    if isinstance(error, ComputationFailed):
        return error.node
    return getattr(error, "name", None)
