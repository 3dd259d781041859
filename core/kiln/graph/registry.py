"""
Node registry: node name -> NodeDefinition.

Nodes are declared once at startup, usually at module import time:

    user_id = coal("user-id")

    @clay(deps=[user_id])
    def greeting(lookup):
        return "hello " + lookup(user_id)

Redefining a name replaces its slot (handy while iterating on a module).
Redefinitions and conflicting declarations are reported through the
logger and kept in ``registry.conflicts``; they never break the registry.
Once ``seal()`` is called the registry rejects any further definition.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable, Sequence
from typing import Any

from kiln.errors import RegistrationError, UnknownNode
from kiln.graph.glaze import Glaze
from kiln.graph.node import Cleanup, NodeDefinition, NodeKind, NodeRef, node_name

logger = logging.getLogger(__name__)


class NodeRegistry:
    """
    Table of node definitions shared by every kiln created from it.

    Reads are unlocked: definitions are immutable and slots are only
    replaced during static initialization.
    """

    def __init__(self, name: str = "default"):
        self.name = name
        self._nodes: dict[str, NodeDefinition] = {}
        self._sealed = False
        self._write_lock = threading.Lock()
        self.conflicts: list[str] = []

    # === DEFINITION ===

    def define_raw(self, name: str, description: str = "") -> NodeDefinition:
        """Register a raw node (coal) whose value is supplied per kiln."""
        definition = NodeDefinition(name=name, kind=NodeKind.RAW, description=description)
        return self._register(definition)

    def define_derived(
        self,
        name: str,
        deps: Iterable[NodeRef],
        compute: Callable[..., Any],
        glazes: Sequence[Glaze] = (),
        cleanup: Cleanup | None = None,
        cleanup_success: Cleanup | None = None,
        cleanup_failure: Cleanup | None = None,
        transaction_allowed: bool = False,
        description: str = "",
    ) -> NodeDefinition:
        """
        Register a derived node (clay).

        Args:
            name: Unique node name
            deps: Nodes the compute function looks up (names or definitions)
            compute: Called as compute(lookup, *args)
            glazes: Interceptors, first one outermost
            cleanup: Runs at finalize regardless of outcome
            cleanup_success: Runs at finalize on success (if no cleanup)
            cleanup_failure: Runs at finalize on failure (if no cleanup)
            transaction_allowed: Whether the node may resolve inside a transaction
            description: Free text shown by the CLI

        Returns:
            The registered NodeDefinition
        """
        if not callable(compute):
            raise RegistrationError(f"Derived node '{name}' needs a callable compute function")
        for item in glazes:
            if not isinstance(item, Glaze):
                raise RegistrationError(
                    f"Derived node '{name}' has a glaze that is not a Glaze: {item!r}"
                )

        definition = NodeDefinition(
            name=name,
            kind=NodeKind.DERIVED,
            compute=compute,
            deps=tuple(node_name(dep) for dep in deps),
            glazes=tuple(glazes),
            cleanup=cleanup,
            cleanup_success=cleanup_success,
            cleanup_failure=cleanup_failure,
            transaction_allowed=transaction_allowed,
            description=description,
        )
        if cleanup is not None and (cleanup_success is not None or cleanup_failure is not None):
            self._report(
                f"Node '{name}' declares both an unconditional cleanup and outcome-specific "
                "cleanups; only the unconditional cleanup will run"
            )
        return self._register(definition)

    def _register(self, definition: NodeDefinition) -> NodeDefinition:
        with self._write_lock:
            if self._sealed:
                raise RegistrationError(
                    f"Registry '{self.name}' is sealed; cannot define node '{definition.name}'"
                )
            previous = self._nodes.get(definition.name)
            if previous is not None:
                if previous.kind != definition.kind:
                    self._report(
                        f"Node '{definition.name}' redefined from {previous.kind} "
                        f"to {definition.kind}"
                    )
                else:
                    logger.warning(
                        f"Redefining node '{definition.name}'",
                        extra={"event": "node_redefined", "node_id": definition.name},
                    )
            self._nodes[definition.name] = definition
        logger.debug(
            f"Registered {definition.kind} node '{definition.name}'",
            extra={"event": "node_registered", "node_id": definition.name},
        )
        return definition

    def _report(self, message: str) -> None:
        self.conflicts.append(message)
        logger.warning(message, extra={"event": "registration_conflict"})

    def seal(self) -> None:
        """Refuse further definitions. Idempotent."""
        self._sealed = True

    @property
    def sealed(self) -> bool:
        return self._sealed

    # === LOOKUP ===

    def get(self, node: NodeRef) -> NodeDefinition:
        """Return the current definition for a node, raising UnknownNode if missing."""
        name = node_name(node)
        try:
            return self._nodes[name]
        except KeyError:
            raise UnknownNode(name) from None

    def __contains__(self, node: object) -> bool:
        if isinstance(node, NodeDefinition):
            node = node.name
        return node in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def names(self) -> list[str]:
        return list(self._nodes.keys())

    def definitions(self) -> list[NodeDefinition]:
        return list(self._nodes.values())

    def clear(self) -> None:
        """Drop every definition and unseal (for testing)."""
        with self._write_lock:
            self._nodes.clear()
            self.conflicts.clear()
            self._sealed = False

    # === DECORATORS ===

    def coal(self, name: str, description: str = "") -> NodeDefinition:
        return self.define_raw(name, description=description)

    def clay(
        self,
        name: str | None = None,
        deps: Iterable[NodeRef] = (),
        glazes: Sequence[Glaze] = (),
        cleanup: Cleanup | None = None,
        cleanup_success: Cleanup | None = None,
        cleanup_failure: Cleanup | None = None,
        transaction_allowed: bool = False,
        description: str = "",
    ) -> Callable[[Callable[..., Any]], NodeDefinition]:
        """
        Decorator form of define_derived.

        The node name defaults to the function name with underscores
        replaced by dashes; the decorated name is bound to the definition.
        """

        def decorator(fn: Callable[..., Any]) -> NodeDefinition:
            return self.define_derived(
                name or fn.__name__.replace("_", "-"),
                deps=deps,
                compute=fn,
                glazes=glazes,
                cleanup=cleanup,
                cleanup_success=cleanup_success,
                cleanup_failure=cleanup_failure,
                transaction_allowed=transaction_allowed,
                description=description or (fn.__doc__ or "").strip(),
            )

        return decorator


# Process-wide registry used by the module-level helpers
_DEFAULT_REGISTRY = NodeRegistry()


def default_registry() -> NodeRegistry:
    return _DEFAULT_REGISTRY


def define_raw(name: str, description: str = "") -> NodeDefinition:
    return _DEFAULT_REGISTRY.define_raw(name, description=description)


def define_derived(name: str, deps: Iterable[NodeRef], compute: Callable[..., Any], **kwargs):
    return _DEFAULT_REGISTRY.define_derived(name, deps, compute, **kwargs)


def coal(name: str, description: str = "") -> NodeDefinition:
    return _DEFAULT_REGISTRY.coal(name, description=description)


def clay(name: str | None = None, **kwargs) -> Callable[[Callable[..., Any]], NodeDefinition]:
    return _DEFAULT_REGISTRY.clay(name, **kwargs)
