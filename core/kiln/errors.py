"""
Errors raised by the kiln engine.

Every engine error derives from KilnError so drivers can tell engine
failures apart from whatever the application raises. Node computation
failures are wrapped in ComputationFailed, which keeps the node name and the
original exception (also chained as __cause__).
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any


class KilnError(Exception):
    """Base class for all kiln engine errors."""

    pass


class RegistrationError(KilnError):
    """Raised when a node cannot be registered (e.g. the registry is sealed)."""

    pass


class UnknownNode(KilnError, KeyError):
    """Raised when a node name is not present in the registry."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unknown node: '{name}'")

    def __str__(self) -> str:
        return self.args[0]


class NotARawNode(KilnError):
    """Raised when a value is supplied for a derived node."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Node '{name}' is derived; only raw nodes can be supplied")


class InputAlreadyConsumed(KilnError):
    """Raised when a raw node is supplied after it was already resolved."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Raw node '{name}' was already resolved in this kiln")


class UnsuppliedInput(KilnError):
    """Raised when a raw node is resolved before a value was supplied."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Raw node '{name}' was resolved before being supplied")


class CyclicDependency(KilnError):
    """Raised when a node is looked up again while it is still resolving."""

    def __init__(self, name: str, path: Sequence[str] = ()):
        self.name = name
        self.path = list(path)
        chain = " -> ".join([*self.path, name]) if self.path else name
        super().__init__(f"Cyclic dependency on node '{name}': {chain}")


class ContextClosed(KilnError):
    """Raised when a finalized kiln is used again."""

    def __init__(self, context_id: str):
        self.context_id = context_id
        super().__init__(f"Kiln {context_id} is closed")


class TransactionNotAllowed(KilnError):
    """Raised when resolution is attempted inside a retrying transaction."""

    def __init__(self, name: str, offending: Sequence[str] = ()):
        self.name = name
        self.offending = list(offending) or [name]
        super().__init__(
            f"Node '{name}' cannot be resolved inside a transaction "
            f"(not transaction safe: {', '.join(self.offending)})"
        )


class ComputationFailed(KilnError):
    """Raised when a node's compute function or one of its glazes raises."""

    def __init__(self, node: str, cause: BaseException):
        self.node = node
        self.cause = cause
        super().__init__(f"Node '{node}' failed: {type(cause).__name__}: {cause}")


class CleanupFailed(KilnError):
    """
    Raised by finalize after every cleanup was attempted and at least one failed.

    Attributes:
        failures: (node name, exception) pairs in the order cleanups ran
        outcome: the outcome the kiln was finalized with
    """

    def __init__(self, failures: Sequence[tuple[str, BaseException]], outcome: Any):
        self.failures = list(failures)
        self.outcome = outcome
        names = ", ".join(name for name, _ in self.failures)
        super().__init__(
            f"{len(self.failures)} cleanup(s) failed while finalizing as {outcome}: {names}"
        )


class GlazeProtocolError(KilnError):
    """Raised when a glaze calls proceed() more than once."""

    def __init__(self, glaze: str, node: str):
        self.glaze = glaze
        self.node = node
        super().__init__(f"Glaze '{glaze}' on node '{node}' called proceed() more than once")
