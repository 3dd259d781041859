"""
Kiln - lazy, memoized, per-invocation dependency resolution.

Declare the graph once:

    from kiln import clay, coal, fire, firing

    user_id = coal("user-id")

    @clay(deps=[user_id])
    def greeting(lookup):
        return "hello " + lookup(user_id)

Then run one kiln per request:

    with firing(inputs={"user-id": "alice"}) as kiln:
        fire(kiln, greeting)  # "hello alice"
"""

from kiln.config import KilnConfig
from kiln.errors import (
    CleanupFailed,
    ComputationFailed,
    ContextClosed,
    CyclicDependency,
    GlazeProtocolError,
    InputAlreadyConsumed,
    KilnError,
    NotARawNode,
    RegistrationError,
    TransactionNotAllowed,
    UnknownNode,
    UnsuppliedInput,
)
from kiln.graph import (
    Glaze,
    GlazeCall,
    NodeDefinition,
    NodeKind,
    NodeRegistry,
    Outcome,
    clay,
    coal,
    default_registry,
    define_derived,
    define_raw,
    glaze,
    log_glaze,
    validate_registry,
)
from kiln.runtime import (
    FiringResult,
    Kiln,
    KilnHandler,
    Lookup,
    atomic,
    fire,
    firing,
    in_transaction,
    new_context,
    resolve,
    run_in_transaction,
)

__all__ = [
    # Registry
    "NodeRegistry",
    "NodeDefinition",
    "NodeKind",
    "default_registry",
    "define_raw",
    "define_derived",
    "coal",
    "clay",
    "validate_registry",
    # Glaze
    "Glaze",
    "GlazeCall",
    "glaze",
    "log_glaze",
    # Runtime
    "Kiln",
    "Lookup",
    "Outcome",
    "new_context",
    "resolve",
    "fire",
    "firing",
    "FiringResult",
    "KilnHandler",
    "atomic",
    "in_transaction",
    "run_in_transaction",
    # Config
    "KilnConfig",
    # Errors
    "KilnError",
    "RegistrationError",
    "UnknownNode",
    "NotARawNode",
    "InputAlreadyConsumed",
    "UnsuppliedInput",
    "CyclicDependency",
    "ContextClosed",
    "TransactionNotAllowed",
    "ComputationFailed",
    "CleanupFailed",
    "GlazeProtocolError",
]
