"""Graph structures: node definitions, glazes, the registry and validation."""

from kiln.graph.glaze import Glaze, GlazeCall, glaze, log_glaze, run_chain
from kiln.graph.node import NodeDefinition, NodeKind, NodeRef, Outcome, node_name
from kiln.graph.registry import (
    NodeRegistry,
    clay,
    coal,
    default_registry,
    define_derived,
    define_raw,
)
from kiln.graph.validator import find_cycles, validate_registry

__all__ = [
    # Node
    "NodeDefinition",
    "NodeKind",
    "NodeRef",
    "Outcome",
    "node_name",
    # Glaze
    "Glaze",
    "GlazeCall",
    "glaze",
    "log_glaze",
    "run_chain",
    # Registry
    "NodeRegistry",
    "default_registry",
    "define_raw",
    "define_derived",
    "coal",
    "clay",
    # Validation
    "validate_registry",
    "find_cycles",
]
