"""Shared fixtures for kiln tests."""

import logging

import pytest

from kiln import config
from kiln.graph.registry import NodeRegistry, default_registry
from kiln.observability import (
    HumanReadableFormatter,
    StructuredFormatter,
    clear_trace_context,
)


@pytest.fixture(autouse=True)
def _isolate_global_state(monkeypatch, tmp_path):
    """Reset the default registry, trace context and configuration between tests."""
    for var in ("KILN_LOG_LEVEL", "KILN_LOG_FORMAT", "KILN_GUARD_TRANSACTIONS"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setattr(config, "KILN_CONFIG_FILE", tmp_path / "no-config.json")
    default_registry().clear()
    clear_trace_context()
    yield
    default_registry().clear()
    clear_trace_context()


@pytest.fixture
def registry() -> NodeRegistry:
    return NodeRegistry(name="test")


@pytest.fixture
def restore_root_logger():
    """Undo configure_logging() changes to the root logger."""
    root = logging.getLogger()
    level = root.level
    yield root
    for handler in list(root.handlers):
        if isinstance(handler.formatter, (StructuredFormatter, HumanReadableFormatter)):
            root.removeHandler(handler)
    root.setLevel(level)
