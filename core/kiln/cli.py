"""
Command-line interface for kiln.

Each command imports a module that declares nodes into the default
registry, then inspects or fires them.

Usage:
    kiln list message_board.nodes
    kiln validate message_board.nodes
    kiln fire message_board.nodes greeting --input '{"user-id": "alice"}'
"""

import argparse
import importlib
import json
import sys
from pathlib import Path

from kiln.config import KilnConfig
from kiln.graph.registry import NodeRegistry, default_registry
from kiln.graph.validator import validate_registry
from kiln.observability import configure_logging
from kiln.runtime.lifecycle import KilnHandler


def _configure_paths() -> None:
    """Make modules in the current directory and ./examples importable."""
    cwd = Path.cwd()
    for candidate in (cwd, cwd / "examples"):
        candidate_str = str(candidate)
        if candidate.is_dir() and candidate_str not in sys.path:
            sys.path.insert(0, candidate_str)


def _load_registry(module_name: str) -> NodeRegistry:
    importlib.import_module(module_name)
    return default_registry()


def cmd_list(args: argparse.Namespace) -> int:
    registry = _load_registry(args.module)
    for definition in sorted(registry.definitions(), key=lambda d: d.name):
        line = f"{definition.name:<32} {definition.kind:<8}"
        if definition.deps:
            line += f" deps={','.join(definition.deps)}"
        if definition.glazes:
            line += f" glazes={','.join(g.name for g in definition.glazes)}"
        if definition.transaction_allowed:
            line += " tx-safe"
        if definition.has_cleanup:
            line += " cleanup"
        print(line)
    return 0


def cmd_validate(args: argparse.Namespace) -> int:
    registry = _load_registry(args.module)
    errors = validate_registry(registry)
    if not errors:
        print(f"OK: {len(registry)} node(s)")
        return 0
    for error in errors:
        print(f"ERROR: {error}", file=sys.stderr)
    return 1


def cmd_fire(args: argparse.Namespace) -> int:
    registry = _load_registry(args.module)
    try:
        inputs = json.loads(args.input) if args.input else {}
    except json.JSONDecodeError as e:
        print(f"ERROR: --input is not valid JSON: {e}", file=sys.stderr)
        return 2
    if not isinstance(inputs, dict):
        print("ERROR: --input must be a JSON object", file=sys.stderr)
        return 2

    handler = KilnHandler(targets=args.nodes, registry=registry, config=args.config)
    result = handler.handle(inputs)
    output = {
        "success": result.success,
        "values": result.values,
        "failed_node": result.failed_node,
        "error": str(result.error) if result.error else None,
        "cleanup_errors": [f"{name}: {err}" for name, err in result.cleanup_errors],
    }
    print(json.dumps(output, indent=2, default=str))
    return 0 if result.is_clean else 1


def main(argv: list[str] | None = None) -> int:
    _configure_paths()
    config = KilnConfig()

    parser = argparse.ArgumentParser(
        prog="kiln",
        description="Kiln - inspect and fire per-request dependency graphs",
    )
    parser.add_argument("--log-level", default=config.log_level, help="Log level")
    parser.add_argument(
        "--log-format",
        default=config.log_format,
        choices=["json", "human", "auto"],
        help="Log output format",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    list_parser = subparsers.add_parser("list", help="List nodes declared by a module")
    list_parser.add_argument("module", help="Module that declares nodes")
    list_parser.set_defaults(func=cmd_list)

    validate_parser = subparsers.add_parser("validate", help="Validate declared dependencies")
    validate_parser.add_argument("module", help="Module that declares nodes")
    validate_parser.set_defaults(func=cmd_validate)

    fire_parser = subparsers.add_parser("fire", help="Fire nodes in a fresh kiln")
    fire_parser.add_argument("module", help="Module that declares nodes")
    fire_parser.add_argument("nodes", nargs="+", help="Nodes to fire, in order")
    fire_parser.add_argument("--input", help="Raw node values as a JSON object")
    fire_parser.set_defaults(func=cmd_fire)

    args = parser.parse_args(argv)
    args.config = config
    configure_logging(level=args.log_level, format=args.log_format)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
