"""Static validation of a node registry.

Resolution is lazy, so a typo in a dependency name or a cycle only shows up
when the offending node is first fired. validate_registry() checks the
declared deps of every node up front, typically from a test or from
``kiln validate``.
"""

import logging

from kiln.graph.registry import NodeRegistry

logger = logging.getLogger(__name__)


def validate_registry(registry: NodeRegistry) -> list[str]:
    """
    Validate declared dependencies across the registry.

    Checks:
    - every declared dependency is registered
    - declared dependencies contain no cycle
    - transaction_allowed nodes only declare transaction safe dependencies
    - conflicts recorded while registering

    Returns:
        List of error messages (empty = valid)
    """
    errors: list[str] = []

    for definition in registry.definitions():
        for dep in definition.deps:
            if dep not in registry:
                errors.append(f"Node '{definition.name}' depends on unknown node '{dep}'")

    for cycle in find_cycles(registry):
        errors.append(f"Dependency cycle: {' -> '.join(cycle)}")

    for definition in registry.definitions():
        if definition.is_raw or not definition.transaction_allowed:
            continue
        for dep in definition.deps:
            if dep not in registry:
                continue
            target = registry.get(dep)
            if not target.is_raw and not target.transaction_allowed:
                errors.append(
                    f"Node '{definition.name}' is transaction safe but depends on "
                    f"'{dep}', which is not"
                )

    errors.extend(registry.conflicts)
    return errors


def find_cycles(registry: NodeRegistry) -> list[list[str]]:
    """
    Find cycles among declared dependencies.

    Returns each cycle once, as a path that starts and ends on the same node.
    """
    white, grey, black = 0, 1, 2
    color = {name: white for name in registry.names()}
    cycles: list[list[str]] = []
    path: list[str] = []

    def visit(name: str) -> None:
        color[name] = grey
        path.append(name)
        for dep in registry.get(name).deps:
            if dep not in color:
                continue
            if color[dep] == grey:
                start = path.index(dep)
                cycles.append([*path[start:], dep])
            elif color[dep] == white:
                visit(dep)
        path.pop()
        color[name] = black

    for name in registry.names():
        if color[name] == white:
            visit(name)

    if cycles:
        logger.debug(f"Found {len(cycles)} dependency cycle(s)")
    return cycles
