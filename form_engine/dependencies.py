"""
Dependency resolution for computed fields.

Computed expressions reference each other through ``computed.<name>``.
This module extracts those references and orders the computed fields
so that every field is evaluated after the fields it depends on.
"""

import re
import logging
from typing import Dict, List, Mapping

from .exceptions import ComputedDependencyError

logger = logging.getLogger(__name__)

COMPUTED_REFERENCE_PATTERN = re.compile(r"\bcomputed\.([A-Za-z_$][A-Za-z0-9_$]*)")


def find_computed_references(expression: str) -> List[str]:
    """
    Find computed field names referenced by an expression.

    Args:
        expression: Expression text

    Returns:
        Referenced names in order of first appearance
    """
    names = []
    for match in COMPUTED_REFERENCE_PATTERN.finditer(expression or ""):
        if match.group(1) not in names:
            names.append(match.group(1))
    return names


def build_dependency_graph(expressions: Mapping[str, str]) -> Dict[str, List[str]]:
    """Map each computed name to the known computed names it references."""
    return {
        name: [ref for ref in find_computed_references(expression) if ref in expressions]
        for name, expression in expressions.items()
    }


def computation_order(expressions: Mapping[str, str]) -> List[str]:
    """
    Order computed fields so dependencies come before dependents.

    Independent fields keep their declaration order.

    Args:
        expressions: Computed name -> expression, in declaration order

    Returns:
        Ordered list of computed names

    Raises:
        ComputedDependencyError: If the references form a cycle
    """
    graph = build_dependency_graph(expressions)
    ordered: List[str] = []
    visited = set()
    visiting: List[str] = []

    def visit(name: str) -> None:
        if name in visited:
            return
        if name in visiting:
            cycle = visiting[visiting.index(name):] + [name]
            logger.error(f"Circular dependency detected in computed fields: {cycle}")
            raise ComputedDependencyError(cycle)

        visiting.append(name)
        for dependency in graph[name]:
            visit(dependency)
        visiting.pop()

        visited.add(name)
        ordered.append(name)

    for name in expressions:
        visit(name)

    return ordered
