"""
Dependency ranking for projections.

A target projection is ranked by walking its inputs depth-first. Every projection is
recorded at the deepest level it was reached at: a projection that is both a direct
input of the target and the input of a longer chain has to run before that chain,
so it takes the chain's depth. Projections sharing a depth form a stage, and stages
run from the deepest level up to the target.

    >>> graph = {"a": [], "b": [], "c": ["a", "b"], "d": ["c"], "e": ["b"], "f": ["c", "e"]}
    >>> rank(graph, "f").stages
    (('a', 'b'), ('c', 'e'), ('f',))

This is not necessarily the most parallel order, but it is a correct one.
"""

import logging
from collections import defaultdict
from typing import TYPE_CHECKING

from .exceptions import CycleError, StageConflictError
from .execution_plan import ExecutionPlan
from .topology import Topology

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Iterator, Mapping, Sequence

logger = logging.getLogger(__name__)


def depth_first_rank(
    dependency_map: "Mapping[str, Sequence[str]]", target: str
) -> dict[str, int]:
    """
    Map every projection reachable from `target` (itself included) to the maximum depth
    at which it was encountered.
    """
    depths: dict[str, int] = {target: 0}
    path: list[str] = [target]
    stack: list[tuple[str, int, Iterator[str]]] = [
        (target, 0, iter(dependency_map.get(target, ())))
    ]

    while stack:
        node, depth, pending = stack[-1]

        try:
            dep = next(pending)
        except StopIteration:
            stack.pop()
            path.pop()
            continue

        if dep in path:
            raise CycleError([*path[path.index(dep) :], dep])

        # already recorded at least this deep, and so is everything beneath it
        if depths.get(dep, -1) >= depth + 1:
            continue

        depths[dep] = depth + 1
        path.append(dep)
        stack.append((dep, depth + 1, iter(dependency_map.get(dep, ()))))

    return depths


def rank(dependency_map: "Mapping[str, Sequence[str]]", target: str) -> ExecutionPlan:
    """Derive the ordered execution stages needed to run `target`."""
    depths = depth_first_rank(dependency_map, target)

    by_depth: dict[int, list[str]] = defaultdict(list)
    for node, depth in depths.items():
        by_depth[depth].append(node)

    stages = tuple(
        tuple(sorted(by_depth[depth])) for depth in range(max(by_depth), -1, -1)
    )

    # sharing a depth is only a proxy for independence, so make sure of it
    topology = Topology.from_dependency_map(dependency_map, target)
    for stage in stages:
        if conflicts := topology.conflicts(stage):
            raise StageConflictError(stage, conflicts[0])

    logger.debug("Ranked '%s' into %d stages: %s", target, len(stages), stages)
    return ExecutionPlan(target=target, stages=stages)
