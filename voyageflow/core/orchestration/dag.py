"""Dependency-graph helpers shared by the generator, validator and executor."""

from typing import (
    Dict,
    List,
    Optional,
    Sequence,
)

from voyageflow.core.orchestration.schema import Stage


def find_cycle(stages: Sequence[Stage]) -> Optional[List[str]]:
    """Find a dependency cycle.

    Args:
        stages: Plan stages; edges run from a stage to each of its dependencies.

    Returns:
        Optional[List[str]]: The cycle as a closed path (first id repeated at
        the end), or None when the graph is acyclic.
    """
    graph = {s.stage_id: [d for d in s.depends_on] for s in stages}
    visiting: List[str] = []
    done = set()

    def visit(node: str) -> Optional[List[str]]:
        if node in visiting:
            return visiting[visiting.index(node) :] + [node]
        if node in done or node not in graph:
            return None
        visiting.append(node)
        for dep in graph[node]:
            cycle = visit(dep)
            if cycle:
                return cycle
        visiting.pop()
        done.add(node)
        return None

    for stage in stages:
        cycle = visit(stage.stage_id)
        if cycle:
            return cycle
    return None


def compute_levels(stages: Sequence[Stage]) -> Dict[str, int]:
    """Assign each stage its dependency level.

    Level 0 has no dependencies; level k is one more than the highest level
    among a stage's dependencies. Unknown dependencies are ignored and a
    back-edge inside a cycle counts as level 0.
    """
    graph = {s.stage_id: s.depends_on for s in stages}
    levels: Dict[str, int] = {}
    in_progress = set()

    def level_of(node: str) -> int:
        if node in levels:
            return levels[node]
        if node in in_progress or node not in graph:
            return -1
        in_progress.add(node)
        level = 1 + max((level_of(dep) for dep in graph[node]), default=-1)
        in_progress.discard(node)
        levels[node] = level
        return level

    for stage in stages:
        level_of(stage.stage_id)
    return levels


def group_by_level(stages: Sequence[Stage]) -> List[List[Stage]]:
    """Stages grouped by level, each group sorted by ``order`` then id."""
    levels = compute_levels(stages)
    groups: Dict[int, List[Stage]] = {}
    for stage in stages:
        groups.setdefault(levels[stage.stage_id], []).append(stage)
    return [sorted(groups[k], key=lambda s: (s.order, s.stage_id)) for k in sorted(groups)]
