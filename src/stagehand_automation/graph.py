from __future__ import annotations

import heapq
from typing import Mapping, Sequence

from .errors import CycleDetected


def topological_order(
    ids: Sequence[str],
    depends_on: Mapping[str, Sequence[str]],
    *,
    reverse: bool = False,
) -> list[str]:
    """Order ``ids`` so every id follows its dependencies.

    Ties are broken by position in ``ids``, so the same input always yields
    the same order. Dependencies outside ``ids`` are ignored. ``reverse``
    returns dependents before their dependencies.
    """

    position = {rid: idx for idx, rid in enumerate(ids)}
    dependents: dict[str, list[str]] = {rid: [] for rid in ids}
    in_degree: dict[str, int] = {}
    for rid in ids:
        deps = {dep for dep in depends_on.get(rid, ()) if dep in position}
        in_degree[rid] = len(deps)
        for dep in deps:
            dependents[dep].append(rid)

    ready = [(position[rid], rid) for rid in ids if in_degree[rid] == 0]
    heapq.heapify(ready)
    ordered: list[str] = []
    while ready:
        _, current = heapq.heappop(ready)
        ordered.append(current)
        for node in dependents[current]:
            in_degree[node] -= 1
            if in_degree[node] == 0:
                heapq.heappush(ready, (position[node], node))

    if len(ordered) != len(ids):
        raise CycleDetected(rid for rid in ids if in_degree[rid] > 0)
    if reverse:
        ordered.reverse()
    return ordered
