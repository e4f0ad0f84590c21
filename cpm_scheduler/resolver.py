from __future__ import annotations

from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Set, Tuple

from .calculation_log import log_step
from .errors import InvariantViolation
from .graph import ScheduleGraph
from .models import START, ActivityId, ActivitySchedule, ConstraintConflict, ScheduleResult


def resolve(
    graph: ScheduleGraph,
    forward: Dict[ActivityId, Tuple[int, int]],
    backward: Dict[ActivityId, Tuple[int, int]],
    project_start: int,
    project_end: int,
    conflicts: Iterable[ConstraintConflict] = (),
    trace: Optional[List[str]] = None,
    max_paths: Optional[int] = None,
) -> ScheduleResult:
    """
    Derive floats and criticality and assemble the ScheduleResult.

    At most ``max_paths`` driving chains are enumerated; None means all.

    Raises:
        InvariantViolation: start and finish floats disagree, or a float is
            negative. Either one means the passes are inconsistent.
    """
    log_step(trace, "\n\nFLOAT CALCULATIONS")
    log_step(trace, "-" * 50)

    total_float: Dict[int, int] = {}
    for node in range(len(graph)):
        act_id = graph.activity_id(node)
        es, ef = forward[act_id]
        ls, lf = backward[act_id]
        start_float = ls - es
        finish_float = lf - ef
        if start_float != finish_float:
            raise InvariantViolation(act_id, start_float, finish_float)
        if start_float < 0:
            raise InvariantViolation(act_id, start_float, finish_float, reason="Negative float")
        total_float[node] = start_float
        log_step(trace, f"\n{act_id}:")
        log_step(trace, f"  Total Float (TF) = LS - ES = {ls} - {es} = {start_float}")

    free_float = _free_floats(graph, forward, project_end)

    log_step(trace, "\n\nCRITICAL PATH IDENTIFICATION")
    log_step(trace, "-" * 50)

    critical_set: Set[int] = set()
    for node in graph.topological_order:
        if total_float[node] == 0:
            critical_set.add(node)
            log_step(trace, f"{graph.activity_id(node)}: TF = 0 -> CRITICAL")
        else:
            log_step(trace, f"{graph.activity_id(node)}: TF = {total_float[node]} -> Not critical")

    critical_path = tuple(graph.activity_id(n) for n in graph.topological_order if n in critical_set)
    critical_paths, truncated = _build_critical_paths(graph, forward, critical_set, max_paths)

    schedules: Dict[ActivityId, ActivitySchedule] = {}
    for node in range(len(graph)):
        act_id = graph.activity_id(node)
        es, ef = forward[act_id]
        ls, lf = backward[act_id]
        schedules[act_id] = ActivitySchedule(
            activity_id=act_id,
            duration=graph.durations[node],
            early_start=es,
            early_finish=ef,
            late_start=ls,
            late_finish=lf,
            total_float=total_float[node],
            free_float=free_float[node],
            is_critical=node in critical_set,
        )

    total_duration = project_end - project_start
    log_step(trace, "")
    log_step(trace, f"Project Duration: {total_duration} days")
    if critical_paths:
        log_step(trace, f"Critical Paths: {len(critical_paths)}")
        for idx, path in enumerate(critical_paths, start=1):
            log_step(trace, f"  {idx}. {' -> '.join(str(a) for a in path)}")
        if truncated:
            log_step(trace, f"Critical path enumeration stopped at {len(critical_paths)} chains")
    else:
        log_step(trace, "Critical Path: (none)")

    return ScheduleResult(
        activities=schedules,
        critical_path=critical_path,
        critical_paths=critical_paths,
        critical_paths_truncated=truncated,
        project_start=project_start,
        project_end=project_end,
        total_duration=total_duration,
        conflicts=tuple(conflicts),
        calculation_log=tuple(trace) if trace is not None else (),
        origin=graph.origin,
    )


def _early(forward: Dict[ActivityId, Tuple[int, int]], act_id: ActivityId, anchor: str) -> int:
    es, ef = forward[act_id]
    return es if anchor == START else ef


def _free_floats(
    graph: ScheduleGraph, forward: Dict[ActivityId, Tuple[int, int]], project_end: int
) -> Dict[int, int]:
    """Delay each activity can absorb without moving any successor."""
    result: Dict[int, int] = {}
    for node in range(len(graph)):
        act_id = graph.activity_id(node)
        outgoing = graph.outgoing[node]
        if not outgoing:
            result[node] = project_end - forward[act_id][1]
            continue

        candidates: List[int] = []
        for edge_idx in outgoing:
            edge = graph.edges[edge_idx]
            kind = edge.dependency_type
            succ_value = _early(forward, edge.successor_id, kind.successor_anchor)
            pred_value = _early(forward, act_id, kind.predecessor_anchor)
            candidates.append(succ_value - pred_value - edge.lag_time)
            if kind.successor_anchor == START:
                candidates.append(forward[edge.successor_id][0] - forward[act_id][0])
        result[node] = max(0, min(candidates))
    return result


def _is_critical_link(graph: ScheduleGraph, forward: Dict[ActivityId, Tuple[int, int]], edge_idx: int) -> bool:
    edge = graph.edges[edge_idx]
    kind = edge.dependency_type
    succ_value = _early(forward, edge.successor_id, kind.successor_anchor)
    pred_value = _early(forward, edge.predecessor_id, kind.predecessor_anchor)
    if succ_value == pred_value + edge.lag_time:
        return True
    if kind.successor_anchor == START:
        return forward[edge.successor_id][0] == forward[edge.predecessor_id][0]
    return False


def _build_critical_paths(
    graph: ScheduleGraph,
    forward: Dict[ActivityId, Tuple[int, int]],
    critical_set: Set[int],
    max_paths: Optional[int] = None,
) -> Tuple[Tuple[Tuple[ActivityId, ...], ...], bool]:
    """
    Enumerate driving chains through the critical subgraph, depth first.

    Walks with an explicit stack so chain length is not bounded by the
    interpreter's recursion limit. Stops after ``max_paths`` chains.

    Returns:
        Tuple of (chains, whether enumeration stopped at the cap)
    """
    if not critical_set:
        return (), False

    successors: Dict[int, List[int]] = defaultdict(list)
    incoming: Dict[int, int] = defaultdict(int)
    for node in critical_set:
        for edge_idx in graph.outgoing[node]:
            succ = graph.successor(edge_idx)
            if succ in critical_set and succ not in successors[node] and _is_critical_link(graph, forward, edge_idx):
                successors[node].append(succ)
                incoming[succ] += 1

    def sort_key(n: int) -> Tuple[int, int]:
        return forward[graph.activity_id(n)][0], n

    for node in successors:
        successors[node].sort(key=sort_key)

    start_nodes = sorted((n for n in critical_set if incoming[n] == 0), key=sort_key)
    paths: List[Tuple[ActivityId, ...]] = []

    # (node, depth) pairs; pushed in reverse so pops follow sort order
    stack: List[Tuple[int, int]] = [(n, 0) for n in reversed(start_nodes)]
    path: List[int] = []
    while stack:
        node, depth = stack.pop()
        del path[depth:]
        path.append(node)
        children = successors.get(node)
        if not children:
            if max_paths is not None and len(paths) >= max_paths:
                return tuple(paths), True
            paths.append(tuple(graph.activity_id(n) for n in path))
            continue
        stack.extend((succ, depth + 1) for succ in reversed(children))

    return tuple(paths), False
