from __future__ import annotations

from typing import Dict, List, Optional, Tuple

from .calculation_log import log_step
from .constraints import ConstraintEnforcer
from .graph import ScheduleGraph
from .models import START, ActivityId


def forward_pass(
    graph: ScheduleGraph,
    project_start: int = 0,
    enforcer: Optional[ConstraintEnforcer] = None,
    trace: Optional[List[str]] = None,
) -> Dict[ActivityId, Tuple[int, int]]:
    """
    Forward pass calculation to determine Early Start (ES) and Early Finish (EF).

    FS/SS edges bound the successor's start, FF/SF edges bound its finish.
    A negative lag on a start-anchored edge never pulls the successor ahead
    of its predecessor's start, and nothing starts before ``project_start``.
    """
    enforcer = enforcer or ConstraintEnforcer(graph, trace)
    log_step(trace, "FORWARD PASS (Calculating ES and EF)")
    log_step(trace, "-" * 50)

    es: Dict[int, int] = {}
    ef: Dict[int, int] = {}

    for node in graph.topological_order:
        act_id = graph.activity_id(node)
        duration = graph.durations[node]
        incoming = graph.incoming[node]

        if not incoming:
            log_step(trace, f"\n{act_id} (no predecessors):")
            log_step(trace, f"  ES = Project Start = {project_start}")
            early_start = project_start
        else:
            log_step(trace, f"\n{act_id} (predecessors: {', '.join(str(graph.edges[e].predecessor_id) for e in incoming)}):")
            candidates = [project_start]
            for edge_idx in incoming:
                edge = graph.edges[edge_idx]
                pred = graph.predecessor(edge_idx)
                kind = edge.dependency_type
                anchor = es[pred] if kind.predecessor_anchor == START else ef[pred]
                bound = anchor + edge.lag_time

                if kind.successor_anchor == START:
                    candidate = max(bound, es[pred])
                    log_step(
                        trace,
                        f"  From {edge.predecessor_id} ({kind.code}, lag={edge.lag_time}): "
                        f"ES >= {anchor} + {edge.lag_time} = {bound}"
                        + (f", floored at ES({edge.predecessor_id}) = {candidate}" if candidate != bound else ""),
                    )
                else:
                    candidate = bound - duration
                    log_step(
                        trace,
                        f"  From {edge.predecessor_id} ({kind.code}, lag={edge.lag_time}): "
                        f"EF >= {anchor} + {edge.lag_time} = {bound} -> ES >= {candidate}",
                    )
                candidates.append(candidate)
            early_start = max(candidates)

        early_start = enforcer.apply_forward(node, early_start)
        es[node] = early_start
        ef[node] = early_start + duration
        log_step(trace, f"  -> ES = {es[node]}")
        log_step(trace, f"  -> EF = ES + Duration = {es[node]} + {duration} = {ef[node]}")

    if ef:
        log_step(trace, f"\nProject Finish = max(all EF values) = {max(ef.values())}")

    return {graph.activity_id(node): (es[node], ef[node]) for node in range(len(graph))}


def resolve_project_end(
    forward: Dict[ActivityId, Tuple[int, int]],
    project_start: int,
    requested: Optional[int] = None,
    enforcer: Optional[ConstraintEnforcer] = None,
) -> int:
    """The requested project end, or the latest EF when absent or infeasible."""
    latest = max((finish for _, finish in forward.values()), default=project_start)
    if requested is None:
        return latest
    if requested < latest:
        if enforcer is not None:
            enforcer.report_project_end(requested, latest)
        return latest
    return requested


def backward_pass(
    graph: ScheduleGraph,
    forward: Dict[ActivityId, Tuple[int, int]],
    project_end: Optional[int] = None,
    enforcer: Optional[ConstraintEnforcer] = None,
    trace: Optional[List[str]] = None,
) -> Dict[ActivityId, Tuple[int, int]]:
    """
    Backward pass calculation to determine Late Start (LS) and Late Finish (LF).

    Mirrors the forward pass in reverse topological order. ``project_end``
    defaults to the latest early finish.
    """
    enforcer = enforcer or ConstraintEnforcer(graph, trace)
    if project_end is None:
        project_end = resolve_project_end(forward, 0)

    log_step(trace, "\n\nBACKWARD PASS (Calculating LS and LF)")
    log_step(trace, "-" * 50)

    ls: Dict[int, int] = {}
    lf: Dict[int, int] = {}

    for node in reversed(graph.topological_order):
        act_id = graph.activity_id(node)
        duration = graph.durations[node]
        outgoing = graph.outgoing[node]

        if not outgoing:
            log_step(trace, f"\n{act_id} (no successors):")
            log_step(trace, f"  LF = Project Finish = {project_end}")
            late_finish = project_end
        else:
            log_step(trace, f"\n{act_id} (successors: {', '.join(str(graph.edges[e].successor_id) for e in outgoing)}):")
            candidates = [project_end]
            for edge_idx in outgoing:
                edge = graph.edges[edge_idx]
                succ = graph.successor(edge_idx)
                kind = edge.dependency_type
                anchor = ls[succ] if kind.successor_anchor == START else lf[succ]
                bound = anchor - edge.lag_time

                if kind.predecessor_anchor == START:
                    candidate = bound + duration
                    log_step(
                        trace,
                        f"  To {edge.successor_id} ({kind.code}, lag={edge.lag_time}): "
                        f"LS <= {anchor} - {edge.lag_time} = {bound} -> LF <= {candidate}",
                    )
                else:
                    candidate = bound
                    log_step(
                        trace,
                        f"  To {edge.successor_id} ({kind.code}, lag={edge.lag_time}): "
                        f"LF <= {anchor} - {edge.lag_time} = {bound}",
                    )
                if kind.successor_anchor == START:
                    candidate = min(candidate, ls[succ] + duration)
                candidates.append(candidate)
            late_finish = min(candidates)

        late_finish = enforcer.apply_backward(node, late_finish, forward[act_id])
        lf[node] = late_finish
        ls[node] = late_finish - duration
        log_step(trace, f"  -> LF = {lf[node]}")
        log_step(trace, f"  -> LS = LF - Duration = {lf[node]} - {duration} = {ls[node]}")

    return {graph.activity_id(node): (ls[node], lf[node]) for node in range(len(graph))}
