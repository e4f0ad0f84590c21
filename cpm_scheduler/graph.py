from __future__ import annotations

from collections import defaultdict, deque
from dataclasses import dataclass
from datetime import date
from typing import Dict, Iterable, List, Optional, Tuple

import networkx as nx

from .errors import ContradictoryEdges, CycleDetected, DanglingReference, InvalidActivity, InvalidDate
from .models import (
    Activity,
    ActivityId,
    Constraint,
    ConstraintType,
    DayValue,
    Dependency,
    to_offset,
)


@dataclass(frozen=True)
class BoundConstraint:
    """A constraint with its date resolved to a day offset."""

    source: Constraint
    day: Optional[int]
    implicit: bool = False  # Derived from a manually pinned activity

    @property
    def constraint_type(self) -> ConstraintType:
        return self.source.constraint_type


class ScheduleGraph:
    """
    Activity network indexed by position.

    Activities live in an arena (``activities``) and every adjacency list holds
    integer indices into ``edges``, so successor/predecessor lookup is O(1)
    and no activity holds a reference to another.
    """

    def __init__(
        self,
        activities: List[Activity],
        durations: List[int],
        edges: List[Dependency],
        constraints: Dict[int, List[BoundConstraint]],
        origin: Optional[date] = None,
    ):
        self.activities = activities
        self.durations = durations
        self.edges = edges
        self.constraints = constraints
        self.origin = origin
        self.index: Dict[ActivityId, int] = {act.id: i for i, act in enumerate(activities)}

        self.incoming: List[List[int]] = [[] for _ in activities]
        self.outgoing: List[List[int]] = [[] for _ in activities]
        for edge_idx, edge in enumerate(edges):
            self.outgoing[self.index[edge.predecessor_id]].append(edge_idx)
            self.incoming[self.index[edge.successor_id]].append(edge_idx)

        self.topological_order: List[int] = self._topological_order()

    def __len__(self) -> int:
        return len(self.activities)

    def activity_id(self, node: int) -> ActivityId:
        return self.activities[node].id

    def predecessor(self, edge_idx: int) -> int:
        return self.index[self.edges[edge_idx].predecessor_id]

    def successor(self, edge_idx: int) -> int:
        return self.index[self.edges[edge_idx].successor_id]

    def constraints_for(self, node: int) -> List[BoundConstraint]:
        return self.constraints.get(node, [])

    def _topological_order(self) -> List[int]:
        """Kahn's algorithm. Residual in-degrees mean the network has a cycle."""
        in_degree = [len(edges) for edges in self.incoming]
        queue = deque(node for node, degree in enumerate(in_degree) if degree == 0)
        order: List[int] = []

        while queue:
            node = queue.popleft()
            order.append(node)
            for edge_idx in self.outgoing[node]:
                succ = self.successor(edge_idx)
                in_degree[succ] -= 1
                if in_degree[succ] == 0:
                    queue.append(succ)

        if len(order) != len(self.activities):
            residual = {node for node, degree in enumerate(in_degree) if degree > 0}
            raise CycleDetected(self._extract_cycle(residual))
        return order

    def _extract_cycle(self, residual: set) -> List[ActivityId]:
        # Every residual node keeps at least one residual predecessor, so
        # walking predecessors must revisit a node.
        node = min(residual)
        walk: List[int] = []
        seen: Dict[int, int] = {}
        while node not in seen:
            seen[node] = len(walk)
            walk.append(node)
            node = next(
                self.predecessor(edge_idx)
                for edge_idx in self.incoming[node]
                if self.predecessor(edge_idx) in residual
            )
        cycle = walk[seen[node]:]
        cycle.reverse()
        cycle.append(cycle[0])
        return [self.activity_id(n) for n in cycle]

    def to_networkx(self) -> nx.MultiDiGraph:
        """Export the network as a networkx multigraph keyed by activity id."""
        G = nx.MultiDiGraph()
        for node, act in enumerate(self.activities):
            G.add_node(act.id, duration=self.durations[node], name=act.name)
        for edge in self.edges:
            lag_str = f"+{edge.lag_time}" if edge.lag_time >= 0 else str(edge.lag_time)
            G.add_edge(
                edge.predecessor_id,
                edge.successor_id,
                rel_type=edge.dependency_type.code,
                lag=edge.lag_time,
                label=f"{edge.dependency_type.code}({lag_str})",
            )
        return G


def build(
    activities: Iterable[Activity],
    edges: Iterable[Dependency],
    constraints: Iterable[Constraint] = (),
    origin: Optional[date] = None,
    default_duration: int = 1,
) -> ScheduleGraph:
    """
    Validate the inputs and build a ScheduleGraph.

    Only active edges and constraints are used. Manually pinned activities
    with a planned start become an implicit must-start-on constraint.

    Raises:
        InvalidActivity: duplicate id or negative duration
        DanglingReference: edge or constraint naming an unknown activity
        ContradictoryEdges: same pair and type with different lags
        InvalidDate: calendar date given for a project without a calendar start
        CycleDetected: the edge set is not acyclic
    """
    arena: List[Activity] = []
    durations: List[int] = []
    known: Dict[ActivityId, int] = {}
    for act in activities:
        if act.id in known:
            raise InvalidActivity(act.id, "duplicate activity id.")
        duration = act.effective_duration(default_duration)
        if duration < 0:
            raise InvalidActivity(act.id, "duration must be non-negative.")
        known[act.id] = len(arena)
        arena.append(act)
        durations.append(duration)

    kept: List[Dependency] = []
    seen: Dict[Tuple[ActivityId, ActivityId, str], Dependency] = {}
    for edge in edges:
        if not edge.is_active:
            continue
        for ref in (edge.predecessor_id, edge.successor_id):
            if ref not in known:
                raise DanglingReference(edge, ref)
        key = (edge.predecessor_id, edge.successor_id, edge.dependency_type.value)
        if key in seen:
            if seen[key].lag_time != edge.lag_time:
                raise ContradictoryEdges(seen[key], edge)
            continue
        seen[key] = edge
        kept.append(edge)

    bound: Dict[int, List[BoundConstraint]] = defaultdict(list)
    for constraint in constraints:
        if not constraint.is_active:
            continue
        if constraint.activity_id not in known:
            raise DanglingReference(constraint, constraint.activity_id)
        day = None
        if constraint.constraint_date is not None:
            day = date_offset(constraint.constraint_date, origin, constraint)
        bound[known[constraint.activity_id]].append(BoundConstraint(constraint, day))

    for node, act in enumerate(arena):
        if act.is_auto_scheduled or act.planned_start is None:
            continue
        pin = Constraint(act.id, ConstraintType.MUST_START_ON, act.planned_start, priority="high")
        bound[node].append(BoundConstraint(pin, date_offset(act.planned_start, origin, act), implicit=True))

    return ScheduleGraph(arena, durations, kept, dict(bound), origin)


def date_offset(value: DayValue, origin: Optional[date], owner: object) -> int:
    """Day offset of ``value``, raising InvalidDate where it cannot be placed."""
    try:
        return to_offset(value, origin)
    except (TypeError, ValueError) as exc:
        raise InvalidDate(owner, value, str(exc)) from exc
