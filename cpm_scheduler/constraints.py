from __future__ import annotations

from itertools import combinations
from typing import Dict, List, Optional, Tuple

from .calculation_log import log_step
from .graph import BoundConstraint, ScheduleGraph
from .models import ConstraintConflict, ConstraintType

FORWARD = "forward"
BACKWARD = "backward"
VALIDATION = "validation"

_INF = float("inf")


class ConstraintEnforcer:
    """
    Applies date constraints while the passes compute each bound.

    A constraint that tightens the dependency-derived bound is applied and
    propagates; one that would loosen it is recorded as a conflict and the
    dependency-derived bound is kept. Conflicts never abort a recompute.
    """

    def __init__(self, graph: ScheduleGraph, log: Optional[List[str]] = None):
        self.graph = graph
        self.conflicts: List[ConstraintConflict] = []
        self._trace = log
        self.active: Dict[int, List[BoundConstraint]] = self._validate()

    def _start_window(self, node: int, bc: BoundConstraint) -> Tuple[float, float]:
        duration = self.graph.durations[node]
        ctype = bc.constraint_type
        if ctype == ConstraintType.MUST_START_ON:
            return bc.day, bc.day
        if ctype == ConstraintType.MUST_FINISH_ON:
            return bc.day - duration, bc.day - duration
        if ctype == ConstraintType.START_NO_EARLIER_THAN:
            return bc.day, _INF
        if ctype == ConstraintType.FINISH_NO_LATER_THAN:
            return -_INF, bc.day - duration
        return -_INF, _INF

    def _consistent(self, node: int, a: BoundConstraint, b: BoundConstraint) -> bool:
        kinds = {a.constraint_type, b.constraint_type}
        if kinds == {ConstraintType.AS_SOON_AS_POSSIBLE, ConstraintType.AS_LATE_AS_POSSIBLE}:
            return False
        lo_a, hi_a = self._start_window(node, a)
        lo_b, hi_b = self._start_window(node, b)
        return max(lo_a, lo_b) <= min(hi_a, hi_b)

    def _validate(self) -> Dict[int, List[BoundConstraint]]:
        """Drop both members of every mutually inconsistent pair."""
        active: Dict[int, List[BoundConstraint]] = {}
        for node, bound in self.graph.constraints.items():
            partners: Dict[int, List[BoundConstraint]] = {}
            for (i, a), (j, b) in combinations(enumerate(bound), 2):
                if not self._consistent(node, a, b):
                    partners.setdefault(i, []).append(b)
                    partners.setdefault(j, []).append(a)

            kept = []
            for i, bc in enumerate(bound):
                if i not in partners:
                    kept.append(bc)
                    continue
                others = ", ".join(str(p.source) for p in partners[i])
                self._record(
                    node, bc, VALIDATION, None,
                    f"{bc.source} is inconsistent with {others}; both ignored",
                )
            active[node] = kept
        return active

    def _record(
        self,
        node: Optional[int],
        bc: Optional[BoundConstraint],
        pass_name: str,
        computed: Optional[int],
        reason: str,
    ) -> ConstraintConflict:
        conflict = ConstraintConflict(
            activity_id=self.graph.activity_id(node) if node is not None else None,
            constraint=bc.source if bc is not None else None,
            pass_name=pass_name,
            computed_bound=computed,
            requested=bc.day if bc is not None else None,
            reason=reason,
        )
        self.conflicts.append(conflict)
        log_step(self._trace, f"  CONFLICT: {reason}")
        return conflict

    def check(
        self,
        node: int,
        bc: BoundConstraint,
        computed_bound: int,
        pass_name: str,
        early: Optional[Tuple[int, int]] = None,
    ) -> Tuple[int, Optional[ConstraintConflict]]:
        """
        Check one constraint against a freshly computed bound.

        Forward: ``computed_bound`` is the earliest start allowed by the
        dependencies. Backward: it is the latest finish allowed by the
        successors, and ``early`` carries the activity's (ES, EF).

        Returns:
            Tuple of (bound to use, conflict or None)
        """
        duration = self.graph.durations[node]
        ctype = bc.constraint_type
        day = bc.day

        if pass_name == FORWARD:
            es = computed_bound
            if ctype == ConstraintType.START_NO_EARLIER_THAN:
                return max(es, day), None
            if ctype in (ConstraintType.MUST_START_ON, ConstraintType.MUST_FINISH_ON):
                wanted = day if ctype == ConstraintType.MUST_START_ON else day - duration
                if wanted >= es:
                    return wanted, None
                return es, self._record(
                    node, bc, pass_name, es,
                    f"{bc.source} requires start {wanted} but dependencies allow no earlier than {es}",
                )
            return es, None

        lf = computed_bound
        ef = early[1]
        if ctype == ConstraintType.FINISH_NO_LATER_THAN:
            if day >= lf:
                return lf, None
            if day >= ef:
                return day, None
            return lf, self._record(
                node, bc, pass_name, lf,
                f"{bc.source} deadline precedes early finish {ef}",
            )
        if ctype in (ConstraintType.MUST_START_ON, ConstraintType.MUST_FINISH_ON):
            wanted = day + duration if ctype == ConstraintType.MUST_START_ON else day
            if wanted > lf:
                return lf, self._record(
                    node, bc, pass_name, lf,
                    f"{bc.source} requires finish {wanted} but successors allow no later than {lf}",
                )
            if wanted >= ef:
                return wanted, None
            # Already reported by the forward pass.
            return lf, None
        return lf, None

    def apply_forward(self, node: int, early_start: int) -> int:
        for bc in self.active.get(node, []):
            bounded, conflict = self.check(node, bc, early_start, FORWARD)
            if conflict is None and bounded != early_start:
                log_step(self._trace, f"  {bc.source}: ES tightened {early_start} -> {bounded}")
            early_start = bounded
        return early_start

    def apply_backward(self, node: int, late_finish: int, early: Tuple[int, int]) -> int:
        for bc in self.active.get(node, []):
            bounded, conflict = self.check(node, bc, late_finish, BACKWARD, early)
            if conflict is None and bounded != late_finish:
                log_step(self._trace, f"  {bc.source}: LF tightened {late_finish} -> {bounded}")
            late_finish = bounded
        return late_finish

    def report_project_end(self, requested: int, computed: int) -> ConstraintConflict:
        conflict = ConstraintConflict(
            activity_id=None,
            constraint=None,
            pass_name=BACKWARD,
            computed_bound=computed,
            requested=requested,
            reason=f"project end {requested} precedes computed early finish {computed}",
        )
        self.conflicts.append(conflict)
        log_step(self._trace, f"  CONFLICT: {conflict.reason}")
        return conflict

    def is_as_late_as_possible(self, node: int) -> bool:
        return any(
            bc.constraint_type == ConstraintType.AS_LATE_AS_POSSIBLE
            for bc in self.active.get(node, [])
        )
