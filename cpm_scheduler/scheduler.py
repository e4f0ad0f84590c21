from __future__ import annotations

import copy
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Callable, Dict, Hashable, List, Optional, Sequence, Tuple

from . import graph as graph_builder
from .constraints import ConstraintEnforcer
from .engine import backward_pass, forward_pass, resolve_project_end
from .errors import InvariantViolation, ScheduleError
from .models import (
    ActivityUpdate,
    ChangeEvent,
    DayValue,
    ProjectSnapshot,
    ScheduleResult,
    to_calendar,
)
from .resolver import resolve

logger = logging.getLogger(__name__)


class ScheduleState(Enum):
    IDLE = "idle"
    BUILDING = "building"
    FORWARD_PASS = "forward_pass"
    BACKWARD_PASS = "backward_pass"
    RESOLVING = "resolving"
    COMMITTED = "committed"
    FAILED = "failed"


@dataclass
class SchedulerConfig:
    """Defaults for a recompute. A snapshot may override start and end."""

    project_start: DayValue = 0
    project_end: Optional[DayValue] = None
    trace: bool = True  # Keep the calculation log in the result
    default_duration: int = 1
    max_critical_paths: Optional[int] = 100  # None enumerates every driving chain


class ScheduleStore(ABC):
    """Persistence collaborator that owns activities, edges and constraints."""

    @abstractmethod
    def load_snapshot(self, project_id: Hashable) -> ProjectSnapshot:
        """Return a snapshot that stays unchanged for the whole recompute."""

    @abstractmethod
    def apply_updates(self, project_id: Hashable, updates: Sequence[ActivityUpdate]) -> None:
        """Write every update or none of them."""


class InMemoryScheduleStore(ScheduleStore):
    def __init__(self, projects: Optional[Dict[Hashable, ProjectSnapshot]] = None):
        self.projects: Dict[Hashable, ProjectSnapshot] = dict(projects or {})
        self.commits: List[Tuple[Hashable, Tuple[ActivityUpdate, ...]]] = []
        self._lock = threading.Lock()

    def save_snapshot(self, project_id: Hashable, snapshot: ProjectSnapshot) -> None:
        with self._lock:
            self.projects[project_id] = snapshot

    def load_snapshot(self, project_id: Hashable) -> ProjectSnapshot:
        with self._lock:
            if project_id not in self.projects:
                raise KeyError(f"Unknown project '{project_id}'.")
            return copy.deepcopy(self.projects[project_id])

    def apply_updates(self, project_id: Hashable, updates: Sequence[ActivityUpdate]) -> None:
        with self._lock:
            activities = {act.id: act for act in self.projects[project_id].activities}
            missing = [u.activity_id for u in updates if u.activity_id not in activities]
            if missing:
                raise KeyError(f"Cannot write back unknown activities: {missing}")
            for update in updates:
                act = activities[update.activity_id]
                act.planned_start = update.planned_start
                act.planned_end = update.planned_end
                act.critical_path = update.critical_path
            self.commits.append((project_id, tuple(updates)))


def _resolve_origin(start: DayValue) -> Tuple[int, Optional[date]]:
    if isinstance(start, date):
        return 0, start
    return int(start), None


def compute(
    snapshot: ProjectSnapshot,
    config: Optional[SchedulerConfig] = None,
    on_state: Optional[Callable[[ScheduleState], None]] = None,
) -> Tuple[ScheduleResult, List[ActivityUpdate]]:
    """
    Run one full CPM recompute over a snapshot.

    Pure: nothing is written. Returns the result and the updates that would
    be committed for auto-scheduled activities.
    """
    config = config or SchedulerConfig()
    notify = on_state or (lambda state: None)
    trace: Optional[List[str]] = [] if config.trace else None

    start = snapshot.project_start if snapshot.project_start is not None else config.project_start
    end = snapshot.project_end if snapshot.project_end is not None else config.project_end
    project_start, origin = _resolve_origin(start)

    notify(ScheduleState.BUILDING)
    if trace is not None:
        trace.extend(["=" * 70, "CPM CALCULATION", "Precedence Diagramming Method (Activity-on-Node)", "=" * 70, ""])
    network = graph_builder.build(
        snapshot.activities,
        snapshot.dependencies,
        snapshot.constraints,
        origin=origin,
        default_duration=config.default_duration,
    )
    enforcer = ConstraintEnforcer(network, trace)

    notify(ScheduleState.FORWARD_PASS)
    early = forward_pass(network, project_start, enforcer, trace)

    notify(ScheduleState.BACKWARD_PASS)
    requested_end = graph_builder.date_offset(end, origin, "project end") if end is not None else None
    project_end = resolve_project_end(early, project_start, requested_end, enforcer)
    late = backward_pass(network, early, project_end, enforcer, trace)

    notify(ScheduleState.RESOLVING)
    result = resolve(
        network, early, late, project_start, project_end, enforcer.conflicts, trace,
        max_paths=config.max_critical_paths,
    )

    updates: List[ActivityUpdate] = []
    for node, act in enumerate(network.activities):
        if not act.is_auto_scheduled:
            continue
        sched = result.activities[act.id]
        if enforcer.is_as_late_as_possible(node):
            start_day, finish_day = sched.late_start, sched.late_finish
        else:
            start_day, finish_day = sched.early_start, sched.early_finish
        updates.append(
            ActivityUpdate(
                activity_id=act.id,
                planned_start=to_calendar(start_day, origin),
                planned_end=to_calendar(finish_day, origin),
                critical_path=sched.is_critical,
            )
        )
    return result, updates


class Scheduler:
    """
    Orchestrates build, passes and resolution for stored projects.

    At most one recompute runs per project at a time; different projects are
    independent. A recompute either commits every update or none.
    """

    def __init__(self, store: ScheduleStore, config: Optional[SchedulerConfig] = None):
        self.store = store
        self.config = config or SchedulerConfig()
        self.states: Dict[Hashable, ScheduleState] = {}
        self._locks: Dict[Hashable, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, project_id: Hashable) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(project_id, threading.Lock())

    def _transition(self, project_id: Hashable, state: ScheduleState) -> None:
        logger.debug("project %s: %s -> %s", project_id, self.state(project_id).value, state.value)
        self.states[project_id] = state

    def state(self, project_id: Hashable) -> ScheduleState:
        return self.states.get(project_id, ScheduleState.IDLE)

    def recompute(self, project_id: Hashable) -> ScheduleResult:
        """
        Recompute and commit the schedule of one project.

        Raises:
            GraphError: the network is structurally invalid; nothing written
            InvariantViolation: engine bug; nothing written
            KeyError: unknown project
        """
        with self._lock_for(project_id):
            try:
                snapshot = self.store.load_snapshot(project_id)
                result, updates = compute(
                    snapshot, self.config, lambda state: self._transition(project_id, state)
                )
            except InvariantViolation:
                self._transition(project_id, ScheduleState.FAILED)
                logger.exception("project %s: schedule invariant violated", project_id)
                raise
            except ScheduleError as exc:
                self._transition(project_id, ScheduleState.FAILED)
                logger.warning("project %s: schedule not computed: %s", project_id, exc)
                raise
            except Exception:
                self._transition(project_id, ScheduleState.FAILED)
                logger.exception("project %s: recompute failed", project_id)
                raise

            for conflict in result.conflicts:
                logger.warning("project %s: constraint conflict: %s", project_id, conflict)

            try:
                self.store.apply_updates(project_id, updates)
            except Exception:
                self._transition(project_id, ScheduleState.FAILED)
                raise
            self._transition(project_id, ScheduleState.COMMITTED)
            logger.info(
                "project %s: committed %d updates, duration %d days, %d critical activities",
                project_id,
                len(updates),
                result.total_duration,
                result.critical_path_length,
            )
            return result

    def on_activity_or_dependency_changed(self, event: ChangeEvent) -> ScheduleResult:
        """Any change can shift the whole chain, so always recompute fully."""
        logger.debug("project %s: %s %s changed", event.project_id, event.kind.value, event.entity_id)
        return self.recompute(event.project_id)
