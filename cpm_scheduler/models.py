from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from enum import Enum
from typing import Dict, Hashable, List, Optional, Tuple, Union

ActivityId = Hashable
DayValue = Union[int, date]

START = "start"
FINISH = "finish"


class DependencyType(Enum):
    """Precedence relationship between a predecessor and a successor."""

    FINISH_TO_START = "finish_to_start"
    START_TO_START = "start_to_start"
    FINISH_TO_FINISH = "finish_to_finish"
    START_TO_FINISH = "start_to_finish"

    @property
    def code(self) -> str:
        return _DEPENDENCY_CODES[self]

    @property
    def predecessor_anchor(self) -> str:
        """Boundary of the predecessor that drives the relationship."""
        return START if self in (DependencyType.START_TO_START, DependencyType.START_TO_FINISH) else FINISH

    @property
    def successor_anchor(self) -> str:
        """Boundary of the successor that the relationship constrains."""
        return START if self in (DependencyType.FINISH_TO_START, DependencyType.START_TO_START) else FINISH

    @classmethod
    def parse(cls, value: Union[str, "DependencyType"]) -> "DependencyType":
        """Accept an enum member, a stored value (finish_to_start) or a code (FS)."""
        if isinstance(value, cls):
            return value
        text = str(value).strip()
        for member in cls:
            if text.lower() == member.value or text.upper() == member.code:
                return member
        raise ValueError(f"Invalid dependency type '{value}'. Must be one of: FS, SS, FF, SF.")


_DEPENDENCY_CODES = {
    DependencyType.FINISH_TO_START: "FS",
    DependencyType.START_TO_START: "SS",
    DependencyType.FINISH_TO_FINISH: "FF",
    DependencyType.START_TO_FINISH: "SF",
}


class ConstraintType(Enum):
    MUST_START_ON = "must_start_on"
    MUST_FINISH_ON = "must_finish_on"
    START_NO_EARLIER_THAN = "start_no_earlier_than"
    FINISH_NO_LATER_THAN = "finish_no_later_than"
    AS_SOON_AS_POSSIBLE = "as_soon_as_possible"
    AS_LATE_AS_POSSIBLE = "as_late_as_possible"

    @property
    def is_dated(self) -> bool:
        return self not in (ConstraintType.AS_SOON_AS_POSSIBLE, ConstraintType.AS_LATE_AS_POSSIBLE)

    @classmethod
    def parse(cls, value: Union[str, "ConstraintType"]) -> "ConstraintType":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Invalid constraint type '{value}'.") from None


@dataclass
class Activity:
    """Represents a project activity as read from the store."""

    id: ActivityId
    duration: Optional[int] = None
    planned_start: Optional[DayValue] = None
    planned_end: Optional[DayValue] = None
    buffer_time: int = 0
    is_auto_scheduled: bool = True
    critical_path: bool = False
    name: str = ""

    def effective_duration(self, default: int = 1) -> int:
        """Explicit duration, else the planned span, else ``default``."""
        if self.duration is not None:
            return int(self.duration)
        if self.planned_start is not None and self.planned_end is not None:
            return day_span(self.planned_start, self.planned_end)
        return default


@dataclass
class Dependency:
    """Represents a precedence relationship between two activities."""

    predecessor_id: ActivityId
    successor_id: ActivityId
    dependency_type: DependencyType = DependencyType.FINISH_TO_START
    lag_time: int = 0  # Negative values model lead time
    is_active: bool = True

    def __post_init__(self) -> None:
        self.dependency_type = DependencyType.parse(self.dependency_type)
        self.lag_time = int(self.lag_time or 0)

    def __str__(self) -> str:
        lag_str = f"+{self.lag_time}" if self.lag_time >= 0 else str(self.lag_time)
        return f"{self.predecessor_id}->{self.successor_id}:{self.dependency_type.code}:{lag_str}"


@dataclass
class Constraint:
    """Binds one activity to a date constraint."""

    activity_id: ActivityId
    constraint_type: ConstraintType
    constraint_date: Optional[DayValue] = None
    priority: str = "medium"  # Advisory only
    is_active: bool = True

    def __post_init__(self) -> None:
        self.constraint_type = ConstraintType.parse(self.constraint_type)
        if self.constraint_type.is_dated and self.constraint_date is None:
            raise ValueError(f"Constraint '{self.constraint_type.value}' on {self.activity_id} needs a date.")

    def __str__(self) -> str:
        if self.constraint_date is None:
            return f"{self.activity_id}:{self.constraint_type.value}"
        return f"{self.activity_id}:{self.constraint_type.value}@{self.constraint_date}"


@dataclass
class ProjectSnapshot:
    """Immutable-by-convention input of a single recompute."""

    activities: List[Activity]
    dependencies: List[Dependency] = field(default_factory=list)
    constraints: List[Constraint] = field(default_factory=list)
    project_start: Optional[DayValue] = None
    project_end: Optional[DayValue] = None


@dataclass(frozen=True)
class ActivitySchedule:
    """Computed window of one activity."""

    activity_id: ActivityId
    duration: int
    early_start: int  # ES
    early_finish: int  # EF
    late_start: int  # LS
    late_finish: int  # LF
    total_float: int  # TF
    free_float: int  # FF
    is_critical: bool


@dataclass(frozen=True)
class ConstraintConflict:
    """A constraint the passes could not honor. Never fatal."""

    activity_id: Optional[ActivityId]
    constraint: Optional[Constraint]
    pass_name: str
    computed_bound: Optional[int]
    requested: Optional[int]
    reason: str

    def __str__(self) -> str:
        target = self.activity_id if self.activity_id is not None else "project"
        return f"{target} ({self.pass_name}): {self.reason}"


@dataclass(frozen=True)
class ScheduleResult:
    """Output of one recompute. Either applied whole or not at all."""

    activities: Dict[ActivityId, ActivitySchedule]
    critical_path: Tuple[ActivityId, ...]
    critical_paths: Tuple[Tuple[ActivityId, ...], ...]
    project_start: int
    project_end: int
    total_duration: int
    conflicts: Tuple[ConstraintConflict, ...] = ()
    calculation_log: Tuple[str, ...] = ()
    origin: Optional[date] = None
    critical_paths_truncated: bool = False  # enumeration hit the configured cap

    @property
    def critical_path_length(self) -> int:
        return len(self.critical_path)

    def to_calendar(self, offset: int) -> DayValue:
        """Convert a day offset back to the caller's date space."""
        return to_calendar(offset, self.origin)


@dataclass(frozen=True)
class ActivityUpdate:
    """Derived fields written back for one auto-scheduled activity."""

    activity_id: ActivityId
    planned_start: DayValue
    planned_end: DayValue
    critical_path: bool


class ChangeKind(Enum):
    ACTIVITY = "activity"
    DEPENDENCY = "dependency"
    CONSTRAINT = "constraint"

    @classmethod
    def parse(cls, value: Union[str, "ChangeKind"]) -> "ChangeKind":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Invalid change kind '{value}'.") from None


@dataclass(frozen=True)
class ChangeEvent:
    """Notification that an activity, dependency or constraint changed."""

    project_id: Hashable
    kind: ChangeKind = ChangeKind.ACTIVITY
    entity_id: Optional[Hashable] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "kind", ChangeKind.parse(self.kind))


def day_span(start: DayValue, end: DayValue) -> int:
    delta = end - start
    return delta.days if isinstance(delta, timedelta) else int(delta)


def to_offset(value: DayValue, origin: Optional[date]) -> int:
    """Convert an int or calendar date into a day offset."""
    if isinstance(value, date):
        if origin is None:
            raise ValueError(f"Calendar date {value} used without a calendar project start.")
        return (value - origin).days
    return int(value)


def to_calendar(offset: int, origin: Optional[date]) -> DayValue:
    if origin is None:
        return offset
    return origin + timedelta(days=offset)
