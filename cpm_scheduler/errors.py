from __future__ import annotations

from typing import Hashable, List, Sequence


class ScheduleError(Exception):
    """Base class for errors that abort a recompute."""


class GraphError(ScheduleError):
    """Structural problem in the activity network. Raised before any write."""


class CycleDetected(GraphError):
    def __init__(self, activity_ids: Sequence[Hashable]):
        self.activity_ids: List[Hashable] = list(activity_ids)
        super().__init__(
            f"Circular dependency detected: {' -> '.join(str(a) for a in self.activity_ids)}"
        )


class DanglingReference(GraphError):
    def __init__(self, reference: object, missing_id: Hashable):
        self.reference = reference
        self.missing_id = missing_id
        super().__init__(f"'{reference}' references undefined activity '{missing_id}'.")


class ContradictoryEdges(GraphError):
    def __init__(self, first: object, second: object):
        self.edges = (first, second)
        super().__init__(f"Dependencies '{first}' and '{second}' contradict each other.")


class InvalidActivity(GraphError):
    def __init__(self, activity_id: Hashable, reason: str):
        self.activity_id = activity_id
        super().__init__(f"Activity '{activity_id}': {reason}")


class InvalidDate(GraphError):
    def __init__(self, owner: object, value: object, reason: str):
        self.owner = owner
        self.value = value
        super().__init__(f"'{owner}' has unusable date {value!r}: {reason}")


class InvariantViolation(ScheduleError):
    """Forward and backward results disagree. Indicates an engine bug."""

    def __init__(
        self, activity_id: Hashable, start_float: int, finish_float: int, reason: str = "Float mismatch"
    ):
        self.activity_id = activity_id
        self.start_float = start_float
        self.finish_float = finish_float
        super().__init__(
            f"{reason} on '{activity_id}': LS-ES={start_float}, LF-EF={finish_float}"
        )
