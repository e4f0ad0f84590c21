from __future__ import annotations

from typing import Dict, Optional, Sequence

import pandas as pd

from .models import Activity, ScheduleResult


def _names(activities: Optional[Sequence[Activity]]) -> Dict[object, Activity]:
    return {act.id: act for act in activities or ()}


def results_dataframe(result: ScheduleResult, activities: Optional[Sequence[Activity]] = None) -> pd.DataFrame:
    """Get calculation results as a pandas DataFrame, one row per activity."""
    known = _names(activities)
    data = []
    for act_id, sched in result.activities.items():
        act = known.get(act_id)
        row = {
            "ID": act_id,
            "Name": act.name if act else "",
            "Duration": sched.duration,
            "Buffer": act.buffer_time if act else 0,
            "ES": sched.early_start,
            "EF": sched.early_finish,
            "LS": sched.late_start,
            "LF": sched.late_finish,
            "TF": sched.total_float,
            "FF": sched.free_float,
            "Critical": "Yes" if sched.is_critical else "No",
        }
        if result.origin is not None:
            row["Early Start Date"] = result.to_calendar(sched.early_start)
            row["Early Finish Date"] = result.to_calendar(sched.early_finish)
        data.append(row)
    return pd.DataFrame(data)


def critical_path_dataframe(result: ScheduleResult, activities: Optional[Sequence[Activity]] = None) -> pd.DataFrame:
    """Critical activities in schedule order, as read by the report generator."""
    known = _names(activities)
    data = []
    for act_id in result.critical_path:
        sched = result.activities[act_id]
        act = known.get(act_id)
        data.append(
            {
                "ID": act_id,
                "Name": act.name if act else "",
                "Early Start": result.to_calendar(sched.early_start),
                "Early Finish": result.to_calendar(sched.early_finish),
                "Duration": sched.duration,
            }
        )
    return pd.DataFrame(data, columns=["ID", "Name", "Early Start", "Early Finish", "Duration"])


def conflicts_dataframe(result: ScheduleResult) -> pd.DataFrame:
    data = [
        {
            "Activity": c.activity_id if c.activity_id is not None else "-",
            "Constraint": c.constraint.constraint_type.value if c.constraint else "project_end",
            "Pass": c.pass_name,
            "Requested": c.requested if c.requested is not None else "-",
            "Computed": c.computed_bound if c.computed_bound is not None else "-",
            "Reason": c.reason,
        }
        for c in result.conflicts
    ]
    return pd.DataFrame(data, columns=["Activity", "Constraint", "Pass", "Requested", "Computed", "Reason"])


def critical_path_summary(result: ScheduleResult) -> Dict[str, object]:
    total = len(result.activities)
    critical = result.critical_path_length
    return {
        "total_activities": total,
        "critical_activities": critical,
        "total_duration": result.total_duration,
        "critical_percentage": round(critical / total * 100, 1) if total else 0.0,
        "critical_paths": len(result.critical_paths),
        "conflicts": len(result.conflicts),
    }
