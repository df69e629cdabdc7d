"""
Deadline rules. Pure functions of a due date and an explicit "now".

Editing closes exactly at the due date whatever the late policy says;
submitting stays open past it only when late submission is allowed.
"""

import math
from datetime import datetime, timedelta
from typing import Optional

from app.schemas.assignments import Assignment

DEADLINE_PASSED = "Deadline passed"

_DAY = 24 * 60 * 60


def is_overdue(due_date: datetime, now: datetime) -> bool:
    return now > due_date


def can_edit(due_date: datetime, now: datetime) -> bool:
    return now <= due_date


def can_submit(assignment: Assignment, now: datetime) -> bool:
    if is_overdue(assignment.due_date, now) and not assignment.allow_late_submission:
        return False
    return True


def time_remaining(due_date: datetime, now: datetime) -> str:
    """Human countdown such as ``"2d 5h remaining"`` or :data:`DEADLINE_PASSED`."""
    diff = (due_date - now).total_seconds()
    if diff <= 0:
        return DEADLINE_PASSED

    days = int(diff // _DAY)
    hours = int((diff % _DAY) // 3600)
    minutes = int((diff % 3600) // 60)

    if days > 0:
        return f"{days}d {hours}h remaining"
    if hours > 0:
        return f"{hours}h {minutes}m remaining"
    return f"{minutes}m remaining"


def has_time_limit(assignment: Assignment) -> bool:
    return bool(assignment.time_limit)


def countdown_target(assignment: Assignment, started_at: Optional[datetime]) -> Optional[datetime]:
    """When a timed attempt runs out: the time limit or the due date, whichever is first."""
    if not has_time_limit(assignment):
        return None
    if started_at is None:
        return assignment.due_date
    limit_end = started_at + timedelta(minutes=assignment.time_limit)
    return min(limit_end, assignment.due_date)


def days_late(submitted_at: datetime, due_date: datetime) -> int:
    """Whole days past due; any part of a day counts as a full day."""
    seconds = (submitted_at - due_date).total_seconds()
    if seconds <= 0:
        return 0
    return math.ceil(seconds / _DAY)
