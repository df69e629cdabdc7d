"""
FastAPI dependencies wiring storage and the clock into the services.
"""

from fastapi import Depends

from app.core.clock import get_clock
from app.core.database import get_supabase
from app.services.assignment_store import AssignmentStore
from app.services.submission_store import SubmissionStore


def get_assignment_store(db=Depends(get_supabase), clock=Depends(get_clock)) -> AssignmentStore:
    return AssignmentStore(db, clock)


def get_submission_store(db=Depends(get_supabase), clock=Depends(get_clock)) -> SubmissionStore:
    return SubmissionStore(db, clock)
