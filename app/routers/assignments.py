"""
Assignments router — instructor side: define assignments, list them per unit,
review and grade submissions.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException
from app.core.security import require_role
from app.core.deps import get_assignment_store, get_submission_store
from app.core.exceptions import AssignmentSaveError, SubmissionSaveError
from app.schemas.assignments import AssignmentUpsert, SubmissionGrade
from app.services.assignment_store import AssignmentStore
from app.services.session_registry import SessionRegistry, get_session_registry
from app.services.submission_store import SubmissionStore
from app.utils.response import success_response

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/assignments", tags=["Assignments"])

INSTRUCTOR_ROLES = ["instructor", "admin"]


@router.put("/{assignment_id}")
async def save_assignment(
    assignment_id: str,
    body: AssignmentUpsert,
    user: dict = Depends(require_role(INSTRUCTOR_ROLES)),
    assignments: AssignmentStore = Depends(get_assignment_store),
    registry: SessionRegistry = Depends(get_session_registry),
):
    """Create or merge-update an assignment definition. Students mid-attempt see the change at once."""
    if body.id != assignment_id:
        raise HTTPException(status_code=400, detail="Assignment id in body does not match the URL")
    if not body.unit_id:
        raise HTTPException(status_code=400, detail="unit_id is required")

    try:
        saved = assignments.save(body.unit_id, body)
    except AssignmentSaveError as e:
        raise HTTPException(status_code=502, detail=str(e))
    await registry.refresh_assignment(saved)
    return success_response(data=saved, message="Assignment saved")


@router.get("/unit/{unit_id}")
async def get_unit_assignments(
    unit_id: str,
    user: dict = Depends(require_role(INSTRUCTOR_ROLES + ["student"])),
    assignments: AssignmentStore = Depends(get_assignment_store),
):
    """Assignments of a unit, earliest due first. Students only see published ones, without keys."""
    result = assignments.list_for_unit(unit_id)
    if user["role"] in INSTRUCTOR_ROLES:
        return success_response(data=result)
    return success_response(data=[a.for_student() for a in result if a.is_published])


@router.delete("/{assignment_id}")
async def delete_assignment(
    assignment_id: str,
    user: dict = Depends(require_role(INSTRUCTOR_ROLES)),
    assignments: AssignmentStore = Depends(get_assignment_store),
    registry: SessionRegistry = Depends(get_session_registry),
):
    try:
        assignments.delete(assignment_id)
    except AssignmentSaveError as e:
        raise HTTPException(status_code=502, detail=str(e))
    await registry.discard_assignment(assignment_id)
    return success_response(message="Assignment deleted")


@router.get("/{assignment_id}/submissions")
async def get_submissions(
    assignment_id: str,
    user: dict = Depends(require_role(INSTRUCTOR_ROLES)),
    submissions: SubmissionStore = Depends(get_submission_store),
):
    return success_response(data=submissions.list_for_assignment(assignment_id))


@router.patch("/submissions/{submission_id}/grade")
async def grade_submission(
    submission_id: str,
    body: SubmissionGrade,
    user: dict = Depends(require_role(INSTRUCTOR_ROLES)),
    submissions: SubmissionStore = Depends(get_submission_store),
):
    """Manual grade; overrides the automatic score."""
    try:
        graded = submissions.grade(submission_id, body.score, body.feedback, user["user_id"])
    except SubmissionSaveError as e:
        raise HTTPException(status_code=502, detail=str(e))
    if graded is None:
        raise HTTPException(status_code=404, detail="Submission not found")
    logger.info("Submission %s graded %s by %s", submission_id, body.score, user["user_id"])
    return success_response(data=graded, message="Submission graded")
