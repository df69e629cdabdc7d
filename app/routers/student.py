"""
Student router — take an assignment, autosave, submit, view results.

Each (student, assignment) pair has one live lifecycle session in this
process; these endpoints feed it events and return its state snapshot.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException
from app.core.clock import get_clock
from app.core.security import require_role
from app.core.deps import get_assignment_store, get_submission_store
from app.core.exceptions import SubmissionSaveError
from app.schemas.assignments import AnswerUpdate, Assignment, NavigationRequest
from app.services import deadline_policy as policy
from app.services.assignment_store import AssignmentStore
from app.services.grading import calculate_assignment_result
from app.services.session_registry import SessionRegistry, get_session_registry
from app.services.submission_lifecycle import SubmissionSession
from app.services.submission_store import SubmissionStore
from app.utils.response import success_response

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/assignments", tags=["Student"])


def _load_assignment(assignment_id: str, assignments: AssignmentStore) -> Assignment:
    assignment = assignments.get(assignment_id)
    if assignment is None or not assignment.is_published:
        raise HTTPException(status_code=404, detail="Assignment not found")
    return assignment


async def _session(
    assignment_id: str,
    user: dict,
    assignments: AssignmentStore,
    submissions: SubmissionStore,
    registry: SessionRegistry,
) -> SubmissionSession:
    assignment = _load_assignment(assignment_id, assignments)
    return await registry.get(user["user_id"], assignment, submissions)


def _refused(session: SubmissionSession, action: str):
    raise HTTPException(
        status_code=409,
        detail={
            "message": f"Cannot {action} now (state: {session.status.value})",
            "session": session.snapshot().model_dump(mode="json"),
        },
    )


@router.get("/{assignment_id}")
async def get_assignment_for_taking(
    assignment_id: str,
    user: dict = Depends(require_role(["student", "instructor", "admin"])),
    assignments: AssignmentStore = Depends(get_assignment_store),
    clock=Depends(get_clock),
):
    """Assignment plus deadline status. Instructors also get drafts and answer keys."""
    if user["role"] == "student":
        assignment = _load_assignment(assignment_id, assignments)
        payload = assignment.for_student()
    else:
        assignment = assignments.get(assignment_id)
        if assignment is None:
            raise HTTPException(status_code=404, detail="Assignment not found")
        payload = assignment.model_dump(mode="json")
    now = clock.now()
    return success_response(data={
        "assignment": payload,
        "is_overdue": policy.is_overdue(assignment.due_date, now),
        "can_edit": policy.can_edit(assignment.due_date, now),
        "can_submit": policy.can_submit(assignment, now),
        "time_remaining": policy.time_remaining(assignment.due_date, now),
    })


@router.get("/{assignment_id}/session")
async def get_session(
    assignment_id: str,
    user: dict = Depends(require_role(["student"])),
    assignments: AssignmentStore = Depends(get_assignment_store),
    submissions: SubmissionStore = Depends(get_submission_store),
    registry: SessionRegistry = Depends(get_session_registry),
):
    session = await _session(assignment_id, user, assignments, submissions, registry)
    return success_response(data=session.snapshot())


@router.post("/{assignment_id}/session/start")
async def start_session(
    assignment_id: str,
    user: dict = Depends(require_role(["student"])),
    assignments: AssignmentStore = Depends(get_assignment_store),
    submissions: SubmissionStore = Depends(get_submission_store),
    registry: SessionRegistry = Depends(get_session_registry),
):
    session = await _session(assignment_id, user, assignments, submissions, registry)
    if not await session.start():
        _refused(session, "start")
    return success_response(data=session.snapshot(), message="Assignment started")


@router.put("/{assignment_id}/session/answers/{question_id}")
async def answer_question(
    assignment_id: str,
    question_id: str,
    body: AnswerUpdate,
    user: dict = Depends(require_role(["student"])),
    assignments: AssignmentStore = Depends(get_assignment_store),
    submissions: SubmissionStore = Depends(get_submission_store),
    registry: SessionRegistry = Depends(get_session_registry),
):
    session = await _session(assignment_id, user, assignments, submissions, registry)
    if session.assignment.question(question_id) is None:
        raise HTTPException(status_code=404, detail="Question not found")
    if not session.set_answer(question_id, body.value):
        _refused(session, "edit answers")
    return success_response(data=session.snapshot(), message="Answer recorded")


@router.post("/{assignment_id}/session/save")
async def save_draft(
    assignment_id: str,
    user: dict = Depends(require_role(["student"])),
    assignments: AssignmentStore = Depends(get_assignment_store),
    submissions: SubmissionStore = Depends(get_submission_store),
    registry: SessionRegistry = Depends(get_session_registry),
):
    """Save the draft now instead of waiting for the autosave timer."""
    session = await _session(assignment_id, user, assignments, submissions, registry)
    saved = await session.autosave()
    if not saved and session.dirty:
        raise HTTPException(status_code=502, detail="Failed to save draft")
    return success_response(
        data=session.snapshot(), message="Draft saved" if saved else "Nothing to save"
    )


@router.post("/{assignment_id}/session/submit")
async def submit_session(
    assignment_id: str,
    user: dict = Depends(require_role(["student"])),
    assignments: AssignmentStore = Depends(get_assignment_store),
    submissions: SubmissionStore = Depends(get_submission_store),
    registry: SessionRegistry = Depends(get_session_registry),
):
    session = await _session(assignment_id, user, assignments, submissions, registry)
    try:
        submitted = await session.submit()
    except SubmissionSaveError as e:
        raise HTTPException(status_code=502, detail=str(e))
    if not submitted:
        _refused(session, "submit")
    return success_response(data=session.snapshot(), message="Assignment submitted")


@router.post("/{assignment_id}/session/retake")
async def retake_session(
    assignment_id: str,
    user: dict = Depends(require_role(["student"])),
    assignments: AssignmentStore = Depends(get_assignment_store),
    submissions: SubmissionStore = Depends(get_submission_store),
    registry: SessionRegistry = Depends(get_session_registry),
):
    session = await _session(assignment_id, user, assignments, submissions, registry)
    if not session.retake():
        _refused(session, "edit the assignment")
    return success_response(data=session.snapshot(), message="Assignment reopened")


@router.post("/{assignment_id}/session/navigate")
async def navigate(
    assignment_id: str,
    body: NavigationRequest,
    user: dict = Depends(require_role(["student"])),
    assignments: AssignmentStore = Depends(get_assignment_store),
    submissions: SubmissionStore = Depends(get_submission_store),
    registry: SessionRegistry = Depends(get_session_registry),
):
    session = await _session(assignment_id, user, assignments, submissions, registry)
    if body.action == "next":
        session.next_question()
    elif body.action == "previous":
        session.previous_question()
    else:
        session.toggle_preview()
    return success_response(data=session.snapshot())


@router.get("/{assignment_id}/result")
async def get_result(
    assignment_id: str,
    user: dict = Depends(require_role(["student"])),
    assignments: AssignmentStore = Depends(get_assignment_store),
    submissions: SubmissionStore = Depends(get_submission_store),
    clock=Depends(get_clock),
):
    """Result of the newest final submission, else the draft; scores and keys unlock after the due date."""
    assignment = _load_assignment(assignment_id, assignments)
    submission = submissions.get_latest_final(user["user_id"], assignment_id)
    if submission is None:
        submission = submissions.get_latest(user["user_id"], assignment_id)
    if submission is None:
        raise HTTPException(status_code=404, detail="No submission found")

    result = calculate_assignment_result(submission, assignment, clock.now())

    if result.score is not None and submission.score is None:
        try:
            result.submission = submissions.record_auto_grade(submission, result.score)
        except SubmissionSaveError:
            logger.warning("Could not persist auto-grade for %s", submission.id)

    data = result.model_dump(mode="json")
    if not result.can_view_answers:
        data["assignment"] = assignment.for_student()
    return success_response(data=data)
