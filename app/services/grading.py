"""
Auto-grading and deadline-gated result disclosure.

Scores are percentages (0-100). Essay and file-upload questions are never
auto-scored; they count towards the total but earn nothing until an
instructor grades the submission by hand.

Results disclose no correctness or score before the due date has passed,
even for a final submission made early. Answer keys and explanations need the
assignment's ``show_answers_after_deadline`` flag on top of that.
"""

import logging
import math
from datetime import datetime
from typing import Dict, Any, List, Optional

from app.schemas.assignments import Assignment, AssignmentResult, QuestionFeedback, Submission
from app.services.deadline_policy import days_late

logger = logging.getLogger(__name__)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def late_penalty(submission: Submission, assignment: Assignment) -> float:
    """Percentage points to deduct, capped at 100."""
    if not (submission.is_late and assignment.late_penalty and submission.submitted_at):
        return 0
    days = days_late(submission.submitted_at, assignment.due_date)
    return min(assignment.late_penalty * days, 100)


def auto_grade_submission(submission: Submission, assignment: Assignment) -> int:
    total_points = 0
    earned_points = 0

    for question in assignment.questions:
        total_points += question.points
        answer = question.read_answer(submission.answers.get(question.id))
        verdict = question.check(answer)
        if verdict:
            earned_points += question.points
        logger.debug(
            "Question %s (%s): answer=%r verdict=%s", question.id, question.type, answer, verdict
        )

    score = _round_half_up(100 * earned_points / total_points) if total_points > 0 else 0

    penalty = late_penalty(submission, assignment)
    if penalty:
        final_score = max(0, _round_half_up(score - penalty))
        logger.info(
            "Applied late penalty of %s%% to %s: %s -> %s", penalty, submission.id, score, final_score
        )
        return final_score

    logger.debug("Submission %s scored %s%% (%s/%s points)", submission.id, score, earned_points, total_points)
    return score


def calculate_assignment_result(
    submission: Submission, assignment: Assignment, now: datetime
) -> AssignmentResult:
    deadline_passed = now > assignment.due_date
    disclosed = deadline_passed and submission.is_submitted
    can_view_answers = disclosed and assignment.show_answers_after_deadline

    feedback: List[QuestionFeedback] = []
    for question in assignment.questions:
        raw = submission.answers.get(question.id)
        is_correct: Optional[bool] = None
        earned = 0
        if disclosed:
            is_correct = question.check(question.read_answer(raw))
            earned = question.points if is_correct else 0

        feedback.append(QuestionFeedback(
            question_id=question.id,
            is_correct=is_correct,
            user_answer=raw,
            correct_answer=question.answer_key() if can_view_answers else None,
            explanation=question.explanation if can_view_answers else None,
            points=question.points,
            earned_points=earned,
        ))

    score = None
    if disclosed:
        score = submission.score if submission.score is not None else auto_grade_submission(submission, assignment)

    return AssignmentResult(
        submission=submission,
        assignment=assignment,
        feedback=feedback,
        can_view_answers=can_view_answers,
        deadline_passed=deadline_passed,
        score=score,
    )


def missing_required_answers(answers: Dict[str, Any], assignment: Assignment) -> List[str]:
    """Ids of required questions that have no usable answer."""
    return [
        q.id for q in assignment.questions
        if q.required and q.read_answer(answers.get(q.id)) is None
    ]
