"""
Submission persistence.

Drafts live under a deterministic id derived from (user, assignment) so that
repeated autosaves overwrite one document. Final submissions get a fresh id
and remove the draft once written.

Reads fail closed (logged, ``None`` / ``[]``); writes raise
:class:`SubmissionSaveError`.
"""

import logging
from datetime import datetime, timezone
from typing import Any, List, Optional

from dateutil import parser

from app.core.clock import SystemClock, system_clock
from app.core.config import settings
from app.core.exceptions import SubmissionSaveError
from app.schemas.assignments import Submission

logger = logging.getLogger(__name__)

TIMESTAMP_FIELDS = ("submitted_at", "last_saved_at", "created_at", "graded_at", "updated_at")

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def normalize_timestamp(value: Any) -> Optional[str]:
    """Coerce a stored timestamp (datetime, ISO string, ``Z`` suffix) to a UTC ISO string."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        dt = parser.isoparse(str(value))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


def normalize_document(doc: dict) -> dict:
    data = dict(doc)
    for key in TIMESTAMP_FIELDS:
        if key in data:
            data[key] = normalize_timestamp(data[key])
    return data


def draft_id(user_id: str, assignment_id: str) -> str:
    return f"{user_id}_{assignment_id}_draft"


class SubmissionStore:
    def __init__(self, db, clock: SystemClock = system_clock, table: str | None = None):
        self.db = db
        self.clock = clock
        self.table = table or settings.SUBMISSIONS_TABLE

    def _to_submission(self, doc: dict) -> Submission:
        return Submission.model_validate(normalize_document(doc))

    # ---- Writes ----

    def save_draft(self, submission: Submission) -> Submission:
        """Upsert the single draft for (user, assignment)."""
        doc_id = draft_id(submission.user_id, submission.assignment_id)
        created_at = submission.created_at
        if created_at is None:
            existing = self.get_draft(submission.user_id, submission.assignment_id)
            created_at = existing.created_at if existing else None

        now = self.clock.now()
        draft = submission.model_copy(update={
            "id": doc_id,
            "is_submitted": False,
            "submitted_at": None,
            "last_saved_at": now,
            "created_at": created_at or now,
        })

        try:
            self.db.table(self.table).upsert(
                draft.model_dump(mode="json"), on_conflict="id"
            ).execute()
        except Exception as e:
            logger.exception("Error saving draft %s", doc_id)
            raise SubmissionSaveError() from e

        logger.debug("Draft saved: %s", doc_id)
        return draft

    def save_final(self, submission: Submission) -> Submission:
        """Write a new final submission, then drop the pair's draft."""
        now = self.clock.now()
        pair_draft = draft_id(submission.user_id, submission.assignment_id)
        final_id = submission.id
        if not final_id or final_id == pair_draft:
            final_id = f"{submission.user_id}_{submission.assignment_id}_{int(now.timestamp() * 1000)}"

        final = submission.model_copy(update={
            "id": final_id,
            "is_submitted": True,
            "submitted_at": submission.submitted_at or now,
            "created_at": now,
        })

        try:
            self.db.table(self.table).insert(final.model_dump(mode="json")).execute()
        except Exception as e:
            logger.exception("Error saving final submission %s", final_id)
            raise SubmissionSaveError() from e

        logger.info("Final submission saved: %s", final_id)
        self._remove_draft(pair_draft)
        return final

    def _remove_draft(self, doc_id: str) -> None:
        attempts = max(1, settings.DRAFT_CLEANUP_ATTEMPTS)
        for attempt in range(1, attempts + 1):
            try:
                result = self.db.table(self.table).delete().eq("id", doc_id).execute()
            except Exception:
                logger.exception(
                    "Failed to delete draft %s (attempt %d/%d)", doc_id, attempt, attempts
                )
                continue
            if not result.data:
                logger.debug("No draft %s to delete", doc_id)
            return
        logger.error("Giving up on draft cleanup for %s; it will be superseded by the final", doc_id)

    def grade(self, submission_id: str, score: int, feedback: Optional[str], graded_by: str) -> Optional[Submission]:
        """Record a manual grade. Returns the updated submission, or None if it does not exist."""
        update = {
            "score": score,
            "feedback": feedback,
            "graded_at": self.clock.now().isoformat(),
            "graded_by": graded_by,
            "auto_graded": False,
        }
        try:
            result = self.db.table(self.table).update(update).eq("id", submission_id).execute()
        except Exception as e:
            logger.exception("Error grading submission %s", submission_id)
            raise SubmissionSaveError("Failed to grade submission") from e
        if not result.data:
            return None
        return self._to_submission(result.data[0])

    def record_auto_grade(self, submission: Submission, score: int) -> Submission:
        graded = submission.model_copy(update={
            "score": score,
            "auto_graded": True,
            "graded_at": self.clock.now(),
        })
        try:
            self.db.table(self.table).update({
                "score": score,
                "auto_graded": True,
                "graded_at": graded.graded_at.isoformat(),
            }).eq("id", submission.id).execute()
        except Exception as e:
            logger.exception("Error recording auto-grade for %s", submission.id)
            raise SubmissionSaveError("Failed to record grade") from e
        return graded

    # ---- Reads ----

    def list_submissions(self, user_id: str, assignment_id: str) -> List[Submission]:
        """Every submission for the pair, most recent activity first."""
        try:
            result = (
                self.db.table(self.table)
                .select("*")
                .eq("user_id", user_id)
                .eq("assignment_id", assignment_id)
                .execute()
            )
            submissions = [self._to_submission(doc) for doc in result.data or []]
        except Exception:
            logger.exception("Error fetching submissions for %s/%s", user_id, assignment_id)
            return []

        return sorted(submissions, key=lambda s: s.activity_at or _EPOCH, reverse=True)

    def get_latest(self, user_id: str, assignment_id: str) -> Optional[Submission]:
        submissions = self.list_submissions(user_id, assignment_id)
        return submissions[0] if submissions else None

    def get_latest_final(self, user_id: str, assignment_id: str) -> Optional[Submission]:
        """Newest final submission for the pair; a draft from a retake never shadows it."""
        for submission in self.list_submissions(user_id, assignment_id):
            if submission.is_submitted:
                return submission
        return None

    def get_draft(self, user_id: str, assignment_id: str) -> Optional[Submission]:
        doc_id = draft_id(user_id, assignment_id)
        try:
            result = self.db.table(self.table).select("*").eq("id", doc_id).limit(1).execute()
            if not result.data:
                return None
            return self._to_submission(result.data[0])
        except Exception:
            logger.exception("Error fetching draft %s", doc_id)
            return None

    def list_for_assignment(self, assignment_id: str) -> List[Submission]:
        """Final submissions for an assignment, newest first."""
        try:
            result = (
                self.db.table(self.table)
                .select("*")
                .eq("assignment_id", assignment_id)
                .eq("is_submitted", True)
                .order("submitted_at", desc=True)
                .execute()
            )
            return [self._to_submission(doc) for doc in result.data or []]
        except Exception:
            logger.exception("Error fetching submissions for assignment %s", assignment_id)
            return []
