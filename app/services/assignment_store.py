"""
Assignment persistence: merge-upserted definitions keyed by assignment id.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional

from app.core.clock import system_clock
from app.core.config import settings
from app.core.exceptions import AssignmentSaveError
from app.schemas.assignments import Assignment
from app.services.submission_store import normalize_document

logger = logging.getLogger(__name__)

_FAR_FUTURE = datetime.max.replace(tzinfo=timezone.utc)


class AssignmentStore:
    def __init__(self, db, clock=system_clock, table: str | None = None, submissions_table: str | None = None):
        self.db = db
        self.clock = clock
        self.table = table or settings.ASSIGNMENTS_TABLE
        self.submissions_table = submissions_table or settings.SUBMISSIONS_TABLE

    def save(self, unit_id: str, assignment: Assignment) -> Assignment:
        now = self.clock.now()
        saved = assignment.model_copy(update={
            "unit_id": unit_id,
            "created_at": assignment.created_at or now,
            "updated_at": now,
        })
        try:
            self.db.table(self.table).upsert(
                saved.model_dump(mode="json"), on_conflict="id"
            ).execute()
        except Exception as e:
            logger.exception("Error saving assignment %s", assignment.id)
            raise AssignmentSaveError() from e

        logger.info("Assignment saved successfully: %s", assignment.id)
        return saved

    def get(self, assignment_id: str) -> Optional[Assignment]:
        try:
            result = self.db.table(self.table).select("*").eq("id", assignment_id).limit(1).execute()
            if not result.data:
                return None
            return Assignment.model_validate(normalize_document(result.data[0]))
        except Exception:
            logger.exception("Error fetching assignment %s", assignment_id)
            return None

    def list_for_unit(self, unit_id: str) -> List[Assignment]:
        """Assignments of a unit, earliest due first."""
        try:
            result = self.db.table(self.table).select("*").eq("unit_id", unit_id).execute()
            assignments = [
                Assignment.model_validate(normalize_document(doc)) for doc in result.data or []
            ]
        except Exception:
            logger.exception("Error fetching assignments for unit %s", unit_id)
            return []
        return sorted(assignments, key=lambda a: a.due_date or _FAR_FUTURE)

    def delete(self, assignment_id: str) -> None:
        """Delete an assignment together with every submission made for it."""
        try:
            self.db.table(self.table).delete().eq("id", assignment_id).execute()
            self.db.table(self.submissions_table).delete().eq("assignment_id", assignment_id).execute()
        except Exception as e:
            logger.exception("Error deleting assignment %s", assignment_id)
            raise AssignmentSaveError("Failed to delete assignment") from e

        logger.info("Assignment deleted successfully: %s", assignment_id)
