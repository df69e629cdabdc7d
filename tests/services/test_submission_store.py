from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from app.core.exceptions import AssignmentSaveError, SubmissionSaveError
from app.schemas.assignments import Submission
from app.services.submission_store import draft_id, normalize_timestamp
from conftest import NOW

TABLE = "assignment_submissions"


def _draft(**overrides) -> Submission:
    data = {"user_id": "student-uid", "assignment_id": "hw1", "answers": {"q1": "A"}}
    data.update(overrides)
    return Submission.model_validate(data)


class TestNormalizeTimestamp:
    def test_z_suffix(self):
        assert normalize_timestamp("2025-03-10T12:00:00Z") == "2025-03-10T12:00:00+00:00"

    def test_offset_is_converted_to_utc(self):
        assert normalize_timestamp("2025-03-10T14:00:00+02:00") == "2025-03-10T12:00:00+00:00"

    def test_naive_values_are_utc(self):
        assert normalize_timestamp(datetime(2025, 3, 10, 12)) == "2025-03-10T12:00:00+00:00"
        assert normalize_timestamp("2025-03-10T12:00:00") == "2025-03-10T12:00:00+00:00"

    def test_empty(self):
        assert normalize_timestamp(None) is None
        assert normalize_timestamp("") is None


class TestDrafts:
    def test_draft_id_is_deterministic(self):
        assert draft_id("u1", "a1") == "u1_a1_draft"

    def test_repeated_saves_keep_one_document(self, submission_store, fake_db, clock):
        submission_store.save_draft(_draft())
        clock.advance(minutes=1)
        saved = submission_store.save_draft(_draft(answers={"q1": "B"}))

        assert list(fake_db.tables[TABLE]) == ["student-uid_hw1_draft"]
        assert saved.id == "student-uid_hw1_draft"
        assert saved.is_submitted is False
        assert saved.submitted_at is None
        assert saved.last_saved_at == NOW + timedelta(minutes=1)
        # created_at is kept from the first save
        assert saved.created_at == NOW

        stored = submission_store.get_draft("student-uid", "hw1")
        assert stored.answers == {"q1": "B"}
        assert stored.created_at == NOW

    def test_draft_write_failure_raises(self, submission_store, fake_db):
        fake_db.fail("upsert")
        with pytest.raises(SubmissionSaveError):
            submission_store.save_draft(_draft())


class TestFinal:
    def test_final_removes_draft(self, submission_store, fake_db, clock):
        submission_store.save_draft(_draft())
        clock.advance(minutes=5)
        final = submission_store.save_final(_draft(answers={"q1": "B"}))

        expected_id = f"student-uid_hw1_{int(clock.now().timestamp() * 1000)}"
        assert final.id == expected_id
        assert final.is_submitted is True
        assert final.submitted_at == clock.now()
        assert list(fake_db.tables[TABLE]) == [expected_id]
        assert submission_store.get_draft("student-uid", "hw1") is None

    def test_supplied_id_is_used(self, submission_store):
        final = submission_store.save_final(_draft(id="custom-id"))
        assert final.id == "custom-id"

    def test_draft_id_is_never_reused_for_final(self, submission_store):
        final = submission_store.save_final(_draft(id="student-uid_hw1_draft"))
        assert final.id != "student-uid_hw1_draft"
        assert final.id.startswith("student-uid_hw1_")

    def test_final_without_draft_succeeds(self, submission_store, fake_db):
        submission_store.save_final(_draft())
        assert fake_db.count("delete") == 1

    def test_cleanup_failure_is_not_an_error(self, submission_store, fake_db, clock):
        submission_store.save_draft(_draft())
        clock.advance(minutes=1)
        fake_db.fail("delete")

        final = submission_store.save_final(_draft())

        assert final.is_submitted is True
        assert fake_db.count("delete") == 2
        # the leftover draft is older than the final, so the final wins
        assert submission_store.get_latest("student-uid", "hw1").id == final.id

    def test_cleanup_retries_once(self, submission_store, fake_db):
        submission_store.save_draft(_draft())
        fake_db.fail("delete", times=1)

        submission_store.save_final(_draft())

        assert submission_store.get_draft("student-uid", "hw1") is None

    def test_insert_failure_keeps_draft(self, submission_store, fake_db):
        submission_store.save_draft(_draft())
        fake_db.fail("insert")

        with pytest.raises(SubmissionSaveError):
            submission_store.save_final(_draft())

        assert submission_store.get_draft("student-uid", "hw1") is not None
        assert fake_db.count("delete") == 0


class TestReads:
    def test_latest_is_most_recent_activity(self, submission_store, clock):
        submission_store.save_final(_draft(id="first"))
        clock.advance(hours=1)
        submission_store.save_final(_draft(id="second"))
        clock.advance(hours=1)
        submission_store.save_draft(_draft())

        assert [s.id for s in submission_store.list_submissions("student-uid", "hw1")] == [
            "student-uid_hw1_draft",
            "second",
            "first",
        ]
        assert submission_store.get_latest("student-uid", "hw1").id == "student-uid_hw1_draft"

    def test_latest_final_skips_newer_draft(self, submission_store, clock):
        submission_store.save_final(_draft(id="first"))
        clock.advance(hours=1)
        submission_store.save_final(_draft(id="second"))
        clock.advance(hours=1)
        submission_store.save_draft(_draft())

        assert submission_store.get_latest_final("student-uid", "hw1").id == "second"

    def test_latest_final_without_finals(self, submission_store):
        submission_store.save_draft(_draft())
        assert submission_store.get_latest_final("student-uid", "hw1") is None

    def test_latest_for_unknown_pair(self, submission_store):
        assert submission_store.get_latest("nobody", "hw1") is None

    def test_reads_fail_closed(self, submission_store, fake_db):
        submission_store.save_final(_draft())
        fake_db.fail("select")

        assert submission_store.get_latest("student-uid", "hw1") is None
        assert submission_store.get_draft("student-uid", "hw1") is None
        assert submission_store.list_submissions("student-uid", "hw1") == []
        assert submission_store.list_for_assignment("hw1") == []

    def test_list_for_assignment_skips_drafts(self, submission_store, clock):
        submission_store.save_final(_draft(id="a", user_id="u1"))
        clock.advance(minutes=1)
        submission_store.save_final(_draft(id="b", user_id="u2"))
        submission_store.save_draft(_draft(user_id="u3"))

        assert [s.id for s in submission_store.list_for_assignment("hw1")] == ["b", "a"]

    def test_stored_timestamps_with_offsets_are_read_as_utc(self, submission_store, fake_db):
        fake_db.tables[TABLE]["legacy"] = {
            "id": "legacy",
            "user_id": "student-uid",
            "assignment_id": "hw1",
            "answers": {},
            "is_submitted": True,
            "submitted_at": "2025-03-10T14:00:00+02:00",
        }
        latest = submission_store.get_latest("student-uid", "hw1")
        assert latest.submitted_at == datetime(2025, 3, 10, 12, tzinfo=timezone.utc)


class TestGrading:
    def test_manual_grade(self, submission_store, clock):
        final = submission_store.save_final(_draft(id="s1"))
        clock.advance(days=3)

        graded = submission_store.grade(final.id, 88, "Nice work", "instructor-uid")

        assert graded.score == 88
        assert graded.feedback == "Nice work"
        assert graded.graded_by == "instructor-uid"
        assert graded.graded_at == clock.now()
        assert graded.auto_graded is False

    def test_grading_unknown_submission(self, submission_store):
        assert submission_store.grade("missing", 50, None, "instructor-uid") is None

    def test_grade_write_failure(self, submission_store, fake_db):
        fake_db.fail("update")
        with pytest.raises(SubmissionSaveError):
            submission_store.grade("s1", 50, None, "instructor-uid")

    def test_record_auto_grade(self, submission_store):
        final = submission_store.save_final(_draft(id="s1"))
        graded = submission_store.record_auto_grade(final, 70)

        assert graded.score == 70
        assert graded.auto_graded is True
        stored = submission_store.get_latest("student-uid", "hw1")
        assert stored.score == 70
        assert stored.auto_graded is True


class TestAssignmentStore:
    def test_save_and_get(self, assignment_store, make_assignment, clock):
        saved = assignment_store.save("week-2", make_assignment())

        assert saved.unit_id == "week-2"
        assert saved.created_at == clock.now()
        fetched = assignment_store.get("hw1")
        assert fetched.title == "Homework 1"
        assert fetched.questions[0].correct_option() == "B"

    def test_resave_keeps_created_at(self, assignment_store, make_assignment, clock):
        first = assignment_store.save("week-1", make_assignment())
        clock.advance(hours=2)
        second = assignment_store.save("week-1", first.model_copy(update={"title": "Renamed"}))

        assert second.created_at == NOW
        assert second.updated_at == NOW + timedelta(hours=2)
        assert assignment_store.get("hw1").title == "Renamed"

    def test_list_for_unit_sorted_by_due_date(self, assignment_store, make_assignment):
        assignment_store.save("week-1", make_assignment(id="late", due_date=NOW + timedelta(days=9)))
        assignment_store.save("week-1", make_assignment(id="soon", due_date=NOW + timedelta(days=1)))
        assignment_store.save("week-2", make_assignment(id="other"))

        assert [a.id for a in assignment_store.list_for_unit("week-1")] == ["soon", "late"]

    def test_delete_removes_submissions(self, assignment_store, submission_store, make_assignment):
        assignment_store.save("week-1", make_assignment())
        submission_store.save_final(_draft(id="s1"))
        submission_store.save_draft(_draft())

        assignment_store.delete("hw1")

        assert assignment_store.get("hw1") is None
        assert submission_store.list_submissions("student-uid", "hw1") == []

    def test_save_failure(self, assignment_store, fake_db, make_assignment):
        fake_db.fail("upsert")
        with pytest.raises(AssignmentSaveError):
            assignment_store.save("week-1", make_assignment())

    def test_get_fails_closed(self, assignment_store, fake_db):
        fake_db.fail("select")
        assert assignment_store.get("hw1") is None
        assert assignment_store.list_for_unit("week-1") == []
