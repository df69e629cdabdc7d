"""
Submission lifecycle for one student taking one assignment.

    NOT_STARTED --start--> IN_PROGRESS --submit / auto-submit--> COMPLETED
                               ^                                    |
                               +---------------retake---------------+

While IN_PROGRESS every answer edit marks the session dirty and (re)arms a
trailing-edge autosave timer. A timed assignment also runs a countdown that
auto-submits once when it reaches zero. Both timers are tasks owned by the
session and are cancelled on transition and on :meth:`SubmissionSession.close`.

Draft and final writes are serialised on one lock, so a draft save that is
already running finishes before the final write and any later draft save sees
the session completed and does nothing.
"""

import asyncio
import enum
import logging
from datetime import datetime
from typing import Any, Optional

from starlette.concurrency import run_in_threadpool

from app.core.clock import system_clock
from app.core.config import settings
from app.core.exceptions import SubmissionSaveError
from app.schemas.assignments import Assignment, SessionState, Submission
from app.services import deadline_policy as policy
from app.services.grading import missing_required_answers
from app.services.submission_store import SubmissionStore

logger = logging.getLogger(__name__)


class SessionStatus(str, enum.Enum):
    not_started = "not_started"
    in_progress = "in_progress"
    completed = "completed"


class SubmissionSession:
    def __init__(
        self,
        assignment: Assignment,
        user_id: str,
        store: SubmissionStore,
        clock=system_clock,
        *,
        autosave_delay: Optional[float] = None,
        countdown_interval: Optional[float] = None,
        enforce_required: Optional[bool] = None,
    ):
        self.assignment = assignment
        self.user_id = user_id
        self.store = store
        self.clock = clock
        self.autosave_delay = settings.AUTOSAVE_DEBOUNCE_SECONDS if autosave_delay is None else autosave_delay
        self.countdown_interval = (
            settings.COUNTDOWN_INTERVAL_SECONDS if countdown_interval is None else countdown_interval
        )
        self.enforce_required = (
            settings.ENFORCE_REQUIRED_QUESTIONS if enforce_required is None else enforce_required
        )

        self.status = SessionStatus.not_started
        self.answers: dict[str, Any] = {}
        self.dirty = False
        self.submission: Optional[Submission] = None
        self.started_at: Optional[datetime] = None
        self.last_saved_at: Optional[datetime] = None
        self.time_remaining: Optional[str] = None

        # view state
        self.current_index = 0
        self.show_preview = False

        self._revision = 0
        self._in_flight = 0
        self._auto_submitted = False
        self._write_lock = asyncio.Lock()
        self._autosave_task: Optional[asyncio.Task] = None
        self._countdown_task: Optional[asyncio.Task] = None

    def __repr__(self):
        return f"<SubmissionSession {self.key} {self.status.value}{' dirty' if self.dirty else ''}>"

    @property
    def key(self) -> str:
        return f"{self.user_id}/{self.assignment.id}"

    # ---- Policy ----

    @property
    def now(self) -> datetime:
        return self.clock.now()

    @property
    def can_edit(self) -> bool:
        if self.status is SessionStatus.in_progress and self.time_up:
            return False
        return policy.can_edit(self.assignment.due_date, self.now)

    @property
    def time_up(self) -> bool:
        """The timed attempt has run out, whether or not the auto-submit went through."""
        target = policy.countdown_target(self.assignment, self.started_at)
        return target is not None and self.now >= target

    @property
    def can_submit(self) -> bool:
        return policy.can_submit(self.assignment, self.now)

    @property
    def can_start(self) -> bool:
        return self.status is SessionStatus.not_started and self.can_submit

    @property
    def can_retake(self) -> bool:
        return self.status is SessionStatus.completed and self.can_edit

    @property
    def submit_in_flight(self) -> bool:
        return self._in_flight > 0

    # ---- Transitions ----

    async def load(self) -> None:
        """Resume from whatever is stored for this student and assignment."""
        latest = await run_in_threadpool(self.store.get_latest, self.user_id, self.assignment.id)
        if latest is None:
            return

        self.submission = latest
        self.answers = dict(latest.answers)
        self.last_saved_at = latest.last_saved_at
        if latest.is_submitted:
            self.status = SessionStatus.completed
            logger.debug("%s resumed as completed (%s)", self.key, latest.id)
        else:
            self.status = SessionStatus.in_progress
            self.started_at = latest.created_at or self.now
            self._start_countdown()
            logger.debug("%s resumed from draft", self.key)

    async def start(self) -> bool:
        if not self.can_start:
            logger.info("%s start refused (status=%s)", self.key, self.status.value)
            return False
        self.status = SessionStatus.in_progress
        self.started_at = self.now
        self._start_countdown()
        logger.info("%s started", self.key)
        return True

    def set_answer(self, question_id: str, value: Any) -> bool:
        if self.status is not SessionStatus.in_progress or not self.can_edit:
            return False
        if self.assignment.question(question_id) is None:
            return False
        self.answers[question_id] = value
        self.dirty = True
        self._revision += 1
        self._schedule_autosave()
        return True

    async def autosave(self) -> bool:
        """Write a draft if there is anything unsaved and editing is still open."""
        async with self._write_lock:
            if self.status is not SessionStatus.in_progress or not self.dirty or not self.can_edit:
                return False
            revision = self._revision
            try:
                saved = await run_in_threadpool(self.store.save_draft, self._build_submission())
            except SubmissionSaveError:
                logger.warning("Auto-save failed for %s; will retry", self.key)
                return False

            self.submission = saved
            self.last_saved_at = saved.last_saved_at
            if revision == self._revision:
                self.dirty = False
        return True

    async def submit(self) -> bool:
        """Explicit final submit. Returns False when the action is disabled."""
        if self.status is not SessionStatus.in_progress or self.submit_in_flight:
            return False
        if not self.can_submit:
            logger.info("%s submit refused: past due and late submission not allowed", self.key)
            return False
        if self.enforce_required:
            missing = missing_required_answers(self.answers, self.assignment)
            if missing:
                logger.info("%s submit refused: required questions unanswered %s", self.key, missing)
                return False
        return await self._finalize()

    async def tick(self) -> Optional[str]:
        """One countdown step; auto-submits the first time the countdown hits zero."""
        target = policy.countdown_target(self.assignment, self.started_at)
        if target is None:
            return None
        self.time_remaining = policy.time_remaining(target, self.now)

        if (
            self.time_remaining == policy.DEADLINE_PASSED
            and self.status is SessionStatus.in_progress
            and not self._auto_submitted
        ):
            self._auto_submitted = True
            logger.info("%s time is up, auto-submitting", self.key)
            try:
                await self._finalize()
            except SubmissionSaveError:
                logger.error("Auto-submit failed for %s", self.key)
        return self.time_remaining

    def retake(self) -> bool:
        if not self.can_retake:
            return False
        self.status = SessionStatus.in_progress
        self.dirty = False
        self.started_at = self.now
        self._auto_submitted = False
        self.current_index = 0
        self._start_countdown()
        logger.info("%s reopened for editing", self.key)
        return True

    def replace_assignment(self, assignment: Assignment) -> None:
        """Swap in a re-saved definition; answers and status are kept."""
        self.assignment = assignment
        self.current_index = min(self.current_index, max(0, len(assignment.questions) - 1))
        if self.status is SessionStatus.in_progress:
            self._start_countdown()
        logger.info("%s picked up the updated assignment", self.key)

    async def close(self) -> None:
        self._cancel_autosave()
        self._cancel_countdown()

    # ---- View state ----

    def next_question(self) -> int:
        if self.current_index < len(self.assignment.questions) - 1:
            self.current_index += 1
        return self.current_index

    def previous_question(self) -> int:
        if self.current_index > 0:
            self.current_index -= 1
        return self.current_index

    def toggle_preview(self) -> bool:
        self.show_preview = not self.show_preview
        return self.show_preview

    def progress(self) -> float:
        questions = self.assignment.questions
        if not questions:
            return 0.0
        answered = sum(1 for q in questions if q.id in self.answers)
        return answered / len(questions) * 100

    def snapshot(self) -> SessionState:
        now = self.now
        remaining = None
        if self.status is SessionStatus.in_progress:
            target = policy.countdown_target(self.assignment, self.started_at) or self.assignment.due_date
            remaining = policy.time_remaining(target, now)
        return SessionState(
            assignment_id=self.assignment.id,
            user_id=self.user_id,
            state=self.status.value,
            dirty=self.dirty,
            answers=dict(self.answers),
            time_remaining=remaining,
            last_saved_at=self.last_saved_at,
            submission_id=self.submission.id if self.submission else None,
            can_start=self.can_start,
            can_edit=self.status is SessionStatus.in_progress and self.can_edit,
            can_submit=(
                self.status is SessionStatus.in_progress
                and self.can_submit
                and not self.submit_in_flight
            ),
            can_retake=self.can_retake,
            submit_in_flight=self.submit_in_flight,
            current_index=self.current_index,
            show_preview=self.show_preview,
            progress=self.progress(),
        )

    # ---- Internals ----

    def _build_submission(self, **overrides) -> Submission:
        created_at = None
        if self.submission is not None and not self.submission.is_submitted:
            created_at = self.submission.created_at
        elapsed = 0
        if self.started_at is not None:
            elapsed = max(0, int((self.now - self.started_at).total_seconds()))
        data = dict(
            user_id=self.user_id,
            assignment_id=self.assignment.id,
            answers=dict(self.answers),
            created_at=created_at,
            time_spent=elapsed,
        )
        data.update(overrides)
        return Submission(**data)

    async def _finalize(self) -> bool:
        self._cancel_autosave()
        self._in_flight += 1
        try:
            async with self._write_lock:
                if self.status is not SessionStatus.in_progress:
                    return False
                now = self.now
                final = self._build_submission(
                    is_submitted=True,
                    submitted_at=now,
                    is_late=policy.is_overdue(self.assignment.due_date, now),
                )
                saved = await run_in_threadpool(self.store.save_final, final)
                self.submission = saved
                self.status = SessionStatus.completed
                self.dirty = False
        finally:
            self._in_flight -= 1

        self._cancel_countdown()
        logger.info("%s submitted as %s%s", self.key, saved.id, " (late)" if saved.is_late else "")
        return True

    def _schedule_autosave(self) -> None:
        self._cancel_autosave()
        if not self.can_edit:
            return
        self._autosave_task = asyncio.create_task(self._autosave_after(self.autosave_delay))

    async def _autosave_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        # past the quiet period the save must not be cancelled mid-write
        self._autosave_task = None
        await self.autosave()

    def _cancel_autosave(self) -> None:
        if self._autosave_task is not None:
            self._autosave_task.cancel()
            self._autosave_task = None

    def _start_countdown(self) -> None:
        self._cancel_countdown()
        if not policy.has_time_limit(self.assignment):
            return
        self._countdown_task = asyncio.create_task(self._run_countdown())

    async def _run_countdown(self) -> None:
        while self.status is SessionStatus.in_progress:
            await self.tick()
            if self.status is not SessionStatus.in_progress:
                break
            await asyncio.sleep(self.countdown_interval)

    def _cancel_countdown(self) -> None:
        task = self._countdown_task
        self._countdown_task = None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
