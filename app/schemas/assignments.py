"""
Pydantic schemas for assignments, questions, answers and submissions.

Questions are a closed union discriminated on ``type``. Submissions persist
answers as plain values keyed by question id; each question variant knows how
to read its own answer type out of that mapping.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _answer_text(raw: Any) -> Optional[str]:
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        raw = str(raw)
    if not isinstance(raw, str) or not raw.strip():
        return None
    return raw


# ---- Answers ----
class MultipleChoiceAnswer(BaseModel):
    text: str  # visible option text, not its index


class ShortAnswer(BaseModel):
    text: str


class EssayAnswer(BaseModel):
    text: str


class FileUploadAnswer(BaseModel):
    filename: str


Answer = Union[MultipleChoiceAnswer, ShortAnswer, EssayAnswer, FileUploadAnswer]


# ---- Questions ----
class QuestionBase(BaseModel, ABC):
    id: str
    text: str
    points: int = Field(default=0, ge=0)
    explanation: Optional[str] = None
    required: bool = False

    @abstractmethod
    def read_answer(self, raw: Any) -> Optional[Answer]:
        """The typed answer, or None when the raw value is missing or unusable."""

    def check(self, answer: Optional[Answer]) -> Optional[bool]:
        """True/False when auto-gradable, None when it needs a human."""
        return None

    def answer_key(self) -> Any:
        return None


class MultipleChoiceQuestion(QuestionBase):
    type: Literal["multiple-choice"] = "multiple-choice"
    options: List[str] = Field(default_factory=list)
    correct_answer: Optional[int] = None  # index into options

    def correct_option(self) -> Optional[str]:
        if self.correct_answer is None:
            return None
        if not 0 <= self.correct_answer < len(self.options):
            return None
        return self.options[self.correct_answer]

    def read_answer(self, raw: Any) -> Optional[MultipleChoiceAnswer]:
        text = _answer_text(raw)
        return MultipleChoiceAnswer(text=text) if text is not None else None

    def check(self, answer: Optional[Answer]) -> Optional[bool]:
        expected = self.correct_option()
        if expected is None:
            return None
        return answer is not None and answer.text == expected

    def answer_key(self) -> Any:
        return self.correct_option()


class ShortAnswerQuestion(QuestionBase):
    type: Literal["short-answer"] = "short-answer"
    correct_answer: Optional[str] = None

    def read_answer(self, raw: Any) -> Optional[ShortAnswer]:
        text = _answer_text(raw)
        return ShortAnswer(text=text) if text is not None else None

    def check(self, answer: Optional[Answer]) -> Optional[bool]:
        if self.correct_answer is None:
            return None
        if answer is None:
            return False
        return answer.text.strip().lower() == self.correct_answer.strip().lower()

    def answer_key(self) -> Any:
        return self.correct_answer


class EssayQuestion(QuestionBase):
    type: Literal["essay"] = "essay"
    correct_answer: Optional[str] = None  # model answer, shown after the deadline

    def read_answer(self, raw: Any) -> Optional[EssayAnswer]:
        text = _answer_text(raw)
        return EssayAnswer(text=text) if text is not None else None

    def answer_key(self) -> Any:
        return self.correct_answer


class FileUploadQuestion(QuestionBase):
    type: Literal["file-upload"] = "file-upload"

    def read_answer(self, raw: Any) -> Optional[FileUploadAnswer]:
        name = _answer_text(raw)
        return FileUploadAnswer(filename=name) if name is not None else None


Question = Annotated[
    Union[MultipleChoiceQuestion, ShortAnswerQuestion, EssayQuestion, FileUploadQuestion],
    Field(discriminator="type"),
]


# ---- Assignment ----
class Assignment(BaseModel):
    id: str
    unit_id: Optional[str] = None
    title: str
    description: str = ""
    instructions: Optional[str] = None
    questions: List[Question] = Field(default_factory=list)
    total_points: int = 0
    due_date: datetime
    allow_late_submission: bool = False
    late_penalty: Optional[float] = Field(default=None, ge=0)  # percent per day late
    time_limit: Optional[int] = Field(default=None, ge=0)  # minutes, 0/None = unlimited
    is_published: bool = False
    show_answers_after_deadline: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("due_date", "created_at", "updated_at")
    @classmethod
    def normalize_timezone(cls, value):
        return _as_utc(value)

    def question(self, question_id: str) -> Optional[QuestionBase]:
        for q in self.questions:
            if q.id == question_id:
                return q
        return None

    def for_student(self) -> dict:
        """Dump without answer keys or explanations."""
        data = self.model_dump(mode="json")
        for q in data["questions"]:
            q.pop("correct_answer", None)
            q.pop("explanation", None)
        return data


class AssignmentUpsert(Assignment):
    """Instructor-side body: the point total and answer keys must be consistent."""

    @model_validator(mode="after")
    def check_consistency(self):
        expected = sum(q.points for q in self.questions)
        if self.total_points != expected:
            raise ValueError(
                f"total_points ({self.total_points}) must equal the sum of question points ({expected})"
            )
        seen = set()
        for q in self.questions:
            if q.id in seen:
                raise ValueError(f"Duplicate question id '{q.id}'")
            seen.add(q.id)
            if isinstance(q, MultipleChoiceQuestion) and q.correct_answer is not None:
                if q.correct_option() is None:
                    raise ValueError(f"Question '{q.id}' correct_answer is not a valid option index")
        return self


# ---- Submission ----
class Submission(BaseModel):
    id: Optional[str] = None
    user_id: str
    assignment_id: str
    answers: Dict[str, Any] = Field(default_factory=dict)
    is_submitted: bool = False
    submitted_at: Optional[datetime] = None
    last_saved_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    is_late: bool = False
    score: Optional[int] = Field(default=None, ge=0, le=100)
    feedback: Optional[str] = None
    graded_at: Optional[datetime] = None
    graded_by: Optional[str] = None
    auto_graded: bool = False
    time_spent: int = 0  # seconds

    @field_validator("submitted_at", "last_saved_at", "created_at", "graded_at")
    @classmethod
    def normalize_timezone(cls, value):
        return _as_utc(value)

    @property
    def activity_at(self) -> Optional[datetime]:
        return self.submitted_at or self.last_saved_at


class SubmissionGrade(BaseModel):
    score: int = Field(ge=0, le=100)
    feedback: Optional[str] = None


# ---- Results ----
class QuestionFeedback(BaseModel):
    question_id: str
    is_correct: Optional[bool] = None
    user_answer: Any = None
    correct_answer: Any = None
    explanation: Optional[str] = None
    points: int
    earned_points: int = 0
    feedback: Optional[str] = None


class AssignmentResult(BaseModel):
    submission: Submission
    assignment: Assignment
    feedback: List[QuestionFeedback]
    can_view_answers: bool
    deadline_passed: bool
    score: Optional[int] = None


# ---- Taking session ----
class AnswerUpdate(BaseModel):
    value: Any = None


class NavigationRequest(BaseModel):
    action: Literal["next", "previous", "preview"]


class SessionState(BaseModel):
    assignment_id: str
    user_id: str
    state: str
    dirty: bool
    answers: Dict[str, Any]
    time_remaining: Optional[str] = None
    last_saved_at: Optional[datetime] = None
    submission_id: Optional[str] = None
    can_start: bool
    can_edit: bool
    can_submit: bool
    can_retake: bool
    submit_in_flight: bool
    current_index: int = 0
    show_preview: bool = False
    progress: float = 0.0
