from __future__ import annotations

import pytest
from pydantic import ValidationError

from app.schemas.assignments import (
    AssignmentUpsert,
    FileUploadAnswer,
    MultipleChoiceQuestion,
    QuestionBase,
)


def test_question_base_cannot_be_instantiated():
    with pytest.raises(TypeError):
        QuestionBase(id="q1", text="Untyped")


def test_each_variant_reads_its_own_answer(make_assignment):
    assignment = make_assignment()

    assert assignment.question("q1").read_answer("B").text == "B"
    assert assignment.question("q2").read_answer("   ") is None
    assert assignment.question("q3").read_answer(True) is None
    assert assignment.question("q4").read_answer("notebook.ipynb") == FileUploadAnswer(filename="notebook.ipynb")


def test_multiple_choice_key_outside_options_is_undetermined():
    question = MultipleChoiceQuestion(id="q1", text="Pick", options=["A"], correct_answer=3)
    assert question.correct_option() is None
    assert question.check(question.read_answer("A")) is None


def test_upsert_rejects_duplicate_question_ids(make_assignment):
    body = make_assignment().model_dump(mode="json")
    body["questions"][1]["id"] = "q1"
    with pytest.raises(ValidationError):
        AssignmentUpsert.model_validate(body)


def test_for_student_strips_keys_and_explanations(make_assignment):
    data = make_assignment().for_student()
    for question in data["questions"]:
        assert "correct_answer" not in question
        assert "explanation" not in question
