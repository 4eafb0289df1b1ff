"""
Worksheet Models
Pydantic models for catalog entries and generated worksheets
FILE: worksheet_wizard/models/worksheet.py
"""
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field, field_validator


# Canonical question type order used for display and export
QUESTION_TYPES = [
    "mcq_single_answer",
    "mcq_multiple_answer",
    "true_false",
    "fill_in_the_blanks",
    "very_short_answer",
    "short_answer",
    "long_answer",
    "match_the_column",
]


def as_text(value: Any) -> Any:
    """Lenient text: booleans as JSON literals, numbers as strings, lists element-wise"""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, list):
        return ["" if v is None else as_text(v) for v in value]
    return value


class CatalogItem(BaseModel):
    """Board, grade or subject entry returned by the catalog endpoints"""
    id: Optional[Union[str, int]] = None
    name: Optional[str] = None

    class Config:
        extra = "allow"
        json_schema_extra = {
            "example": {"id": "b1", "name": "CBSE"}
        }


class QuestionTags(BaseModel):
    """Learning objective, Bloom level and difficulty tags of a question"""
    learning_objectives: Optional[Union[str, List[str]]] = None
    bloom: Optional[str] = None
    difficulty: Optional[str] = None

    class Config:
        extra = "allow"

    @field_validator("learning_objectives", "bloom", "difficulty", mode="before")
    @classmethod
    def coerce_text(cls, v):
        return as_text(v)


class Explanation(BaseModel):
    """Explanation record attached to a question"""
    learning_objective: Optional[str] = None
    explanation: Optional[str] = None
    key_concepts: List[str] = Field(default_factory=list)
    common_mistakes: Optional[Union[str, List[str]]] = None
    real_world_application: Optional[str] = None

    class Config:
        extra = "allow"

    @field_validator("key_concepts", mode="before")
    @classmethod
    def none_to_empty(cls, v):
        return as_text(v or [])

    @field_validator("learning_objective", "explanation", "common_mistakes", "real_world_application", mode="before")
    @classmethod
    def coerce_text(cls, v):
        return as_text(v)


class Question(BaseModel):
    """
    Single generated question

    options is only set for MCQ types, columnA/columnB only for
    match-the-column questions.
    """
    question: str = ""
    options: Optional[List[str]] = None
    answer: Optional[Union[str, List[str]]] = None
    tags: Optional[QuestionTags] = None
    explanations: Optional[List[Explanation]] = None
    columnA: Optional[Any] = None
    columnB: Optional[Any] = None

    class Config:
        extra = "allow"
        json_schema_extra = {
            "example": {
                "question": "What is the capital of France?",
                "options": ["A. Berlin", "B. Paris", "C. Rome", "D. Madrid"],
                "answer": "B",
                "tags": {
                    "learning_objectives": "Recall European capitals",
                    "bloom": "remember",
                    "difficulty": "easy"
                }
            }
        }

    @field_validator("question", mode="before")
    @classmethod
    def none_to_blank(cls, v):
        return "" if v is None else as_text(v)

    @field_validator("options", "answer", mode="before")
    @classmethod
    def coerce_text(cls, v):
        return as_text(v)


class Worksheet(BaseModel):
    """Finished worksheet as returned by the generate-worksheet job"""
    id: Optional[Union[str, int]] = None
    board: Optional[CatalogItem] = None
    grade: Optional[CatalogItem] = None
    subject: Optional[CatalogItem] = None
    topic: Optional[str] = None
    section: Optional[str] = None
    number_of_questions: Optional[int] = None
    status: Optional[str] = None
    questions: Dict[str, List[Question]] = Field(default_factory=dict)

    class Config:
        extra = "allow"

    @field_validator("topic", "section", "status", mode="before")
    @classmethod
    def coerce_text(cls, v):
        return as_text(v)

    @field_validator("questions", mode="before")
    @classmethod
    def drop_non_question_entries(cls, v):
        """Keep only type -> list entries (the API may add a "msg" key) and their question objects"""
        if not isinstance(v, dict):
            return {}
        return {
            k: [q for q in (items or []) if isinstance(q, (dict, Question))]
            for k, items in v.items()
            if items is None or isinstance(items, list)
        }

    def non_empty_types(self) -> List[str]:
        """Known question types that carry at least one question, in canonical order"""
        return [t for t in QUESTION_TYPES if self.questions.get(t)]
