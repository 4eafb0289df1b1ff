"""
Session Models
Wizard session snapshot and the user's generation parameters
"""
from datetime import datetime
from enum import IntEnum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from worksheet_wizard.models.jobs import JobKind
from worksheet_wizard.models.worksheet import CatalogItem, Worksheet


class WizardStep(IntEnum):
    LOGIN = 1
    CONFIGURE = 2
    REVIEW_METADATA = 3
    REVIEW_QUESTIONS = 4
    COMPLETE = 5


def default_question_dist() -> Dict[str, int]:
    return {
        "mcq_single_answer": 2,
        "mcq_multiple_answer": 3,
        "true_false": 1,
        "fill_in_the_blanks": 0,
        "very_short_answer": 1,
        "short_answer": 1,
        "long_answer": 2,
        "match_the_column": 0,
    }


def default_difficulty_dist() -> Dict[str, int]:
    return {"easy": 30, "medium": 50, "hard": 20}


def default_bloom_dist() -> Dict[str, int]:
    return {
        "remember": 30,
        "understand": 30,
        "apply": 30,
        "analyze": 10,
        "evaluate": 0,
        "create": 0,
    }


def _to_int(value: Any, fallback: int) -> int:
    """Lenient integer parse: bad or empty input becomes the fallback"""
    try:
        return int(value)
    except (TypeError, ValueError):
        try:
            return int(float(value))
        except (TypeError, ValueError):
            return fallback


class FormData(BaseModel):
    """
    Generation parameters chosen in the Configure step

    Difficulty and Bloom percentages should each add up to 100. The totals
    are reported to the user but never block a submission.
    """
    board: str = ""
    grade: str = ""
    subject: str = ""
    section: str = ""
    topic: str = ""
    num_questions: int = 10
    question_dist: Dict[str, int] = Field(default_factory=default_question_dist)
    difficulty_dist: Dict[str, int] = Field(default_factory=default_difficulty_dist)
    bloom_dist: Dict[str, int] = Field(default_factory=default_bloom_dist)

    @field_validator("num_questions", mode="before")
    @classmethod
    def parse_num_questions(cls, v):
        return _to_int(v, 10) or 10

    @field_validator("question_dist", "difficulty_dist", "bloom_dist", mode="before")
    @classmethod
    def parse_distribution(cls, v):
        if not isinstance(v, dict):
            return v
        return {str(k): _to_int(val, 0) for k, val in v.items()}

    @property
    def difficulty_total(self) -> int:
        return sum(self.difficulty_dist.values())

    @property
    def bloom_total(self) -> int:
        return sum(self.bloom_dist.values())

    @property
    def is_complete(self) -> bool:
        """Board, grade and subject are required before submitting"""
        return bool(self.board and self.grade and self.subject)


class Session(BaseModel):
    """Wizard state persisted in the local session cache"""
    token: str = ""
    token_expiry: Optional[datetime] = None
    step: WizardStep = WizardStep.LOGIN
    form_data: FormData = Field(default_factory=FormData)
    worksheet_id: str = ""
    metadata: Optional[Dict[str, Any]] = None
    question_config: Optional[Dict[str, Any]] = None
    worksheet: Optional[Worksheet] = None
    boards: List[CatalogItem] = Field(default_factory=list)
    grades: List[CatalogItem] = Field(default_factory=list)
    subjects: List[CatalogItem] = Field(default_factory=list)
    pending_job: Optional[JobKind] = None

    def is_expired(self, now: datetime) -> bool:
        return self.token_expiry is None or now >= self.token_expiry

    def reset_worksheet_state(self) -> None:
        """Drop everything scoped to one worksheet, keep auth and catalogs"""
        self.worksheet_id = ""
        self.metadata = None
        self.question_config = None
        self.worksheet = None
        self.pending_job = None
