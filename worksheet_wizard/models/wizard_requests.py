"""
Wizard Request/Response Models
"""
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class LoginRequest(BaseModel):
    """Credentials for the worksheet API"""
    username: str = Field(..., min_length=1, description="Account username")
    password: str = Field(..., min_length=1, description="Account password")

    class Config:
        json_schema_extra = {
            "example": {
                "username": "teacher@example.com",
                "password": "secret"
            }
        }


class BoardSelection(BaseModel):
    board: str = Field(..., description="Board id from the catalog")


class GradeSelection(BaseModel):
    grade: str = Field(..., description="Grade id from the catalog")


class FormUpdate(BaseModel):
    """
    Partial form update

    Only the fields that are sent are applied. Distribution maps are merged
    key by key.
    """
    subject: Optional[str] = None
    section: Optional[str] = None
    topic: Optional[str] = None
    num_questions: Optional[Any] = None
    question_dist: Optional[Dict[str, Any]] = None
    difficulty_dist: Optional[Dict[str, Any]] = None
    bloom_dist: Optional[Dict[str, Any]] = None

    class Config:
        json_schema_extra = {
            "example": {
                "topic": "Photosynthesis",
                "num_questions": 12,
                "difficulty_dist": {"hard": 25}
            }
        }


class WizardView(BaseModel):
    """Wizard state as shown to the front end"""
    step: int = Field(..., ge=1, le=5, description="Current wizard step")
    step_name: str
    username: str = ""
    loading: bool = False
    error: str = ""
    success: str = ""
    jobs: Dict[str, str] = Field(default_factory=dict, description="Poll state per job kind")
    difficulty_total: int
    bloom_total: int
    session: Dict[str, Any]


class ExportResult(BaseModel):
    path: str = Field(..., description="Where the workbook was written")
