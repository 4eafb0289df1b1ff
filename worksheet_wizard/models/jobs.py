"""
Job Models
Asynchronous remote job kinds, poll states and status payloads
"""
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


STATUS_COMPLETED = "Completed"
STATUS_IN_PROGRESS = "In Progress"
NO_QUESTIONS_MSG = "No questions generated."


class JobKind(str, Enum):
    METADATA = "metadata"
    QUESTION_CONFIG = "question_config"
    WORKSHEET = "worksheet"


class PollState(str, Enum):
    SUBMITTED = "submitted"
    POLLING = "polling"
    DELAYED = "delayed"  # still polling, taking longer than expected
    COMPLETED = "completed"
    ABANDONED = "abandoned"
    TIMED_OUT = "timed_out"


class JobStatus(BaseModel):
    """Status check result: the `data` object of a job status response"""
    status: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_body(cls, body: Any) -> "JobStatus":
        """Build from a raw `{data: {status, ...}}` response body"""
        if not isinstance(body, dict) or not isinstance(body.get("data"), dict):
            raise ValueError("Job status response has no data object")
        data = body["data"]
        return cls(status=data.get("status"), data=data)
