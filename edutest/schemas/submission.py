# edutest/schemas/submission.py
from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal


class AnswerImagePublic(BaseModel):
    question_number: int
    image_url: str

    model_config = {"from_attributes": True}


class SubmissionPublic(BaseModel):
    id: int
    test_id: int
    student_id: int
    answers: list[AnswerImagePublic] = []
    submitted_at: datetime | None = None

    score: Decimal | None = None
    feedback: str | None = None
    graded: bool = False
    graded_at: datetime | None = None

    model_config = {"from_attributes": True}


class GradeRequest(BaseModel):
    """Teacher grading input."""
    score: Decimal
    feedback: str | None = None


class UploadFailurePublic(BaseModel):
    question_number: int
    reason: str


class FinishResponse(BaseModel):
    submission: SubmissionPublic
    failed_uploads: list[UploadFailurePublic] = Field(default_factory=list)
    expired: bool = False
