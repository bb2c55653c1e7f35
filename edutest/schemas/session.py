# edutest/schemas/session.py
from pydantic import BaseModel


class CapturedAnswerPublic(BaseModel):
    question_number: int
    filename: str
    content_type: str
    size: int
    preview_handle: str


class DocumentStatePublic(BaseModel):
    state: str
    url: str | None = None
    page_count: int | None = None
    current_page: int | None = None
    attempts: int = 0
    message: str | None = None


class TestSessionPublic(BaseModel):
    id: str
    test_id: int
    student_id: int
    state: str
    remaining_seconds: int
    num_questions: int
    answers: list[CapturedAnswerPublic] = []
    document: DocumentStatePublic | None = None
    submission_id: int | None = None
