# edutest/schemas/task.py
from pydantic import BaseModel, Field
from datetime import datetime


class TaskCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: str | None = None
    due_date: datetime


class TaskPublic(TaskCreate):
    id: int
    created_by: int
    attachment_url: str | None = None
    status: str
    created_at: datetime | None = None

    model_config = {"from_attributes": True}


class TaskSubmissionPublic(BaseModel):
    id: int
    task_id: int
    student_id: int
    status: str  # submitted / reviewed
    feedback: str | None = None
    attachment_url: str
    submitted_at: datetime | None = None

    model_config = {"from_attributes": True}


class TaskReviewRequest(BaseModel):
    feedback: str | None = None
