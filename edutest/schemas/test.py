# edutest/schemas/test.py
from pydantic import BaseModel, Field
from datetime import datetime


class TestBase(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: str | None = None
    num_questions: int = Field(ge=1)
    duration_minutes: int = Field(ge=1)


class TestCreate(TestBase):
    pass


class TestPublic(TestBase):
    id: int
    created_by: int
    pdf_url: str
    created_at: datetime | None = None

    model_config = {"from_attributes": True}
