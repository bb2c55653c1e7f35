# edutest/models/test.py
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from edutest.db.base_class import Base

class Test(Base):
    __tablename__ = "tests"

    id = Column(Integer, primary_key=True, index=True)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)

    # only field that may change after creation
    pdf_url = Column(String(1024), nullable=True)
    pdf_path = Column(String(512), nullable=True)

    num_questions = Column(Integer, nullable=False)
    duration_minutes = Column(Integer, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    submissions = relationship(
        "Submission",
        back_populates="test",
        cascade="all, delete-orphan",
    )
