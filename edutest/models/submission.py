# edutest/models/submission.py
from sqlalchemy import (
    Boolean,
    Column,
    Integer,
    String,
    Text,
    DateTime,
    Numeric,
    ForeignKey,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from edutest.db.base_class import Base

class Submission(Base):
    __tablename__ = "submissions"
    __table_args__ = (
        UniqueConstraint("test_id", "student_id", name="uq_submission_test_student"),
    )

    id = Column(Integer, primary_key=True, index=True)

    test_id = Column(Integer, ForeignKey("tests.id", ondelete="CASCADE"), nullable=False, index=True)
    student_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    submitted_at = Column(DateTime(timezone=True), server_default=func.now())

    # Teacher grading: graded=True implies score is set
    score = Column(Numeric(6, 2), nullable=True)
    feedback = Column(Text, nullable=True)
    graded = Column(Boolean, nullable=False, default=False)
    graded_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    graded_at = Column(DateTime(timezone=True), nullable=True)

    test = relationship("Test", back_populates="submissions")
    answers = relationship(
        "AnswerImage",
        back_populates="submission",
        cascade="all, delete-orphan",
        order_by="AnswerImage.question_number",
    )


class AnswerImage(Base):
    __tablename__ = "answer_images"
    __table_args__ = (
        UniqueConstraint("submission_id", "question_number", name="uq_answer_question"),
    )

    id = Column(Integer, primary_key=True, index=True)
    submission_id = Column(
        Integer, ForeignKey("submissions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    question_number = Column(Integer, nullable=False)
    image_url = Column(String(1024), nullable=False)
    image_path = Column(String(512), nullable=False)  # key inside the answer bucket

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    submission = relationship("Submission", back_populates="answers")
