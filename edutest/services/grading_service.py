# edutest/services/grading_service.py
from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from edutest.core.exceptions import (
    MissingResourceError,
    PersistenceError,
    PreconditionError,
)
from edutest.models.submission import Submission
from edutest.models.test import Test
from edutest.schemas.auth import Principal

logger = logging.getLogger(__name__)


def _get_submission_and_test(
    db: Session,
    submission_id: int,
) -> tuple[Submission, Test]:
    submission: Optional[Submission] = db.get(Submission, submission_id)
    if submission is None:
        raise MissingResourceError(f"submission {submission_id} not found")

    test: Optional[Test] = db.get(Test, submission.test_id)
    if test is None:
        raise MissingResourceError(
            f"test {submission.test_id} for submission {submission_id} not found"
        )

    return submission, test


def _validate_score(score, num_questions: int) -> Decimal:
    try:
        value = Decimal(str(score))
    except (InvalidOperation, ValueError) as e:
        raise PreconditionError("Please enter a valid numeric score") from e
    if not value.is_finite():
        raise PreconditionError("Please enter a valid numeric score")
    if value < 0 or value > num_questions:
        raise PreconditionError(f"Score must be between 0 and {num_questions}")
    return value


def grade_submission(
    db: Session,
    *,
    submission_id: int,
    teacher: Principal,
    score,
    feedback: str | None = None,
) -> Submission:
    """
    Teacher grades a submission: score (out of the test's question count)
    and feedback are written together with graded=True. Grading again
    overwrites the previous values.
    """
    if teacher.role != "teacher":
        raise PreconditionError("Only teachers can grade submissions")

    submission, test = _get_submission_and_test(db, submission_id)
    value = _validate_score(score, test.num_questions)

    submission.score = value
    submission.feedback = feedback or None
    submission.graded = True
    submission.graded_by = teacher.id
    submission.graded_at = datetime.now(timezone.utc)

    db.add(submission)
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error grading submission {submission_id}: {e}")
        raise PersistenceError("Failed to grade submission") from e
    db.refresh(submission)
    logger.info(f"Teacher {teacher.id} graded submission {submission_id}: {value}")
    return submission
