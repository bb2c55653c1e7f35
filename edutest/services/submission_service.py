# edutest/services/submission_service.py
import logging
from typing import List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from edutest.core.config import settings
from edutest.core.exceptions import (
    DuplicateSubmissionError,
    PersistenceError,
    PreconditionError,
)
from edutest.models.submission import AnswerImage, Submission
from edutest.models.test import Test
from edutest.workers import queue as job_queue

logger = logging.getLogger(__name__)


def has_submission(db: Session, *, test_id: int, student_id: int) -> bool:
    return (
        db.query(Submission.id)
        .filter(Submission.test_id == test_id, Submission.student_id == student_id)
        .first()
        is not None
    )


def create_submission(db: Session, *, test_id: int, student_id: int) -> Submission:
    """
    Create the (empty) submission for a finished session.

    Raises PreconditionError when the test is gone,
    DuplicateSubmissionError when the student already submitted it and
    PersistenceError when the insert itself fails.
    """
    if db.get(Test, test_id) is None:
        raise PreconditionError(f"Test {test_id} does not exist")
    if has_submission(db, test_id=test_id, student_id=student_id):
        raise DuplicateSubmissionError("You have already submitted this test")

    submission = Submission(test_id=test_id, student_id=student_id, graded=False)
    db.add(submission)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise DuplicateSubmissionError("You have already submitted this test") from e
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error adding submission for test {test_id}: {e}")
        raise PersistenceError("Failed to submit test") from e

    db.refresh(submission)
    logger.info(f"Created submission {submission.id} for test {test_id}, student {student_id}")
    return submission


def record_answer_images(
    db: Session,
    *,
    submission: Submission,
    uploads: list[tuple[int, str, str]],
) -> List[AnswerImage]:
    """
    Attach uploaded answer images to a submission.

    ``uploads`` holds (question_number, public_url, blob_path) tuples.
    """
    submission_id = submission.id
    images = [
        AnswerImage(
            submission_id=submission_id,
            question_number=question_number,
            image_url=url,
            image_path=path,
        )
        for question_number, url, path in uploads
    ]
    if not images:
        return []
    db.add_all(images)
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error saving answer images for submission {submission_id}: {e}")
        raise PersistenceError("Failed to record answer images") from e
    try:
        db.refresh(submission)
        return list(submission.answers)
    except SQLAlchemyError as e:
        logger.error(f"Submission {submission_id} vanished while saving answer images: {e}")
        raise PersistenceError("Failed to record answer images") from e


def get_submission(db: Session, submission_id: int) -> Optional[Submission]:
    return db.get(Submission, submission_id)


def list_submissions_for_student(
    db: Session,
    *,
    student_id: int,
    skip: int = 0,
    limit: int = 100,
) -> List[Submission]:
    """
    student: own submissions
    """
    return (
        db.query(Submission)
        .filter(Submission.student_id == student_id)
        .order_by(Submission.submitted_at.desc(), Submission.id.desc())
        .offset(skip)
        .limit(limit)
        .all()
    )


def list_submissions_for_test(
    db: Session,
    *,
    test_id: int,
    skip: int = 0,
    limit: int = 100,
) -> List[Submission]:
    """
    teacher: all submissions of one test
    """
    return (
        db.query(Submission)
        .filter(Submission.test_id == test_id)
        .order_by(Submission.submitted_at.desc(), Submission.id.desc())
        .offset(skip)
        .limit(limit)
        .all()
    )


def delete_submission(db: Session, *, db_obj: Submission) -> None:
    """
    Remove a submission (and its answer images) from a student's history.
    """
    submission_id = db_obj.id
    paths = [a.image_path for a in db_obj.answers]
    db.delete(db_obj)
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to delete submission {submission_id}: {e}")
        raise PersistenceError("Failed to delete submission") from e
    job_queue.schedule_blob_cleanup(settings.ANSWER_IMAGES_BUCKET, paths)
