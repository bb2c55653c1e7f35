# edutest/services/task_service.py
import logging
from typing import List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from edutest.core.config import settings
from edutest.core.exceptions import (
    DuplicateSubmissionError,
    PersistenceError,
    PreconditionError,
    UploadError,
)
from edutest.models.task import Task, TaskSubmission
from edutest.schemas.auth import Principal
from edutest.schemas.task import TaskCreate
from edutest.services.storage import BlobStorage, make_blob_key
from edutest.workers import queue as job_queue

logger = logging.getLogger(__name__)


def _commit(db: Session, message: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"{message}: {e}")
        raise PersistenceError(message) from e


def create_task(
    db: Session,
    *,
    teacher: Principal,
    obj_in: TaskCreate,
) -> Task:
    db_obj = Task(
        created_by=teacher.id,
        title=obj_in.title,
        description=obj_in.description,
        due_date=obj_in.due_date,
        status="active",
    )
    db.add(db_obj)
    _commit(db, "Failed to create task")
    db.refresh(db_obj)
    return db_obj


def get_task(db: Session, task_id: int) -> Optional[Task]:
    return db.get(Task, task_id)


def list_tasks(db: Session, *, skip: int = 0, limit: int = 100) -> List[Task]:
    return (
        db.query(Task)
        .order_by(Task.due_date.asc(), Task.id.asc())
        .offset(skip)
        .limit(limit)
        .all()
    )


def attach_task_file(
    db: Session,
    storage: BlobStorage,
    *,
    db_obj: Task,
    filename: str,
    content_type: str | None,
    data: bytes,
) -> Task:
    """
    Attach a reference file to a task. If saving the URL fails the task is
    kept without an attachment and the blob is queued for deletion.
    """
    if not data:
        raise PreconditionError("The uploaded file is empty")
    if len(data) > settings.MAX_TASK_ATTACHMENT_BYTES:
        raise PreconditionError(
            f"Attachments are limited to {settings.MAX_TASK_ATTACHMENT_BYTES} bytes"
        )

    bucket = settings.TASK_ATTACHMENTS_BUCKET
    path = make_blob_key(db_obj.id, filename=filename)
    try:
        url = storage.upload(bucket, path, data, content_type)
    except Exception as e:
        logger.error(f"Upload of attachment for task {db_obj.id} failed: {e}")
        raise UploadError("Failed to upload the attachment") from e

    old_path = db_obj.attachment_path
    db_obj.attachment_url = url
    db_obj.attachment_path = path
    db.add(db_obj)
    try:
        _commit(db, f"Failed to save attachment for task {db_obj.id}")
    except PersistenceError:
        job_queue.schedule_blob_cleanup(bucket, [path])
        raise
    db.refresh(db_obj)
    if old_path:
        job_queue.schedule_blob_cleanup(bucket, [old_path])
    return db_obj


def delete_task(db: Session, *, db_obj: Task) -> None:
    """
    Delete a task and all its submissions in one transaction, then queue the
    task attachment and the confirmation files for deletion.
    """
    task_id = db_obj.id
    paths = [db_obj.attachment_path] + [s.attachment_path for s in db_obj.submissions]
    db.delete(db_obj)
    _commit(db, f"Failed to delete task {task_id}")
    logger.info(f"Deleted task {task_id}")
    job_queue.schedule_blob_cleanup(settings.TASK_ATTACHMENTS_BUCKET, paths)


def has_task_submission(db: Session, *, task_id: int, student_id: int) -> bool:
    return (
        db.query(TaskSubmission.id)
        .filter(TaskSubmission.task_id == task_id, TaskSubmission.student_id == student_id)
        .first()
        is not None
    )


def submit_task(
    db: Session,
    storage: BlobStorage,
    *,
    task_id: int,
    student: Principal,
    filename: str,
    content_type: str | None,
    data: bytes,
) -> TaskSubmission:
    """
    Student confirms a task with one photo or video.

    The file is uploaded first; when the record cannot be written afterwards
    the upload is queued for deletion and PersistenceError is raised.
    """
    if student.role != "student":
        raise PreconditionError("Only students can submit tasks")
    task = get_task(db, task_id)
    if task is None:
        raise PreconditionError(f"Task {task_id} does not exist")
    if has_task_submission(db, task_id=task_id, student_id=student.id):
        raise DuplicateSubmissionError("You have already submitted this task")
    if not content_type or not (content_type.startswith("image/") or content_type.startswith("video/")):
        raise PreconditionError("Please upload an image or video file as confirmation")
    if not data:
        raise PreconditionError("The uploaded file is empty")
    if len(data) > settings.MAX_TASK_ATTACHMENT_BYTES:
        raise PreconditionError(
            f"Attachments are limited to {settings.MAX_TASK_ATTACHMENT_BYTES} bytes"
        )

    bucket = settings.TASK_ATTACHMENTS_BUCKET
    path = make_blob_key(task_id, student.id, filename=filename)
    try:
        url = storage.upload(bucket, path, data, content_type)
    except Exception as e:
        logger.error(f"Upload of confirmation for task {task_id} failed: {e}")
        raise UploadError("Failed to upload your confirmation file") from e

    submission = TaskSubmission(
        task_id=task_id,
        student_id=student.id,
        attachment_url=url,
        attachment_path=path,
        status="submitted",
    )
    db.add(submission)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        job_queue.schedule_blob_cleanup(bucket, [path])
        raise DuplicateSubmissionError("You have already submitted this task") from e
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error submitting task {task_id}: {e}")
        job_queue.schedule_blob_cleanup(bucket, [path])
        raise PersistenceError("Failed to submit task") from e

    db.refresh(submission)
    logger.info(f"Student {student.id} submitted task {task_id}")
    return submission


def get_task_submission(db: Session, submission_id: int) -> Optional[TaskSubmission]:
    return db.get(TaskSubmission, submission_id)


def list_task_submissions(
    db: Session,
    *,
    task_id: int,
    skip: int = 0,
    limit: int = 100,
) -> List[TaskSubmission]:
    return (
        db.query(TaskSubmission)
        .filter(TaskSubmission.task_id == task_id)
        .order_by(TaskSubmission.submitted_at.desc(), TaskSubmission.id.desc())
        .offset(skip)
        .limit(limit)
        .all()
    )


def list_task_submissions_for_student(
    db: Session,
    *,
    student_id: int,
    skip: int = 0,
    limit: int = 100,
) -> List[TaskSubmission]:
    return (
        db.query(TaskSubmission)
        .filter(TaskSubmission.student_id == student_id)
        .order_by(TaskSubmission.submitted_at.desc(), TaskSubmission.id.desc())
        .offset(skip)
        .limit(limit)
        .all()
    )


def review_task_submission(
    db: Session,
    *,
    db_obj: TaskSubmission,
    feedback: str | None,
) -> TaskSubmission:
    db_obj.status = "reviewed"
    db_obj.feedback = feedback or None
    db.add(db_obj)
    _commit(db, f"Failed to review task submission {db_obj.id}")
    db.refresh(db_obj)
    return db_obj


def delete_task_submission(db: Session, *, db_obj: TaskSubmission) -> None:
    path = db_obj.attachment_path
    db.delete(db_obj)
    _commit(db, f"Failed to delete task submission {db_obj.id}")
    job_queue.schedule_blob_cleanup(settings.TASK_ATTACHMENTS_BUCKET, [path])
