# edutest/api/v1/endpoints/tasks.py
from typing import List

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status
from sqlalchemy.orm import Session

from edutest.api.deps import get_blob_storage
from edutest.api.errors import to_http_exception
from edutest.core.exceptions import EduTestError
from edutest.core.security import get_current_student, get_current_teacher, get_current_user
from edutest.db.session import get_db
from edutest.models.task import Task, TaskSubmission
from edutest.schemas.auth import Principal
from edutest.schemas.task import (
    TaskCreate,
    TaskPublic,
    TaskReviewRequest,
    TaskSubmissionPublic,
)
from edutest.services import task_service
from edutest.services.storage import BlobStorage

router = APIRouter(prefix="/tasks", tags=["tasks"])


def _get_owned_task(db: Session, task_id: int, teacher: Principal) -> Task:
    task = task_service.get_task(db, task_id)
    if not task:
        raise HTTPException(status_code=404, detail="Task not found")
    if task.created_by != teacher.id:
        raise HTTPException(status_code=403, detail="Not allowed to modify this task")
    return task


def _get_reviewable_submission(
    db: Session, submission_id: int, teacher: Principal
) -> TaskSubmission:
    submission = task_service.get_task_submission(db, submission_id)
    if not submission:
        raise HTTPException(status_code=404, detail="Task submission not found")
    if submission.task.created_by != teacher.id:
        raise HTTPException(status_code=403, detail="Not allowed to review this submission")
    return submission


# Declared before /{task_id} so "submissions" is not parsed as an id
@router.get("/submissions/me", response_model=List[TaskSubmissionPublic])
def list_my_task_submissions(
    db: Session = Depends(get_db),
    current_student: Principal = Depends(get_current_student),
    skip: int = 0,
    limit: int = 100,
):
    return task_service.list_task_submissions_for_student(
        db, student_id=current_student.id, skip=skip, limit=limit
    )


@router.put("/submissions/{submission_id}/review", response_model=TaskSubmissionPublic)
def review_task_submission(
    submission_id: int,
    payload: TaskReviewRequest,
    db: Session = Depends(get_db),
    current_teacher: Principal = Depends(get_current_teacher),
):
    submission = _get_reviewable_submission(db, submission_id, current_teacher)
    try:
        return task_service.review_task_submission(
            db, db_obj=submission, feedback=payload.feedback
        )
    except EduTestError as e:
        raise to_http_exception(e)


@router.delete("/submissions/{submission_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_task_submission(
    submission_id: int,
    db: Session = Depends(get_db),
    current_user: Principal = Depends(get_current_user),
):
    """
    A student can withdraw their own confirmation; a teacher can remove any
    confirmation on one of their tasks.
    """
    submission = task_service.get_task_submission(db, submission_id)
    if not submission:
        raise HTTPException(status_code=404, detail="Task submission not found")
    if current_user.role == "student":
        allowed = submission.student_id == current_user.id
    else:
        allowed = submission.task.created_by == current_user.id
    if not allowed:
        raise HTTPException(status_code=403, detail="Not allowed to delete this submission")
    try:
        task_service.delete_task_submission(db, db_obj=submission)
    except EduTestError as e:
        raise to_http_exception(e)
    return None


@router.post("/", response_model=TaskPublic, status_code=status.HTTP_201_CREATED)
def create_task(
    obj_in: TaskCreate,
    db: Session = Depends(get_db),
    current_teacher: Principal = Depends(get_current_teacher),
):
    try:
        return task_service.create_task(db, teacher=current_teacher, obj_in=obj_in)
    except EduTestError as e:
        raise to_http_exception(e)


@router.get("/", response_model=List[TaskPublic])
def list_tasks(
    db: Session = Depends(get_db),
    current_user: Principal = Depends(get_current_user),
    skip: int = 0,
    limit: int = 100,
):
    return task_service.list_tasks(db, skip=skip, limit=limit)


@router.get("/{task_id}", response_model=TaskPublic)
def get_task(
    task_id: int,
    db: Session = Depends(get_db),
    current_user: Principal = Depends(get_current_user),
):
    task = task_service.get_task(db, task_id)
    if not task:
        raise HTTPException(status_code=404, detail="Task not found")
    return task


@router.post("/{task_id}/attachment", response_model=TaskPublic)
def upload_task_attachment(
    task_id: int,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    storage: BlobStorage = Depends(get_blob_storage),
    current_teacher: Principal = Depends(get_current_teacher),
):
    task = _get_owned_task(db, task_id, current_teacher)
    try:
        return task_service.attach_task_file(
            db,
            storage,
            db_obj=task,
            filename=file.filename or "attachment",
            content_type=file.content_type,
            data=file.file.read(),
        )
    except EduTestError as e:
        raise to_http_exception(e)


@router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_task(
    task_id: int,
    db: Session = Depends(get_db),
    current_teacher: Principal = Depends(get_current_teacher),
):
    task = _get_owned_task(db, task_id, current_teacher)
    try:
        task_service.delete_task(db, db_obj=task)
    except EduTestError as e:
        raise to_http_exception(e)
    return None


@router.post(
    "/{task_id}/submit",
    response_model=TaskSubmissionPublic,
    status_code=status.HTTP_201_CREATED,
)
def submit_task(
    task_id: int,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    storage: BlobStorage = Depends(get_blob_storage),
    current_student: Principal = Depends(get_current_student),
):
    """
    Student confirms a task by uploading a photo or a video.
    """
    if not task_service.get_task(db, task_id):
        raise HTTPException(status_code=404, detail="Task not found")
    try:
        return task_service.submit_task(
            db,
            storage,
            task_id=task_id,
            student=current_student,
            filename=file.filename or "confirmation",
            content_type=file.content_type,
            data=file.file.read(),
        )
    except EduTestError as e:
        raise to_http_exception(e)


@router.get("/{task_id}/submissions", response_model=List[TaskSubmissionPublic])
def list_task_submissions(
    task_id: int,
    db: Session = Depends(get_db),
    current_teacher: Principal = Depends(get_current_teacher),
    skip: int = 0,
    limit: int = 100,
):
    _get_owned_task(db, task_id, current_teacher)
    return task_service.list_task_submissions(db, task_id=task_id, skip=skip, limit=limit)
