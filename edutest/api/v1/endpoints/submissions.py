# edutest/api/v1/endpoints/submissions.py
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from edutest.api.errors import to_http_exception
from edutest.core.exceptions import EduTestError
from edutest.core.security import get_current_student, get_current_teacher, get_current_user
from edutest.db.session import get_db
from edutest.schemas.auth import Principal
from edutest.schemas.submission import GradeRequest, SubmissionPublic
from edutest.services import grading_service, submission_service, test_service

router = APIRouter(prefix="/submissions", tags=["submissions"])


def _require_test_owner(db: Session, test_id: int, teacher: Principal) -> None:
    test = test_service.get_test(db, test_id)
    if not test:
        raise HTTPException(status_code=404, detail="Test not found")
    if test.created_by != teacher.id:
        raise HTTPException(status_code=403, detail="Not allowed to view these submissions")


@router.get("/me", response_model=List[SubmissionPublic])
def list_my_submissions(
    db: Session = Depends(get_db),
    current_student: Principal = Depends(get_current_student),
    skip: int = 0,
    limit: int = 100,
):
    """
    Submission history for the logged-in student, newest first.
    """
    return submission_service.list_submissions_for_student(
        db, student_id=current_student.id, skip=skip, limit=limit
    )


@router.get("/test/{test_id}", response_model=List[SubmissionPublic])
def list_test_submissions(
    test_id: int,
    db: Session = Depends(get_db),
    current_teacher: Principal = Depends(get_current_teacher),
    skip: int = 0,
    limit: int = 100,
):
    _require_test_owner(db, test_id, current_teacher)
    return submission_service.list_submissions_for_test(
        db, test_id=test_id, skip=skip, limit=limit
    )


@router.get("/{submission_id}", response_model=SubmissionPublic)
def get_submission(
    submission_id: int,
    db: Session = Depends(get_db),
    current_user: Principal = Depends(get_current_user),
):
    submission = submission_service.get_submission(db, submission_id)
    if not submission:
        raise HTTPException(status_code=404, detail="Submission not found")

    if current_user.role == "student":
        if submission.student_id != current_user.id:
            raise HTTPException(status_code=403, detail="Not allowed to view this submission")
    elif submission.test.created_by != current_user.id:
        raise HTTPException(status_code=403, detail="Not allowed to view this submission")
    return submission


@router.put("/{submission_id}/grade", response_model=SubmissionPublic)
def grade_submission(
    submission_id: int,
    payload: GradeRequest,
    db: Session = Depends(get_db),
    current_teacher: Principal = Depends(get_current_teacher),
):
    """
    Teacher grades a submission of one of their tests. Grading again
    replaces the previous score and feedback.
    """
    submission = submission_service.get_submission(db, submission_id)
    if not submission:
        raise HTTPException(status_code=404, detail="Submission not found")
    if submission.test.created_by != current_teacher.id:
        raise HTTPException(status_code=403, detail="Not allowed to grade this submission")

    try:
        return grading_service.grade_submission(
            db,
            submission_id=submission_id,
            teacher=current_teacher,
            score=payload.score,
            feedback=payload.feedback,
        )
    except EduTestError as e:
        raise to_http_exception(e)


@router.delete("/{submission_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_submission(
    submission_id: int,
    db: Session = Depends(get_db),
    current_student: Principal = Depends(get_current_student),
):
    submission = submission_service.get_submission(db, submission_id)
    if not submission:
        raise HTTPException(status_code=404, detail="Submission not found")
    if submission.student_id != current_student.id:
        raise HTTPException(status_code=403, detail="Not allowed to delete this submission")
    try:
        submission_service.delete_submission(db, db_obj=submission)
    except EduTestError as e:
        raise to_http_exception(e)
    return None
