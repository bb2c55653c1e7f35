# edutest/api/v1/endpoints/tests.py
from typing import List

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status
from sqlalchemy.orm import Session

from edutest.api.deps import get_blob_storage, get_session_manager
from edutest.api.errors import to_http_exception
from edutest.api.v1.endpoints.sessions import session_to_public
from edutest.core.exceptions import EduTestError
from edutest.core.security import get_current_student, get_current_teacher, get_current_user
from edutest.db.session import get_db
from edutest.models.test import Test
from edutest.schemas.auth import Principal
from edutest.schemas.session import TestSessionPublic
from edutest.schemas.test import TestCreate, TestPublic
from edutest.services import test_service
from edutest.services.storage import BlobStorage
from edutest.session.manager import SessionManager

router = APIRouter(prefix="/tests", tags=["tests"])


def _test_to_public(test: Test) -> TestPublic:
    return TestPublic(
        id=test.id,
        title=test.title,
        description=test.description,
        num_questions=test.num_questions,
        duration_minutes=test.duration_minutes,
        created_by=test.created_by,
        pdf_url=test_service.pdf_url_for(test),
        created_at=test.created_at,
    )


def _get_owned_test(db: Session, test_id: int, teacher: Principal) -> Test:
    test = test_service.get_test(db, test_id)
    if not test:
        raise HTTPException(status_code=404, detail="Test not found")
    if test.created_by != teacher.id:
        raise HTTPException(status_code=403, detail="Not allowed to modify this test")
    return test


@router.post("/", response_model=TestPublic, status_code=status.HTTP_201_CREATED)
def create_test(
    obj_in: TestCreate,
    db: Session = Depends(get_db),
    current_teacher: Principal = Depends(get_current_teacher),
):
    """
    Teacher creates a test; upload the PDF with POST /tests/{id}/file.
    """
    try:
        test = test_service.create_test(db, teacher=current_teacher, obj_in=obj_in)
    except EduTestError as e:
        raise to_http_exception(e)
    return _test_to_public(test)


@router.get("/", response_model=List[TestPublic])
def list_tests(
    db: Session = Depends(get_db),
    current_user: Principal = Depends(get_current_user),
    skip: int = 0,
    limit: int = 100,
):
    tests = test_service.list_all_tests(db, skip=skip, limit=limit)
    return [_test_to_public(t) for t in tests]


@router.get("/mine", response_model=List[TestPublic])
def list_my_tests(
    db: Session = Depends(get_db),
    current_teacher: Principal = Depends(get_current_teacher),
    skip: int = 0,
    limit: int = 100,
):
    tests = test_service.list_tests_for_teacher(
        db, teacher=current_teacher, skip=skip, limit=limit
    )
    return [_test_to_public(t) for t in tests]


@router.get("/{test_id}", response_model=TestPublic)
def get_test(
    test_id: int,
    db: Session = Depends(get_db),
    current_user: Principal = Depends(get_current_user),
):
    test = test_service.get_test(db, test_id)
    if not test:
        raise HTTPException(status_code=404, detail="Test not found")
    return _test_to_public(test)


@router.post("/{test_id}/file", response_model=TestPublic)
def upload_test_file(
    test_id: int,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    storage: BlobStorage = Depends(get_blob_storage),
    current_teacher: Principal = Depends(get_current_teacher),
):
    test = _get_owned_test(db, test_id, current_teacher)
    try:
        test = test_service.attach_test_file(
            db,
            storage,
            db_obj=test,
            filename=file.filename or "test.pdf",
            content_type=file.content_type,
            data=file.file.read(),
        )
    except EduTestError as e:
        raise to_http_exception(e)
    return _test_to_public(test)


@router.delete("/{test_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_test(
    test_id: int,
    db: Session = Depends(get_db),
    current_teacher: Principal = Depends(get_current_teacher),
):
    """
    Deletes the test together with all its submissions and answer images.
    """
    test = _get_owned_test(db, test_id, current_teacher)
    try:
        test_service.delete_test(db, db_obj=test)
    except EduTestError as e:
        raise to_http_exception(e)
    return None


@router.post(
    "/{test_id}/sessions",
    response_model=TestSessionPublic,
    status_code=status.HTTP_201_CREATED,
)
async def start_test_session(
    test_id: int,
    db: Session = Depends(get_db),
    current_student: Principal = Depends(get_current_student),
    manager: SessionManager = Depends(get_session_manager),
):
    """
    Student starts (or resumes) taking a test; the countdown begins now.
    """
    try:
        session = await manager.start_session(
            db, test_id=test_id, student_id=current_student.id
        )
    except EduTestError as e:
        raise to_http_exception(e)
    return session_to_public(session)
