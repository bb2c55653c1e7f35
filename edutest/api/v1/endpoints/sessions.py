# edutest/api/v1/endpoints/sessions.py
from fastapi import APIRouter, Depends, File, HTTPException, Response, UploadFile, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from edutest.api.deps import get_session_manager
from edutest.api.errors import to_http_exception
from edutest.core.config import settings
from edutest.core.exceptions import EduTestError
from edutest.core.security import get_current_student
from edutest.db.session import get_db
from edutest.schemas.auth import Principal
from edutest.schemas.session import (
    CapturedAnswerPublic,
    DocumentStatePublic,
    TestSessionPublic,
)
from edutest.schemas.submission import FinishResponse, UploadFailurePublic
from edutest.services import test_service
from edutest.session.answers import AnswerFile, CapturedAnswer
from edutest.session.controller import TestSession
from edutest.session.document_loader import DocumentLoader
from edutest.session.manager import SessionManager
from edutest.session.orchestrator import FinishResult

router = APIRouter(prefix="/sessions", tags=["sessions"])


class FinishRequest(BaseModel):
    confirmed: bool = False


def answer_to_public(entry: CapturedAnswer) -> CapturedAnswerPublic:
    return CapturedAnswerPublic(
        question_number=entry.question_number,
        filename=entry.file.filename,
        content_type=entry.file.content_type,
        size=entry.file.size,
        preview_handle=entry.preview_handle,
    )


def document_to_public(loader: DocumentLoader) -> DocumentStatePublic:
    return DocumentStatePublic(
        state=loader.state.value,
        url=loader.open_externally(),
        page_count=loader.page_count,
        current_page=loader.current_page,
        attempts=loader.attempts,
        message=loader.message,
    )


def session_to_public(session: TestSession) -> TestSessionPublic:
    return TestSessionPublic(
        id=session.id,
        test_id=session.test.id,
        student_id=session.student_id,
        state=session.state.value,
        remaining_seconds=session.remaining_seconds(),
        num_questions=session.test.num_questions,
        answers=[answer_to_public(a) for a in session.list_answers()],
        document=document_to_public(session.document),
        submission_id=session.result.submission.id if session.result else None,
    )


def finish_to_public(result: FinishResult) -> FinishResponse:
    return FinishResponse(
        submission=result.submission,
        failed_uploads=[
            UploadFailurePublic(question_number=f.question_number, reason=f.reason)
            for f in result.failures
        ],
        expired=result.expired,
    )


def _get_owned_session(
    session_id: str,
    student: Principal,
    manager: SessionManager,
) -> TestSession:
    session = manager.get(session_id)
    if session is None or session.student_id != student.id:
        raise HTTPException(status_code=404, detail="Session not found")
    return session


@router.get("/{session_id}", response_model=TestSessionPublic)
async def get_session(
    session_id: str,
    current_student: Principal = Depends(get_current_student),
    manager: SessionManager = Depends(get_session_manager),
):
    """
    Current state of a session; remaining time is recomputed on every call.
    """
    session = _get_owned_session(session_id, current_student, manager)
    return session_to_public(session)


@router.delete("/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def abandon_session(
    session_id: str,
    current_student: Principal = Depends(get_current_student),
    manager: SessionManager = Depends(get_session_manager),
):
    _get_owned_session(session_id, current_student, manager)
    manager.discard(session_id)
    return None


@router.put("/{session_id}/answers/{question_number}", response_model=CapturedAnswerPublic)
async def capture_answer(
    session_id: str,
    question_number: int,
    file: UploadFile = File(...),
    current_student: Principal = Depends(get_current_student),
    manager: SessionManager = Depends(get_session_manager),
):
    """
    Store (or replace) the photo for one question. Nothing is uploaded to
    storage until the session finishes.
    """
    session = _get_owned_session(session_id, current_student, manager)

    content_type = file.content_type or ""
    if not content_type.startswith("image/"):
        raise HTTPException(status_code=400, detail="Please upload an image of your answer")
    data = await file.read()
    if not data:
        raise HTTPException(status_code=400, detail="The uploaded file is empty")
    if len(data) > settings.MAX_ANSWER_IMAGE_BYTES:
        raise HTTPException(
            status_code=413,
            detail=f"Answer images are limited to {settings.MAX_ANSWER_IMAGE_BYTES} bytes",
        )

    try:
        entry = session.set_answer(
            question_number,
            AnswerFile(filename=file.filename or "answer", content_type=content_type, data=data),
        )
    except EduTestError as e:
        raise to_http_exception(e)
    return answer_to_public(entry)


@router.get("/{session_id}/answers/{question_number}", response_model=CapturedAnswerPublic)
async def get_captured_answer(
    session_id: str,
    question_number: int,
    current_student: Principal = Depends(get_current_student),
    manager: SessionManager = Depends(get_session_manager),
):
    session = _get_owned_session(session_id, current_student, manager)
    entry = session.get_answer(question_number)
    if entry is None:
        raise HTTPException(status_code=404, detail="No answer captured for this question")
    return answer_to_public(entry)


@router.get("/{session_id}/previews/{handle}")
async def get_preview(
    session_id: str,
    handle: str,
    current_student: Principal = Depends(get_current_student),
    manager: SessionManager = Depends(get_session_manager),
):
    session = _get_owned_session(session_id, current_student, manager)
    blob = session.answers.previews.get(handle)
    if blob is None:
        raise HTTPException(status_code=404, detail="Preview has been released")
    return Response(content=blob.data, media_type=blob.content_type)


@router.get("/{session_id}/document", response_model=DocumentStatePublic)
async def get_document_state(
    session_id: str,
    current_student: Principal = Depends(get_current_student),
    manager: SessionManager = Depends(get_session_manager),
):
    session = _get_owned_session(session_id, current_student, manager)
    return document_to_public(session.document)


@router.post("/{session_id}/document/next", response_model=DocumentStatePublic)
async def next_document_page(
    session_id: str,
    current_student: Principal = Depends(get_current_student),
    manager: SessionManager = Depends(get_session_manager),
):
    session = _get_owned_session(session_id, current_student, manager)
    session.document.next_page()
    return document_to_public(session.document)


@router.post("/{session_id}/document/previous", response_model=DocumentStatePublic)
async def previous_document_page(
    session_id: str,
    current_student: Principal = Depends(get_current_student),
    manager: SessionManager = Depends(get_session_manager),
):
    session = _get_owned_session(session_id, current_student, manager)
    session.document.previous_page()
    return document_to_public(session.document)


@router.post("/{session_id}/document/retry", response_model=DocumentStatePublic)
async def retry_document(
    session_id: str,
    db: Session = Depends(get_db),
    current_student: Principal = Depends(get_current_student),
    manager: SessionManager = Depends(get_session_manager),
):
    """
    Manual retry after the automatic retries gave up. Picks up a PDF the
    teacher attached after the session started.
    """
    session = _get_owned_session(session_id, current_student, manager)
    test = test_service.get_test(db, session.test.id)
    if test is not None:
        url = test_service.pdf_url_for(test)
        if url != session.document.url:
            await session.document.set_url(url)
    await session.document.retry()
    return document_to_public(session.document)


@router.get("/{session_id}/document/page")
async def get_document_page(
    session_id: str,
    current_student: Principal = Depends(get_current_student),
    manager: SessionManager = Depends(get_session_manager),
):
    session = _get_owned_session(session_id, current_student, manager)
    try:
        content = session.document.render_current_page()
    except EduTestError as e:
        raise to_http_exception(e)
    return Response(content=content, media_type="application/pdf")


@router.post("/{session_id}/finish", response_model=FinishResponse)
async def finish_session(
    session_id: str,
    payload: FinishRequest,
    current_student: Principal = Depends(get_current_student),
    manager: SessionManager = Depends(get_session_manager),
):
    """
    Submit the session. A running session needs ``confirmed: true``; an
    expired one is submitted regardless. Failed answer uploads are listed in
    ``failed_uploads`` rather than failing the request.
    """
    session = _get_owned_session(session_id, current_student, manager)
    try:
        result = await session.finish(confirmed=payload.confirmed)
    except EduTestError as e:
        raise to_http_exception(e)
    return finish_to_public(result)
