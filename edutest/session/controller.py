"""The test-taking session: timer, captured answers, document and finish."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Coroutine

from sqlalchemy.orm import Session

from edutest.core.exceptions import EduTestError, PreconditionError
from edutest.session.answers import AnswerCaptureStore, AnswerFile, CapturedAnswer, PreviewRegistry
from edutest.session.document_loader import DocumentLoader, DocumentRenderer
from edutest.session.orchestrator import FinishResult, SubmissionOrchestrator
from edutest.session.timer import CountdownTimer

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    EXPIRED = "expired"
    FINISHING = "finishing"
    FINISHED = "finished"


@dataclass(slots=True, frozen=True)
class TestInfo:
    """The parts of a test a running session needs."""

    id: int
    num_questions: int
    duration_minutes: int
    pdf_url: str | None


class TestSession:
    """
    One student's attempt at one test.

    NOT_STARTED -> IN_PROGRESS -> FINISHING -> FINISHED, or
    IN_PROGRESS -> EXPIRED -> FINISHING -> FINISHED when the timer runs out.
    Expiry finishes the session on its own; a student-initiated finish needs
    ``confirmed=True``. FINISHED is terminal.
    """

    def __init__(
        self,
        test: TestInfo,
        student_id: int | None,
        orchestrator: SubmissionOrchestrator,
        db_factory: Callable[[], Session],
        *,
        renderer: DocumentRenderer | None = None,
        previews: PreviewRegistry | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        session_id: str | None = None,
        spawn: Callable[[Coroutine[Any, Any, Any], str], Any] | None = None,
    ) -> None:
        self.id = session_id or uuid.uuid4().hex
        self.test = test
        self.student_id = student_id
        self.orchestrator = orchestrator
        self._db_factory = db_factory

        self.state = SessionState.NOT_STARTED
        self.timer = CountdownTimer(
            self._on_timer_expired,
            clock=clock,
            sleep=sleep,
            spawn=(lambda coro: spawn(coro, f"finish-{self.id}")) if spawn else None,
        )
        self.answers = AnswerCaptureStore(test.num_questions, previews)
        self.document = DocumentLoader(test.pdf_url, renderer, sleep=sleep)
        self.result: FinishResult | None = None
        self.last_error: EduTestError | None = None
        self._finish_task: asyncio.Future | None = None

    def start(self) -> None:
        if self.state != SessionState.NOT_STARTED:
            raise PreconditionError("The session has already started")
        if self.student_id is None:
            raise PreconditionError("You must be logged in to take a test")
        self.timer.start(self.test.duration_minutes)
        self.state = SessionState.IN_PROGRESS
        logger.info(
            f"Session {self.id}: student {self.student_id} started test {self.test.id} "
            f"({self.test.duration_minutes} min)"
        )

    @property
    def is_open(self) -> bool:
        return self.state == SessionState.IN_PROGRESS

    def remaining_seconds(self) -> int:
        if self.state == SessionState.IN_PROGRESS:
            return self.timer.tick()
        return 0 if self.state != SessionState.NOT_STARTED else self.test.duration_minutes * 60

    def set_answer(self, question_number: int, file: AnswerFile) -> CapturedAnswer:
        self.remaining_seconds()
        if not self.is_open:
            raise PreconditionError("This session no longer accepts answers")
        return self.answers.set_answer(question_number, file)

    def get_answer(self, question_number: int) -> CapturedAnswer | None:
        return self.answers.get_answer(question_number)

    def list_answers(self) -> list[CapturedAnswer]:
        return self.answers.list_answers()

    def _on_timer_expired(self):
        if self.state != SessionState.IN_PROGRESS:
            return None
        self.state = SessionState.EXPIRED
        logger.info(f"Session {self.id}: time is up, submitting automatically")
        return self._auto_finish()

    async def _auto_finish(self) -> None:
        try:
            await self.finish()
        except EduTestError as e:
            logger.error(f"Session {self.id}: automatic finish failed: {e}")

    async def run_timer(self) -> None:
        """Drive the countdown; returns once the session expired or finished."""
        await self.timer.run()

    async def finish(self, *, confirmed: bool = False) -> FinishResult:
        if self.state == SessionState.FINISHED:
            return self.result
        if self.state == SessionState.FINISHING:
            return await asyncio.shield(self._finish_task)
        if self.state == SessionState.NOT_STARTED:
            raise PreconditionError("The session has not started")

        if self.state == SessionState.IN_PROGRESS and self.timer.remaining_seconds() == 0:
            # deadline passed between ticks
            self.timer.stop()
            self.state = SessionState.EXPIRED
        if self.state == SessionState.IN_PROGRESS and not confirmed:
            raise PreconditionError(
                "Finishing the test is final; confirm to submit your answers"
            )

        expired = self.state == SessionState.EXPIRED
        self.state = SessionState.FINISHING
        self._finish_task = asyncio.ensure_future(self._run_finish(expired))
        return await asyncio.shield(self._finish_task)

    async def _run_finish(self, expired: bool) -> FinishResult:
        db = self._db_factory()
        try:
            result = await self.orchestrator.finish(
                db,
                test_id=self.test.id,
                student_id=self.student_id,
                answers=self.answers.list_answers(),
            )
        except BaseException as e:
            if isinstance(e, EduTestError):
                self.last_error = e
            self.state = (
                SessionState.EXPIRED if expired or self.timer.expired else SessionState.IN_PROGRESS
            )
            logger.warning(f"Session {self.id}: finish aborted, back to {self.state.value}: {e}")
            raise
        finally:
            db.close()

        result.expired = expired
        self.timer.stop()
        self.answers.clear()
        self.result = result
        self.last_error = None
        self.state = SessionState.FINISHED
        logger.info(
            f"Session {self.id}: finished as submission {result.submission.id}"
            f"{' after expiry' if expired else ''}"
        )
        return result

    def abandon(self) -> None:
        """Drop the session without saving anything."""
        self.timer.stop()
        self.answers.clear()
        logger.info(f"Session {self.id}: abandoned in state {self.state.value}")
