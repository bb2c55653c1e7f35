"""Process-wide registry of running test sessions."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable

from sqlalchemy.orm import Session

from edutest.core.exceptions import DuplicateSubmissionError, MissingResourceError
from edutest.services import submission_service, test_service
from edutest.session.controller import SessionState, TestInfo, TestSession
from edutest.session.document_loader import DocumentRenderer
from edutest.session.orchestrator import SubmissionOrchestrator

logger = logging.getLogger(__name__)


class SessionManager:
    """
    Owns every live TestSession and the background task that watches its
    countdown. Created once at startup; ``shutdown`` cancels the watchers.

    Starting a test the student already has a live session for resumes that
    session with its original deadline. Sessions are in memory only.
    """

    def __init__(
        self,
        orchestrator: SubmissionOrchestrator,
        db_factory: Callable[[], Session],
        *,
        renderer_factory: Callable[[], DocumentRenderer] | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        watch_timers: bool = True,
    ) -> None:
        self.orchestrator = orchestrator
        self.db_factory = db_factory
        self.renderer_factory = renderer_factory
        self.clock = clock
        self.sleep = sleep
        self.watch_timers = watch_timers
        self._sessions: dict[str, TestSession] = {}
        self._tasks: set[asyncio.Task] = set()

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, session_id: str) -> TestSession | None:
        return self._sessions.get(session_id)

    def find_live(self, *, test_id: int, student_id: int) -> TestSession | None:
        for session in self._sessions.values():
            if (
                session.test.id == test_id
                and session.student_id == student_id
                and session.state not in (SessionState.FINISHED, SessionState.NOT_STARTED)
            ):
                return session
        return None

    async def start_session(self, db: Session, *, test_id: int, student_id: int) -> TestSession:
        test = test_service.get_test(db, test_id)
        if test is None:
            raise MissingResourceError("The test you're looking for doesn't exist or has been removed")

        live = self.find_live(test_id=test_id, student_id=student_id)
        if live is not None:
            logger.info(f"Resuming session {live.id} for student {student_id}, test {test_id}")
            return live

        if submission_service.has_submission(db, test_id=test_id, student_id=student_id):
            raise DuplicateSubmissionError("You have already submitted this test")

        self._prune_finished()
        session = TestSession(
            TestInfo(
                id=test.id,
                num_questions=test.num_questions,
                duration_minutes=test.duration_minutes,
                pdf_url=test_service.pdf_url_for(test),
            ),
            student_id,
            self.orchestrator,
            self.db_factory,
            renderer=self.renderer_factory() if self.renderer_factory else None,
            clock=self.clock,
            sleep=self.sleep,
            spawn=self._spawn,
        )
        session.start()
        self._sessions[session.id] = session

        self._spawn(session.document.load(), f"document-{session.id}")
        if self.watch_timers:
            self._spawn(session.run_timer(), f"timer-{session.id}")
        return session

    def discard(self, session_id: str) -> bool:
        """Abandon a session; anything captured but not submitted is lost."""
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        for task in list(self._tasks):
            if task.get_name() in (f"timer-{session_id}", f"document-{session_id}"):
                task.cancel()
        session.abandon()
        return True

    async def shutdown(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        for session in self._sessions.values():
            session.abandon()
        self._sessions.clear()
        logger.info("Session manager stopped")

    def _spawn(self, coro, name: str) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Background task {task.get_name()} failed: {exc}", exc_info=exc)

    def _prune_finished(self) -> None:
        for session_id in [
            sid for sid, s in self._sessions.items() if s.state == SessionState.FINISHED
        ]:
            del self._sessions[session_id]
