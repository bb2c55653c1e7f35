"""
End-to-end session behavior: countdown, answer capture, confirmation,
automatic submission on expiry and the session registry.
"""

import asyncio

import pytest

from edutest.core.exceptions import (
    DuplicateSubmissionError,
    MissingResourceError,
    PersistenceError,
    PreconditionError,
)
from edutest.models.submission import AnswerImage, Submission
from edutest.session import controller
from edutest.session.answers import AnswerFile
from edutest.session.controller import SessionState
from edutest.session.document_loader import DocumentState
from edutest.session.manager import SessionManager
from edutest.session.orchestrator import SubmissionOrchestrator

from tests.conftest import FakeRenderer, no_sleep


def _photo(q):
    return AnswerFile(filename=f"q{q}.jpg", content_type="image/jpeg", data=f"answer-{q}".encode())


async def _wait_for_state(session, state, timeout=5.0):
    """Yield to the loop until a background finish has moved the session on."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while session.state != state:
        if loop.time() > deadline:
            raise AssertionError(f"session stuck in {session.state}")
        await asyncio.sleep(0.01)


@pytest.fixture
def new_session(session_factory, storage, clock, student):
    def _new(test, student_id=student.id, sleep=no_sleep):
        info = controller.TestInfo(
            id=test.id,
            num_questions=test.num_questions,
            duration_minutes=test.duration_minutes,
            pdf_url=test.pdf_url,
        )
        return controller.TestSession(
            info,
            student_id,
            SubmissionOrchestrator(storage),
            session_factory,
            renderer=FakeRenderer(),
            clock=clock,
            sleep=sleep,
        )

    return _new


class TestTestSession:
    def test_expiry_submits_captured_answers(self, new_session, make_test, clock, db_session):
        """3 questions, 1 minute, answers for 1 and 3: expiry submits both, ungraded."""
        test = make_test(num_questions=3, duration_minutes=1)
        session = new_session(test)

        async def scenario():
            session.start()
            assert session.remaining_seconds() == 60
            session.set_answer(1, _photo(1))
            session.set_answer(3, _photo(3))

            for _ in range(60):
                clock.advance(1)
                session.remaining_seconds()
            assert session.state == SessionState.EXPIRED
            await _wait_for_state(session, SessionState.FINISHED)

        asyncio.run(scenario())

        assert session.state == SessionState.FINISHED
        assert session.result.expired
        assert [a.question_number for a in session.result.submission.answers] == [1, 3]
        submission = db_session.get(Submission, session.result.submission.id)
        assert submission.graded is False
        assert submission.score is None
        assert db_session.query(AnswerImage).count() == 2

    def test_watcher_finishes_expired_session(self, new_session, make_test, clock):
        async def advancing_sleep(seconds):
            clock.advance(seconds)

        test = make_test(duration_minutes=1)
        session = new_session(test, sleep=advancing_sleep)

        async def scenario():
            session.start()
            session.set_answer(2, _photo(2))
            await session.run_timer()

        asyncio.run(scenario())
        assert session.state == SessionState.FINISHED
        assert [a.question_number for a in session.result.submission.answers] == [2]

    def test_finish_requires_confirmation(self, new_session, make_test, db_session):
        test = make_test()
        session = new_session(test)

        async def scenario():
            session.start()
            session.set_answer(1, _photo(1))
            with pytest.raises(PreconditionError):
                await session.finish()
            assert session.state == SessionState.IN_PROGRESS
            return await session.finish(confirmed=True)

        result = asyncio.run(scenario())
        assert session.state == SessionState.FINISHED
        assert not result.expired
        assert db_session.query(Submission).count() == 1

    def test_expired_session_needs_no_confirmation(self, new_session, make_test, clock):
        test = make_test(duration_minutes=1)
        session = new_session(test)

        async def scenario():
            session.start()
            clock.advance(61)
            return await session.finish()

        result = asyncio.run(scenario())
        assert result.expired
        assert session.state == SessionState.FINISHED

    def test_concurrent_finish_creates_one_submission(self, new_session, make_test, db_session):
        test = make_test()
        session = new_session(test)

        async def scenario():
            session.start()
            session.set_answer(1, _photo(1))
            return await asyncio.gather(
                session.finish(confirmed=True),
                session.finish(confirmed=True),
            )

        first, second = asyncio.run(scenario())
        assert first.submission.id == second.submission.id
        assert db_session.query(Submission).count() == 1

    def test_finished_session_rejects_answers(self, new_session, make_test):
        test = make_test()
        session = new_session(test)

        async def scenario():
            session.start()
            await session.finish(confirmed=True)

        asyncio.run(scenario())
        with pytest.raises(PreconditionError):
            session.set_answer(1, _photo(1))
        assert session.remaining_seconds() == 0
        # finishing again returns the stored result
        again = asyncio.run(session.finish(confirmed=True))
        assert again is session.result

    def test_expired_session_rejects_answers(self, new_session, make_test, clock):
        test = make_test(duration_minutes=1)
        session = new_session(test)

        async def scenario():
            session.start()
            clock.advance(60)
            with pytest.raises(PreconditionError):
                session.set_answer(1, _photo(1))
            await _wait_for_state(session, SessionState.FINISHED)

        asyncio.run(scenario())
        assert session.result.expired
        assert session.result.submission.answers == []

    def test_failed_finish_goes_back_to_in_progress(
        self, new_session, make_test, db_session, student
    ):
        test = make_test()
        # the student already has a submission for this test
        db_session.add(Submission(test_id=test.id, student_id=student.id, graded=False))
        db_session.commit()
        session = new_session(test)

        async def scenario():
            session.start()
            session.set_answer(1, _photo(1))
            with pytest.raises(DuplicateSubmissionError):
                await session.finish(confirmed=True)

        asyncio.run(scenario())
        assert session.state == SessionState.IN_PROGRESS
        assert session.get_answer(1) is not None
        assert isinstance(session.last_error, DuplicateSubmissionError)

    def test_failed_save_goes_back_to_in_progress(
        self, new_session, make_test, storage, failing_submission_insert
    ):
        test = make_test()
        session = new_session(test)

        async def scenario():
            session.start()
            session.set_answer(1, _photo(1))
            with pytest.raises(PersistenceError):
                await session.finish(confirmed=True)

        asyncio.run(scenario())
        assert session.state == SessionState.IN_PROGRESS
        assert session.get_answer(1) is not None
        assert isinstance(session.last_error, PersistenceError)
        assert storage.blobs == {}

    def test_failed_save_after_expiry_stays_expired(
        self, new_session, make_test, clock, storage, failing_submission_insert
    ):
        test = make_test(duration_minutes=1)
        session = new_session(test)

        async def scenario():
            session.start()
            session.set_answer(2, _photo(2))
            clock.advance(61)
            with pytest.raises(PersistenceError):
                await session.finish()

        asyncio.run(scenario())
        assert session.state == SessionState.EXPIRED
        assert session.get_answer(2) is not None
        assert storage.blobs == {}

    def test_cannot_start_without_student(self, new_session, make_test):
        session = new_session(make_test(), student_id=None)
        with pytest.raises(PreconditionError):
            session.start()
        assert session.state == SessionState.NOT_STARTED

    def test_cannot_start_twice(self, new_session, make_test):
        session = new_session(make_test())
        session.start()
        with pytest.raises(PreconditionError):
            session.start()

    def test_not_started_shows_full_duration(self, new_session, make_test):
        session = new_session(make_test(duration_minutes=5))
        assert session.remaining_seconds() == 300
        with pytest.raises(PreconditionError):
            asyncio.run(session.finish(confirmed=True))


class TestSessionManager:
    @pytest.fixture
    def manager(self, storage, session_factory, clock):
        return SessionManager(
            SubmissionOrchestrator(storage),
            session_factory,
            renderer_factory=FakeRenderer,
            clock=clock,
            sleep=no_sleep,
            watch_timers=False,
        )

    def test_start_resumes_live_session(self, manager, db_session, make_test, student, clock):
        test = make_test(duration_minutes=2, pdf_url="https://files.example.com/t.pdf")

        async def scenario():
            first = await manager.start_session(db_session, test_id=test.id, student_id=student.id)
            clock.advance(30)
            second = await manager.start_session(db_session, test_id=test.id, student_id=student.id)
            remaining = second.remaining_seconds()
            await manager.shutdown()
            return first, second, remaining

        first, second, remaining = asyncio.run(scenario())
        assert first is second
        # the original deadline is kept
        assert remaining == 90

    def test_document_is_loaded_in_background(self, manager, db_session, make_test, student):
        test = make_test(pdf_url="https://files.example.com/t.pdf")

        async def scenario():
            session = await manager.start_session(db_session, test_id=test.id, student_id=student.id)
            for _ in range(20):
                await asyncio.sleep(0)
            state = session.document.state
            await manager.shutdown()
            return state

        assert asyncio.run(scenario()) == DocumentState.LOADED

    def test_unknown_test(self, manager, db_session, student):
        with pytest.raises(MissingResourceError):
            asyncio.run(manager.start_session(db_session, test_id=42, student_id=student.id))

    def test_already_submitted(self, manager, db_session, make_test, student):
        test = make_test()
        db_session.add(Submission(test_id=test.id, student_id=student.id, graded=False))
        db_session.commit()
        with pytest.raises(DuplicateSubmissionError):
            asyncio.run(manager.start_session(db_session, test_id=test.id, student_id=student.id))
        assert len(manager) == 0

    def test_discard_abandons_session(self, manager, db_session, make_test, student):
        test = make_test()

        async def scenario():
            session = await manager.start_session(db_session, test_id=test.id, student_id=student.id)
            session.set_answer(1, _photo(1))
            assert manager.discard(session.id)
            await manager.shutdown()
            return session

        session = asyncio.run(scenario())
        assert manager.get(session.id) is None
        assert len(session.answers) == 0
        assert db_session.query(Submission).count() == 0

    def test_expiry_noticed_by_a_request_is_tracked(self, manager, db_session, make_test, student, clock):
        test = make_test(duration_minutes=1)

        async def scenario():
            session = await manager.start_session(db_session, test_id=test.id, student_id=student.id)
            session.set_answer(1, _photo(1))
            clock.advance(61)
            assert session.remaining_seconds() == 0
            names = {task.get_name() for task in asyncio.all_tasks()}
            await _wait_for_state(session, SessionState.FINISHED)
            await manager.shutdown()
            return session, names

        session, names = asyncio.run(scenario())
        assert f"finish-{session.id}" in names
        assert session.result.expired
        assert [a.question_number for a in session.result.submission.answers] == [1]
