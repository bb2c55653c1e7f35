import asyncio
import threading

import pytest

from edutest.core.exceptions import DuplicateSubmissionError, PersistenceError, PreconditionError
from edutest.models.submission import AnswerImage, Submission
from edutest.models.test import Test
from edutest.services import submission_service, test_service
from edutest.session.answers import AnswerCaptureStore, AnswerFile
from edutest.session.orchestrator import SubmissionOrchestrator


def _answers(num_questions, questions):
    store = AnswerCaptureStore(num_questions)
    for q in questions:
        store.set_answer(
            q, AnswerFile(filename=f"q{q}.jpg", content_type="image/jpeg", data=f"answer-{q}".encode())
        )
    return store.list_answers()


class TestSubmissionOrchestrator:
    def test_all_uploads_succeed(self, db_session, storage, student, make_test):
        test = make_test(num_questions=3)
        orchestrator = SubmissionOrchestrator(storage)

        result = asyncio.run(
            orchestrator.finish(
                db_session, test_id=test.id, student_id=student.id, answers=_answers(3, [1, 3])
            )
        )

        assert not result.partial
        assert result.submission.graded is False
        assert [a.question_number for a in result.submission.answers] == [1, 3]
        assert all(a.image_url.startswith("memory://answer_images/") for a in result.submission.answers)
        assert len(storage.blobs) == 2

    def test_partial_upload_failure(self, db_session, storage, student, make_test):
        """2 of 5 uploads fail: the 3 others are recorded, the 2 are reported."""
        test = make_test(num_questions=5)
        storage.fail_on = {b"answer-2", b"answer-4"}
        orchestrator = SubmissionOrchestrator(storage)

        result = asyncio.run(
            orchestrator.finish(
                db_session, test_id=test.id, student_id=student.id, answers=_answers(5, range(1, 6))
            )
        )

        assert result.partial
        assert [f.question_number for f in result.failures] == [2, 4]
        assert db_session.query(AnswerImage).count() == 3
        assert [a.question_number for a in result.submission.answers] == [1, 3, 5]
        submission = db_session.get(Submission, result.submission.id)
        assert submission.graded is False

    def test_no_answers_still_creates_submission(self, db_session, storage, student, make_test):
        test = make_test()
        result = asyncio.run(
            SubmissionOrchestrator(storage).finish(
                db_session, test_id=test.id, student_id=student.id, answers=[]
            )
        )
        assert result.submission.answers == []
        assert db_session.query(Submission).count() == 1

    def test_create_failure_uploads_nothing(self, db_session, storage, student, make_test):
        test = make_test()
        submission_service.create_submission(db_session, test_id=test.id, student_id=student.id)

        with pytest.raises(DuplicateSubmissionError):
            asyncio.run(
                SubmissionOrchestrator(storage).finish(
                    db_session, test_id=test.id, student_id=student.id, answers=_answers(3, [1, 2])
                )
            )
        assert storage.blobs == {}

    def test_missing_test_uploads_nothing(self, db_session, storage, student):
        with pytest.raises(PreconditionError):
            asyncio.run(
                SubmissionOrchestrator(storage).finish(
                    db_session, test_id=999, student_id=student.id, answers=_answers(3, [1])
                )
            )
        assert storage.blobs == {}

    def test_requires_student(self, db_session, storage, make_test):
        test = make_test()
        with pytest.raises(PreconditionError):
            asyncio.run(
                SubmissionOrchestrator(storage).finish(
                    db_session, test_id=test.id, student_id=None, answers=[]
                )
            )
        assert db_session.query(Submission).count() == 0

    def test_unrecorded_uploads_are_cleaned_up(
        self, db_session, storage, student, make_test, cleanup_calls, monkeypatch
    ):
        test = make_test()

        def broken_record(db, *, submission, uploads):
            raise PersistenceError("database went away")

        monkeypatch.setattr(submission_service, "record_answer_images", broken_record)

        result = asyncio.run(
            SubmissionOrchestrator(storage).finish(
                db_session, test_id=test.id, student_id=student.id, answers=_answers(3, [1, 2])
            )
        )

        assert [f.question_number for f in result.failures] == [1, 2]
        assert result.submission.answers == []
        assert len(cleanup_calls) == 1
        bucket, paths = cleanup_calls[0]
        assert bucket == "answer_images"
        assert sorted(paths) == sorted(path for _, path in storage.blobs)

    def test_failed_insert_uploads_nothing(
        self, db_session, storage, student, make_test, failing_submission_insert
    ):
        test = make_test()

        with pytest.raises(PersistenceError):
            asyncio.run(
                SubmissionOrchestrator(storage).finish(
                    db_session, test_id=test.id, student_id=student.id, answers=_answers(3, [1, 2])
                )
            )
        assert storage.blobs == {}
        assert db_session.query(Submission).count() == 0

    def test_test_deleted_while_uploading(
        self, db_session, storage, student, make_test, cleanup_calls, monkeypatch
    ):
        """The cascade removed the submission mid-finish: report it and drop the uploads."""
        test = make_test()
        test_id = test.id

        def record_after_test_deleted(db, *, submission, uploads):
            test_service.delete_test(db, db_obj=db.get(Test, test_id))
            raise PersistenceError("Failed to record answer images")

        monkeypatch.setattr(submission_service, "record_answer_images", record_after_test_deleted)

        with pytest.raises(PersistenceError):
            asyncio.run(
                SubmissionOrchestrator(storage).finish(
                    db_session, test_id=test_id, student_id=student.id, answers=_answers(3, [1, 2])
                )
            )

        assert db_session.query(Submission).count() == 0
        assert len(cleanup_calls) == 1
        bucket, paths = cleanup_calls[0]
        assert bucket == "answer_images"
        assert sorted(paths) == sorted(path for _, path in storage.blobs)

    def test_database_and_cleanup_calls_leave_the_event_loop(
        self, db_session, storage, student, make_test, monkeypatch
    ):
        test = make_test()
        loop_thread = threading.get_ident()
        seen = {}
        real_create = submission_service.create_submission

        def create(db, **kwargs):
            seen["create"] = threading.get_ident()
            return real_create(db, **kwargs)

        def record(db, *, submission, uploads):
            seen["record"] = threading.get_ident()
            raise PersistenceError("database went away")

        def schedule(bucket, paths):
            seen["cleanup"] = threading.get_ident()

        monkeypatch.setattr(submission_service, "create_submission", create)
        monkeypatch.setattr(submission_service, "record_answer_images", record)
        monkeypatch.setattr("edutest.workers.queue.schedule_blob_cleanup", schedule)

        asyncio.run(
            SubmissionOrchestrator(storage).finish(
                db_session, test_id=test.id, student_id=student.id, answers=_answers(3, [1])
            )
        )

        assert set(seen) == {"create", "record", "cleanup"}
        assert loop_thread not in seen.values()
