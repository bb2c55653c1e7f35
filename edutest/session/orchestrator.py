"""Turns a finished session into a persisted submission with answer images."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from edutest.core.config import settings
from edutest.core.exceptions import PersistenceError, PreconditionError, UploadError
from edutest.schemas.submission import SubmissionPublic
from edutest.services import submission_service
from edutest.services.storage import BlobStorage, make_blob_key
from edutest.session.answers import CapturedAnswer
from edutest.workers import queue as job_queue

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class UploadFailure:
    question_number: int
    reason: str


@dataclass(slots=True)
class FinishResult:
    submission: SubmissionPublic
    failures: list[UploadFailure] = field(default_factory=list)
    expired: bool = False

    @property
    def partial(self) -> bool:
        return bool(self.failures)


class SubmissionOrchestrator:
    """
    finish():
      1. create the submission record (nothing else happens if this fails)
      2. upload every captured answer concurrently
      3. record the uploads that succeeded; failed questions are reported,
         not retried
    """

    def __init__(self, storage: BlobStorage, *, bucket: str | None = None) -> None:
        self.storage = storage
        self.bucket = bucket or settings.ANSWER_IMAGES_BUCKET

    async def finish(
        self,
        db: Session,
        *,
        test_id: int,
        student_id: int | None,
        answers: list[CapturedAnswer],
    ) -> FinishResult:
        if student_id is None:
            raise PreconditionError("You must be logged in to submit a test")

        # blocking database and queue calls run in worker threads
        submission = await asyncio.to_thread(
            submission_service.create_submission, db, test_id=test_id, student_id=student_id
        )
        submission_id = submission.id

        outcomes = await asyncio.gather(
            *(self._upload(submission_id, answer) for answer in answers),
            return_exceptions=True,
        )

        uploads: list[tuple[int, str, str]] = []
        failures: list[UploadFailure] = []
        for answer, outcome in zip(answers, outcomes):
            if isinstance(outcome, UploadError):
                failures.append(UploadFailure(answer.question_number, str(outcome)))
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                uploads.append(outcome)

        orphaned: list[str] = []
        try:
            await asyncio.to_thread(
                submission_service.record_answer_images, db, submission=submission, uploads=uploads
            )
        except PersistenceError as e:
            logger.error(
                f"Uploaded {len(uploads)} answers for submission {submission_id} "
                f"but could not record them: {e}"
            )
            orphaned = [path for _, _, path in uploads]
            await asyncio.to_thread(job_queue.schedule_blob_cleanup, self.bucket, orphaned)
            failures.extend(UploadFailure(q, str(e)) for q, _, _ in uploads)

        try:
            public = await asyncio.to_thread(self._reload, db, submission, submission_id)
        except PersistenceError:
            # the submission went away (its test was deleted) while answers uploaded
            remaining = [path for _, _, path in uploads if path not in orphaned]
            if remaining:
                await asyncio.to_thread(job_queue.schedule_blob_cleanup, self.bucket, remaining)
            raise

        failures.sort(key=lambda f: f.question_number)
        if failures:
            logger.warning(
                f"Submission {submission_id}: {len(failures)} of {len(answers)} answer uploads failed "
                f"(questions {[f.question_number for f in failures]})"
            )
        else:
            logger.info(f"Submission {submission_id}: all {len(answers)} answers uploaded")

        return FinishResult(submission=public, failures=failures)

    @staticmethod
    def _reload(db: Session, submission, submission_id: int) -> SubmissionPublic:
        try:
            db.refresh(submission)
            return SubmissionPublic.model_validate(submission)
        except SQLAlchemyError as e:
            logger.error(f"Submission {submission_id} could not be reloaded: {e}")
            raise PersistenceError(
                "The test was removed before the submission could be saved"
            ) from e

    async def _upload(self, submission_id: int, answer: CapturedAnswer) -> tuple[int, str, str]:
        path = make_blob_key(
            submission_id,
            answer.question_number,
            filename=answer.file.filename,
            default_ext="jpg",
        )
        try:
            url = await asyncio.to_thread(
                self.storage.upload,
                self.bucket,
                path,
                answer.file.data,
                answer.file.content_type,
            )
        except Exception as e:
            logger.error(
                f"Error uploading answer image for question {answer.question_number} "
                f"of submission {submission_id}: {e}"
            )
            raise UploadError(
                f"Failed to upload answer image: {e}", question_number=answer.question_number
            ) from e
        return answer.question_number, url, path
