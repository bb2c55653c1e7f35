"""In-memory capture of per-question answer files for a running session."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

from edutest.core.exceptions import PreconditionError

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class AnswerFile:
    """A locally selected answer image, not yet uploaded."""

    filename: str
    content_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(slots=True)
class CapturedAnswer:
    question_number: int
    file: AnswerFile
    preview_handle: str


class PreviewRegistry:
    """Issues ``blob:`` preview handles for captured files and releases them."""

    def __init__(self) -> None:
        self._blobs: dict[str, AnswerFile] = {}

    def create(self, file: AnswerFile) -> str:
        handle = f"blob:{uuid.uuid4().hex}"
        self._blobs[handle] = file
        return handle

    def get(self, handle: str) -> AnswerFile | None:
        return self._blobs.get(handle)

    def release(self, handle: str) -> None:
        self._blobs.pop(handle, None)

    def is_live(self, handle: str) -> bool:
        return handle in self._blobs

    def __len__(self) -> int:
        return len(self._blobs)


class AnswerCaptureStore:
    """
    Maps question number to the most recently selected file.

    Setting an answer for a question that already has one replaces it and
    releases the old preview handle. Nothing here touches the network; the
    files are uploaded in one batch when the session finishes.
    """

    def __init__(self, num_questions: int, previews: PreviewRegistry | None = None) -> None:
        if num_questions < 1:
            raise ValueError("num_questions must be >= 1")
        self.num_questions = num_questions
        self.previews = previews or PreviewRegistry()
        self._answers: dict[int, CapturedAnswer] = {}

    def set_answer(self, question_number: int, file: AnswerFile) -> CapturedAnswer:
        if not 1 <= question_number <= self.num_questions:
            raise PreconditionError(
                f"Question {question_number} is outside 1..{self.num_questions}"
            )
        previous = self._answers.get(question_number)
        entry = CapturedAnswer(
            question_number=question_number,
            file=file,
            preview_handle=self.previews.create(file),
        )
        self._answers[question_number] = entry
        if previous is not None:
            self.previews.release(previous.preview_handle)
            logger.debug(f"Replaced answer for question {question_number}")
        return entry

    def get_answer(self, question_number: int) -> CapturedAnswer | None:
        return self._answers.get(question_number)

    def list_answers(self) -> list[CapturedAnswer]:
        return [self._answers[q] for q in sorted(self._answers)]

    def clear(self) -> None:
        for entry in self._answers.values():
            self.previews.release(entry.preview_handle)
        self._answers.clear()

    def __len__(self) -> int:
        return len(self._answers)
