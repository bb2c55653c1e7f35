# edutest/models/__init__.py
from edutest.models.user import User
from edutest.models.test import Test
from edutest.models.submission import Submission, AnswerImage
from edutest.models.task import Task, TaskSubmission

__all__ = ["User", "Test", "Submission", "AnswerImage", "Task", "TaskSubmission"]
