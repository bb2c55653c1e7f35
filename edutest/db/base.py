# edutest/db/base.py
# Import every model so Base.metadata knows all tables.
from edutest.db.base_class import Base  # noqa

from edutest.models.user import User  # noqa
from edutest.models.test import Test  # noqa
from edutest.models.submission import Submission, AnswerImage  # noqa
from edutest.models.task import Task, TaskSubmission  # noqa
