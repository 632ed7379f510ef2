"""Mock collaborators for lifecycle testing."""

from tests.mocks.builders import make_decomposition, make_task
from tests.mocks.mock_reviewer import MockReviewer
from tests.mocks.mock_vcs import MockVersionControl
from tests.mocks.mock_verifier import MockVerifier, fail, missing_dependency
from tests.mocks.mock_worker import MockWorker

__all__ = [
    "MockReviewer",
    "MockVersionControl",
    "MockVerifier",
    "MockWorker",
    "fail",
    "make_decomposition",
    "make_task",
    "missing_dependency",
]
