import pytest

from rls_test_util import RecordingEditor, RecordingIndicator


@pytest.fixture
def editor() -> RecordingEditor:
    return RecordingEditor()


@pytest.fixture
def indicator() -> RecordingIndicator:
    return RecordingIndicator()
