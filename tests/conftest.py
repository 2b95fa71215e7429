from datetime import datetime, timedelta, timezone

import pytest

from voicenotes.artifacts import ArtifactStore
from voicenotes.storage import NoteStore

from .helpers import Harness


@pytest.fixture
def harness(tmp_path):
    return Harness(tmp_path)


@pytest.fixture
def artifacts(tmp_path):
    return ArtifactStore(tmp_path / "Recordings")


@pytest.fixture
def store(tmp_path, artifacts):
    times = iter(datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc) + timedelta(minutes=i) for i in range(1000))
    return NoteStore(tmp_path / "notes.db", artifacts, now=lambda: next(times))
