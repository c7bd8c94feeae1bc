"""Shared pytest fixtures."""

from __future__ import annotations

import pytest

from tests.fakes.transfer import RecordingJobStore, SleepRecorder


@pytest.fixture
def store() -> RecordingJobStore:
    return RecordingJobStore()


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()
