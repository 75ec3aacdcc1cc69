"""Shared fixtures: settings without real waits, in-memory backends."""

import pytest

from config import get_settings_for_testing
from core.speech_backend import MockSpeechBackend, mock_segment
from core.storage import MockObjectStorage
from core.text_generator import MockTextGenerator
from core.transcriber import BatchTranscriptionRunner


@pytest.fixture
def settings():
    return get_settings_for_testing(
        gcp_project_id="test-project",
        speech_location="us-central1",
        audio_bucket="test-audio",
        bucket_region="us-central1",
        batch_poll_interval_seconds=0,
        batch_max_poll_attempts=5,
        use_mock_backends=True,
    )


@pytest.fixture
def storage():
    return MockObjectStorage()


@pytest.fixture
def text_generator():
    return MockTextGenerator()


@pytest.fixture
def sleeps():
    """Records every wait the runner asks for."""
    return []


@pytest.fixture
def make_runner(settings, storage, sleeps):
    """Build a runner around a given speech backend."""
    def _make(speech_backend, storage_backend=None):
        return BatchTranscriptionRunner(
            settings=settings,
            storage=storage_backend or storage,
            speech_backend=speech_backend,
            sleep=sleeps.append,
        )
    return _make


@pytest.fixture
def english_segments():
    """Doctor, patient, doctor: tags 1, 1, 2, 2, 1."""
    return [
        mock_segment(
            [("How", "0s", "0.2s", "1"), ("long?", "0.2s", "0.5s", "1")],
            transcript="How long?",
        ),
        mock_segment(
            [("Three", "0.9s", "1.2s", "2"), ("days.", "1.2s", "1.6s", "2"),
             ("Okay.", "2s", "2.3s", "1")],
            transcript="Three days. Okay.",
        ),
    ]


@pytest.fixture
def malayalam_segments():
    return [
        mock_segment(
            [("എന്ത്", "0s", "0.4s"), ("പറ്റി", "0.4s", "0.9s"),
             ("പനി", "1.5s", "1.9s"), ("ഉണ്ട്", "1.9s", "2.4s")],
        )
    ]


@pytest.fixture
def english_backend(english_segments):
    return MockSpeechBackend(results={"*": english_segments})
