import re

import pytest

from core.language_selector import select_pipeline
from core.speech_backend import MockSpeechBackend, flatten_batch_response, mock_segment
from core.storage import MockObjectStorage
from core.transcriber import build_object_key, extension_for_mime, extract_batch_output
from exceptions import (
    BatchRecognitionError,
    RecognizerAlreadyExistsError,
    RecognizerProvisioningError,
    StorageUploadError,
    TranscriptionTimeoutError,
)


ENGLISH_RECOGNIZER = "projects/test-project/locations/us-central1/recognizers/consultscribe-en-us"


def _uploaded_uri(backend):
    batch_calls = [c for c in backend.calls if c[0] == "batch_recognize"]
    assert len(batch_calls) == 1
    return batch_calls[0][3]


class TestObjectKey:

    @pytest.mark.parametrize("mime,ext", [
        ("audio/mpeg", "mp3"),
        ("audio/mp3", "mp3"),
        ("audio/webm", "webm"),
        ("video/webm", "webm"),
        ("audio/wav", "wav"),
        ("audio/ogg", "wav"),
        ("", "wav"),
    ])
    def test_extension(self, mime, ext):
        assert extension_for_mime(mime) == ext

    def test_key_format(self):
        key = build_object_key("audio/webm", now_ms=1718000000000)
        assert re.fullmatch(r"audio-1718000000000-[0-9a-f]{8}\.webm", key)

    def test_keys_are_unique(self):
        assert build_object_key("audio/wav", 1) != build_object_key("audio/wav", 1)


class TestExtractBatchOutput:

    def test_only_top_alternative_is_read(self):
        segments = [mock_segment(
            [("fever", "0s", "0.5s", "1")],
            extra_alternatives=[{"transcript": "favor", "words": [
                {"word": "favor", "start_offset": "0s", "end_offset": "0.5s"}
            ]}],
        )]

        output = extract_batch_output(segments)

        assert [w.text for w in output.raw_words] == ["fever"]
        assert output.per_segment_transcripts == ["fever"]

    def test_words_sorted_globally_with_tags(self):
        segments = [
            mock_segment([("second", "2s", "2.5s", "2")]),
            mock_segment([("first", "0.5s", "1s", "1")]),
        ]

        output = extract_batch_output(segments)

        assert [w.text for w in output.raw_words] == ["first", "second"]
        assert output.native_speaker_tags == ["1", "2"]
        assert output.full_text == "second first"

    def test_blank_words_skipped_and_end_clamped(self):
        segments = [mock_segment([("", "0s", "0.1s"), ("ok", "1s", "0.5s")], transcript=" ok ")]

        output = extract_batch_output(segments)

        assert len(output.raw_words) == 1
        assert output.raw_words[0].start_ms == 1000
        assert output.raw_words[0].end_ms == 1000
        assert output.native_speaker_tags == [None]
        assert output.per_segment_transcripts == ["ok"]

    def test_segments_without_alternatives(self):
        output = extract_batch_output([{"alternatives": []}, {}])
        assert output.is_empty

    def test_mixed_offset_encodings(self):
        segments = [{"alternatives": [{"transcript": "a b", "words": [
            {"word": "a", "start_offset": {"seconds": "1", "nanos": 500000000}, "end_offset": 1800},
            {"word": "b", "start_offset": "2.3s", "end_offset": None},
        ]}]}]

        output = extract_batch_output(segments)

        assert [(w.start_ms, w.end_ms) for w in output.raw_words] == [(1500, 1800), (2300, 2300)]


class TestFlattenBatchResponse:

    def test_inline_transcript(self):
        response = {"results": {"gs://b/a.wav": {"inline_result": {"transcript": {"results": [
            {"alternatives": [{"transcript": "hi"}]}
        ]}}}}}

        flattened = flatten_batch_response(response)

        assert flattened == {"gs://b/a.wav": [{"alternatives": [{"transcript": "hi"}]}]}

    def test_file_error_without_results(self):
        response = {"results": {"gs://b/a.wav": {"error": {"code": 3, "message": "bad audio"}}}}

        with pytest.raises(BatchRecognitionError):
            flatten_batch_response(response)

    def test_no_results(self):
        assert flatten_batch_response({}) == {}


class TestBatchTranscriptionRunner:

    def test_english_happy_path(self, make_runner, storage, english_backend):
        runner = make_runner(english_backend)

        output = runner.run_batch_transcription(b"RIFF", "audio/wav", select_pipeline("English"))

        assert [w.text for w in output.raw_words] == ["How", "long?", "Three", "days.", "Okay."]
        assert output.native_speaker_tags == ["1", "1", "2", "2", "1"]
        assert output.full_text == "How long? Three days. Okay."

        uri = _uploaded_uri(english_backend)
        assert uri.startswith("gs://test-audio/audio-") and uri.endswith(".wav")
        assert ("get_recognizer", ENGLISH_RECOGNIZER) in english_backend.calls
        assert [c[0] for c in storage.calls] == ["put", "delete"]
        assert storage.objects == {}

    def test_upload_content_type(self, make_runner, storage, english_backend):
        make_runner(english_backend).run_batch_transcription(
            b"data", "audio/webm", select_pipeline("English")
        )

        put = storage.calls[0]
        assert put[1] == "test-audio"
        assert put[2].endswith(".webm")
        assert put[3] == "audio/webm"

    def test_missing_bucket_created_then_retried(self, make_runner, english_backend):
        storage = MockObjectStorage(bucket_exists=False)
        runner = make_runner(english_backend, storage)

        output = runner.run_batch_transcription(b"data", "audio/wav", select_pipeline("English"))

        assert not output.is_empty
        assert [c[0] for c in storage.calls] == ["put", "create_bucket", "put", "delete"]
        assert storage.calls[1] == ("create_bucket", "test-audio", "us-central1")

    def test_upload_failure_is_fatal(self, make_runner, english_backend):
        storage = MockObjectStorage(fail_uploads=1)
        runner = make_runner(english_backend, storage)

        with pytest.raises(StorageUploadError) as exc_info:
            runner.run_batch_transcription(b"data", "audio/wav", select_pipeline("English"))

        assert exc_info.value.details["stage"] == "upload"
        assert english_backend.calls == []

    def test_recognizer_created_when_missing(self, make_runner, malayalam_segments):
        backend = MockSpeechBackend(results={"*": malayalam_segments}, recognizer_exists=False)
        runner = make_runner(backend)

        runner.run_batch_transcription(b"data", "audio/webm", select_pipeline("Malayalam"))

        assert (
            "create_recognizer",
            "projects/test-project/locations/us-central1",
            "consultscribe-ml-in",
            "ml-IN",
            "chirp_2",
        ) in backend.calls

    def test_concurrent_recognizer_creation_is_success(self, make_runner, english_segments):
        backend = MockSpeechBackend(
            results={"*": english_segments},
            recognizer_exists=False,
            create_error=RecognizerAlreadyExistsError(ENGLISH_RECOGNIZER),
        )
        runner = make_runner(backend)

        output = runner.run_batch_transcription(b"data", "audio/wav", select_pipeline("English"))

        assert len(output.raw_words) == 5

    def test_recognizer_lookup_failure(self, make_runner, storage):
        backend = MockSpeechBackend(get_error=RuntimeError("permission denied"))
        runner = make_runner(backend)

        with pytest.raises(RecognizerProvisioningError):
            runner.run_batch_transcription(b"data", "audio/wav", select_pipeline("English"))

        assert storage.calls[-1][0] == "delete"

    def test_recognizer_creation_failure(self, make_runner):
        backend = MockSpeechBackend(recognizer_exists=False, create_error=RuntimeError("quota"))
        runner = make_runner(backend)

        with pytest.raises(RecognizerProvisioningError):
            runner.run_batch_transcription(b"data", "audio/wav", select_pipeline("English"))

    def test_polls_until_done(self, make_runner, sleeps, english_segments):
        backend = MockSpeechBackend(results={"*": english_segments}, polls_until_done=2)
        runner = make_runner(backend)

        runner.run_batch_transcription(b"data", "audio/wav", select_pipeline("English"))

        assert backend.last_operation.poll_count == 3
        assert sleeps == [0, 0]

    def test_timeout_after_poll_budget(self, make_runner, storage, sleeps):
        backend = MockSpeechBackend(polls_until_done=100)
        runner = make_runner(backend)

        with pytest.raises(TranscriptionTimeoutError) as exc_info:
            runner.run_batch_transcription(b"data", "audio/wav", select_pipeline("English"))

        assert exc_info.value.details["attempts"] == 5
        assert backend.last_operation.poll_count == 5
        # no wait after the final check
        assert len(sleeps) == 4
        assert storage.calls[-1][0] == "delete"
        assert storage.objects == {}

    def test_batch_job_failure(self, make_runner, storage):
        backend = MockSpeechBackend(batch_error=RuntimeError("internal"))
        runner = make_runner(backend)

        with pytest.raises(BatchRecognitionError):
            runner.run_batch_transcription(b"data", "audio/wav", select_pipeline("English"))

        assert storage.calls[-1][0] == "delete"

    def test_no_results_is_empty_output(self, make_runner):
        backend = MockSpeechBackend(results={})
        runner = make_runner(backend)

        output = runner.run_batch_transcription(b"data", "audio/wav", select_pipeline("English"))

        assert output.is_empty
        assert output.full_text == ""

    def test_results_for_other_uri_ignored(self, make_runner, english_segments):
        backend = MockSpeechBackend(results={"gs://test-audio/someone-else.wav": english_segments})
        runner = make_runner(backend)

        output = runner.run_batch_transcription(b"data", "audio/wav", select_pipeline("English"))

        assert output.is_empty

    def test_cleanup_failure_does_not_fail_call(self, make_runner, english_backend):
        storage = MockObjectStorage(fail_deletes=True)
        runner = make_runner(english_backend, storage)

        output = runner.run_batch_transcription(b"data", "audio/wav", select_pipeline("English"))

        assert len(output.raw_words) == 5
