import json

import pytest

from core.speaker_diarizer import (
    LLMDiarizer,
    canonical_speaker_label,
    extract_segments,
    group_by_speaker_tag,
    normalize_role_label,
)
from core.text_generator import MockTextGenerator
from exceptions import TextGenerationError
from models import Word


def _words(*texts):
    """Words 500 ms apart, each 400 ms long."""
    return [Word(text=t, start_ms=i * 500, end_ms=i * 500 + 400) for i, t in enumerate(texts)]


def _segments(*pairs):
    return json.dumps({"segments": [{"speaker": s, "text": t} for s, t in pairs]})


class TestCanonicalSpeakerLabel:

    @pytest.mark.parametrize("tag,label", [
        ("1", "DOCTOR"),
        (1, "DOCTOR"),
        ("2", "Speaker B"),
        ("26", "Speaker Z"),
        ("30", "Speaker 30"),
        ("0", "Speaker 0"),
        ("a", "DOCTOR"),
        ("b", "Speaker B"),
        ("B", "Speaker B"),
        (None, "DOCTOR"),
        ("", "DOCTOR"),
        ("spk_1", "spk_1"),
    ])
    def test_labels(self, tag, label):
        assert canonical_speaker_label(tag) == label


class TestGroupBySpeakerTag:

    def test_consecutive_words_merge(self):
        words = _words("How", "long?", "Three", "days.", "Okay.")

        utterances = group_by_speaker_tag(words, ["1", "1", "2", "2", "1"])

        assert [u.speaker for u in utterances] == ["DOCTOR", "Speaker B", "DOCTOR"]
        assert [u.text for u in utterances] == ["How long?", "Three days.", "Okay."]
        assert (utterances[0].start_ms, utterances[0].end_ms) == (0, 900)
        assert (utterances[2].start_ms, utterances[2].end_ms) == (2000, 2400)

    def test_every_word_in_exactly_one_utterance(self):
        words = _words("a", "b", "c", "d", "e", "f")
        tags = ["1", "2", "2", "1", "3", "3"]

        utterances = group_by_speaker_tag(words, tags)

        tokens = [t for u in utterances for t in u.text.split()]
        assert tokens == ["a", "b", "c", "d", "e", "f"]
        for first, second in zip(utterances, utterances[1:]):
            assert first.speaker != second.speaker
            assert first.start_ms <= second.start_ms

    def test_words_sorted_by_start_before_grouping(self):
        words = [
            Word(text="later", start_ms=1000, end_ms=1200),
            Word(text="earlier", start_ms=0, end_ms=300),
        ]

        utterances = group_by_speaker_tag(words, ["2", "1"])

        assert [(u.speaker, u.text) for u in utterances] == [("DOCTOR", "earlier"), ("Speaker B", "later")]

    def test_missing_tags_default_to_first_speaker(self):
        utterances = group_by_speaker_tag(_words("a", "b", "c"), ["2"])

        assert [(u.speaker, u.text) for u in utterances] == [("Speaker B", "a"), ("DOCTOR", "b c")]

    def test_no_words_but_transcript(self):
        utterances = group_by_speaker_tag([], [], full_text="  hello there ")

        assert len(utterances) == 1
        assert utterances[0].speaker == "Speaker A"
        assert utterances[0].text == "hello there"
        assert (utterances[0].start_ms, utterances[0].end_ms) == (0, 0)

    def test_nothing_at_all(self):
        assert group_by_speaker_tag([], [], full_text="") == []


class TestSegmentParsing:

    def test_role_labels(self):
        assert normalize_role_label("doctor") == "Doctor"
        assert normalize_role_label(" PATIENT ") == "Patient"
        assert normalize_role_label("Caregiver") == "Caregiver"
        assert normalize_role_label("Nurse") == "Unknown"
        assert normalize_role_label(None) == "Unknown"

    def test_extract_segments_shapes(self):
        assert extract_segments([{"text": "a"}]) == [{"text": "a"}]
        assert extract_segments({"segments": [{"text": "a"}, "junk"]}) == [{"text": "a"}]
        assert extract_segments({"turns": [{"text": "b"}]}) == [{"text": "b"}]
        assert extract_segments("nope") == []


class TestLLMDiarizer:

    def test_segments_realigned_onto_word_timeline(self):
        generator = MockTextGenerator(responses=[
            _segments(("Doctor", "what happened"), ("Patient", "fever since Monday"))
        ])
        words = _words("what", "happened", "fever", "since", "Monday")

        result = LLMDiarizer(generator).diarize_by_text(words, "Malayalam")

        assert not result.degraded
        assert [(u.speaker, u.text) for u in result.value] == [
            ("Doctor", "what happened"),
            ("Patient", "fever since Monday"),
        ]
        assert (result.value[0].start_ms, result.value[0].end_ms) == (0, 900)
        assert (result.value[1].start_ms, result.value[1].end_ms) == (1000, 2400)
        assert generator.calls[0]["json_mode"] is True
        assert "Malayalam" in generator.calls[0]["user_prompt"]

    def test_unknown_roles_and_blank_segments(self):
        generator = MockTextGenerator(responses=[
            json.dumps([{"speaker": "Nurse", "text": "a"}, {"speaker": "Doctor", "text": "  "},
                        {"speaker": "patient", "text": "b"}])
        ])

        result = LLMDiarizer(generator).diarize_by_text(_words("a", "b"), "Arabic")

        assert [(u.speaker, u.text) for u in result.value] == [("Unknown", "a"), ("Patient", "b")]

    def test_leftover_words_join_last_turn(self):
        generator = MockTextGenerator(responses=[_segments(("Doctor", "a b"))])

        result = LLMDiarizer(generator).diarize_by_text(_words("a", "b", "c", "d"), "Malayalam")

        assert len(result.value) == 1
        assert result.value[0].text == "a b c d"
        assert result.value[0].end_ms == 1900

    def test_text_rebuilt_from_consumed_words(self):
        # the model paraphrased one word; timings still follow the word count
        generator = MockTextGenerator(responses=[
            _segments(("Doctor", "what occurred"), ("Patient", "fever"))
        ])

        result = LLMDiarizer(generator).diarize_by_text(_words("what", "happened", "fever"), "Malayalam")

        assert [u.text for u in result.value] == ["what happened", "fever"]

    def test_segments_beyond_words_are_dropped(self):
        generator = MockTextGenerator(responses=[
            _segments(("Doctor", "a b c"), ("Patient", "d e"))
        ])

        result = LLMDiarizer(generator).diarize_by_text(_words("a", "b"), "Malayalam")

        assert [(u.speaker, u.text) for u in result.value] == [("Doctor", "a b")]

    def test_backend_failure_falls_back_to_single_unknown_turn(self):
        generator = MockTextGenerator(responses=[TextGenerationError("model not loaded")])
        words = _words("a", "b", "c")

        result = LLMDiarizer(generator).diarize_by_text(words, "Malayalam")

        assert result.degraded
        assert len(result.value) == 1
        assert result.value[0].speaker == "Unknown"
        assert result.value[0].text == "a b c"
        assert (result.value[0].start_ms, result.value[0].end_ms) == (0, 1400)

    def test_invalid_json_falls_back(self):
        generator = MockTextGenerator(responses=["Doctor: a b"])

        result = LLMDiarizer(generator).diarize_by_text(_words("a", "b"), "Arabic")

        assert result.degraded
        assert result.value[0].speaker == "Unknown"

    def test_no_segments_falls_back(self):
        generator = MockTextGenerator(responses=['{"segments": []}'])

        result = LLMDiarizer(generator).diarize_by_text(_words("a"), "Arabic")

        assert result.degraded
        assert result.reason == "no segments returned"

    def test_no_words_skips_backend(self):
        generator = MockTextGenerator()

        result = LLMDiarizer(generator).diarize_by_text([], "Malayalam")

        assert result.value == []
        assert not result.degraded
        assert generator.call_count == 0
