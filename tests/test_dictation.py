"""Unit tests for the dictation state machine."""

import pytest

from dictation import DictationBusyError, DictationSession, DictationStatus
from schemas import RecognitionResult


def final(text):
    return RecognitionResult(transcript=text, is_final=True)


def interim(text):
    return RecognitionResult(transcript=text, is_final=False)


@pytest.fixture
def session():
    return DictationSession("account")


class TestDictationSession:
    @pytest.mark.unit
    def test_start_returns_recognition_settings(self, session):
        assert session.start() == {"continuous": True, "interimResults": True, "lang": "en-US"}
        assert session.state is DictationStatus.LISTENING

    @pytest.mark.unit
    def test_second_start_is_refused(self, session):
        session.start()
        with pytest.raises(DictationBusyError):
            session.start()

    @pytest.mark.unit
    def test_start_refused_while_processing(self, session):
        session.start()
        session.on_result([final("hello")])
        session.finish()
        with pytest.raises(DictationBusyError):
            session.start()

    @pytest.mark.unit
    def test_only_final_segments_are_kept(self, session):
        session.start()
        assert session.on_result([final("Acme "), interim("wan")]) == "Acme wan"
        session.on_result([final("Acme "), final("wants ten seats")], result_index=1)
        assert session.finish() == "Acme wants ten seats"
        assert session.state is DictationStatus.PROCESSING

    @pytest.mark.unit
    def test_empty_transcript_returns_to_idle(self, session):
        session.start()
        session.on_result([interim("um")])
        assert session.finish() is None
        assert session.state is DictationStatus.IDLE

    @pytest.mark.unit
    def test_complete_returns_to_idle(self, session):
        session.start()
        session.on_result([final("hi")])
        session.finish()
        session.complete()
        assert session.state is DictationStatus.IDLE
        session.start()

    @pytest.mark.unit
    def test_error_resets(self, session):
        session.start()
        session.on_result([final("hi")])
        session.fail("network")
        assert session.state is DictationStatus.IDLE
        assert session.live_transcript == ""

    @pytest.mark.unit
    def test_results_ignored_when_not_listening(self, session):
        assert session.on_result([final("stray")]) == ""
        assert session.finish() is None
