"""Tests for the transcriber module."""

import threading
import time
from unittest.mock import MagicMock, patch

import pytest

from src.audio.transcriber import (
    EventKind,
    TranscriptionEvent,
    TranscriptionHandle,
    WhisperTranscriber,
)
from src.config import AudioConfig


class EventRecorder:
    """Collects events and signals when a session is done."""

    def __init__(self):
        self.events: list[TranscriptionEvent] = []
        self.done = threading.Event()

    def __call__(self, event: TranscriptionEvent) -> None:
        self.events.append(event)
        if event.kind in (EventKind.FINAL, EventKind.ERROR):
            self.done.set()

    @property
    def kinds(self) -> list[EventKind]:
        return [e.kind for e in self.events]


class TestTranscriptionEvent:
    """Tests for TranscriptionEvent dataclass."""

    def test_event_creation(self):
        """Test creating an event."""
        handle = TranscriptionHandle(id=1)
        event = TranscriptionEvent(handle=handle, kind=EventKind.PARTIAL, text="hello")

        assert event.handle.id == 1
        assert event.kind is EventKind.PARTIAL
        assert event.text == "hello"
        assert event.error is None


class TestWhisperTranscriber:
    """Tests for WhisperTranscriber class."""

    @pytest.fixture
    def transcriber_config(self):
        """Create test config."""
        return AudioConfig(
            sample_rate=16000,
            whisper_model="tiny",
            whisper_device="cpu",
            whisper_compute_type="float32",
            partial_interval_ms=512,
        )

    @pytest.fixture
    def transcriber(self, transcriber_config, mock_whisper_model):
        """Create WhisperTranscriber with a mocked model."""
        transcriber = WhisperTranscriber(transcriber_config)
        transcriber._model = mock_whisper_model
        return transcriber

    def test_init(self, transcriber_config):
        """Test WhisperTranscriber initialization."""
        transcriber = WhisperTranscriber(transcriber_config)

        assert transcriber.model_name == "tiny"
        assert transcriber.device == "cpu"
        assert transcriber.partial_samples == 8192
        assert transcriber.active_sessions() == 0

    @patch("src.audio.transcriber.WhisperModel")
    def test_load_model(self, mock_whisper_class, transcriber_config):
        """Test model loading."""
        mock_model = MagicMock()
        mock_whisper_class.return_value = mock_model
        transcriber = WhisperTranscriber(transcriber_config)

        transcriber.load_model()

        mock_whisper_class.assert_called_with(
            "tiny",
            device="cpu",
            compute_type="float32",
        )
        assert transcriber._model == mock_model

    @patch("src.audio.transcriber.WhisperModel")
    def test_load_model_failure(self, mock_whisper_class, transcriber_config):
        """Test model loading failure."""
        mock_whisper_class.side_effect = Exception("Load failed")
        transcriber = WhisperTranscriber(transcriber_config)

        with pytest.raises(Exception):
            transcriber.load_model()

    @patch("src.audio.transcriber.WhisperModel")
    def test_is_available_loads_model(self, mock_whisper_class, transcriber_config):
        """Test availability check loads the model once."""
        transcriber = WhisperTranscriber(transcriber_config)

        assert transcriber.is_available()
        assert transcriber.is_available()
        mock_whisper_class.assert_called_once()

    @patch("src.audio.transcriber.WhisperModel")
    def test_is_available_false_on_load_failure(self, mock_whisper_class, transcriber_config):
        """Test availability is False when the model can't load."""
        mock_whisper_class.side_effect = RuntimeError("CUDA not available")
        transcriber = WhisperTranscriber(transcriber_config)

        assert not transcriber.is_available()

    def test_begin_session_without_model(self, transcriber_config):
        """Test sessions need a loaded model."""
        transcriber = WhisperTranscriber(transcriber_config)

        with pytest.raises(RuntimeError):
            transcriber.begin_session(MagicMock())

    def test_handles_are_unique(self, transcriber):
        """Test each session gets its own handle."""
        first = transcriber.begin_session(MagicMock())
        second = transcriber.begin_session(MagicMock())

        assert first.id != second.id

        transcriber.cancel(first)
        transcriber.cancel(second)

    def test_partial_then_final(self, transcriber, sample_audio_chunk):
        """Test partial results followed by a final result."""
        recorder = EventRecorder()
        handle = transcriber.begin_session(recorder)

        transcriber.feed(handle, sample_audio_chunk)
        transcriber.feed(handle, sample_audio_chunk)
        transcriber.end_audio(handle)

        assert recorder.done.wait(2.0)
        assert recorder.kinds[-1] is EventKind.FINAL
        assert EventKind.PARTIAL in recorder.kinds
        assert recorder.events[-1].text == "Test transcription"
        assert all(e.handle == handle for e in recorder.events)

    def test_final_transcribes_all_audio(self, transcriber, mock_whisper_model, sample_audio_chunk):
        """Test the final result covers everything fed."""
        recorder = EventRecorder()
        handle = transcriber.begin_session(recorder, partial_results=False)

        transcriber.feed(handle, sample_audio_chunk)
        transcriber.feed(handle, sample_audio_chunk)
        transcriber.end_audio(handle)

        assert recorder.done.wait(2.0)
        audio = mock_whisper_model.transcribe.call_args[0][0]
        assert len(audio) == 2 * len(sample_audio_chunk)

    def test_no_partials_when_disabled(self, transcriber, sample_audio_chunk):
        """Test partial results can be turned off."""
        recorder = EventRecorder()
        handle = transcriber.begin_session(recorder, partial_results=False)

        transcriber.feed(handle, sample_audio_chunk)
        transcriber.end_audio(handle)

        assert recorder.done.wait(2.0)
        assert recorder.kinds == [EventKind.FINAL]

    def test_final_without_audio(self, transcriber, mock_whisper_model):
        """Test ending an empty session yields an empty final result."""
        recorder = EventRecorder()
        handle = transcriber.begin_session(recorder)

        transcriber.end_audio(handle)

        assert recorder.done.wait(2.0)
        assert recorder.events[-1].kind is EventKind.FINAL
        assert recorder.events[-1].text == ""
        mock_whisper_model.transcribe.assert_not_called()

    def test_error_event(self, transcriber, mock_whisper_model, sample_audio_chunk):
        """Test model failures are reported as an error event."""
        mock_whisper_model.transcribe.side_effect = Exception("Transcription error")
        recorder = EventRecorder()
        handle = transcriber.begin_session(recorder, partial_results=False)

        transcriber.feed(handle, sample_audio_chunk)
        transcriber.end_audio(handle)

        assert recorder.done.wait(2.0)
        assert recorder.kinds == [EventKind.ERROR]
        assert "Transcription error" in str(recorder.events[0].error)

    def test_cancel_suppresses_events(self, transcriber, sample_audio_chunk):
        """Test nothing is emitted after cancel."""
        recorder = EventRecorder()
        handle = transcriber.begin_session(recorder, partial_results=False)

        transcriber.feed(handle, sample_audio_chunk)
        transcriber.cancel(handle)
        transcriber.end_audio(handle)

        time.sleep(0.3)
        assert recorder.events == []

    def test_session_removed_when_done(self, transcriber):
        """Test finished sessions are forgotten."""
        recorder = EventRecorder()
        handle = transcriber.begin_session(recorder)
        transcriber.end_audio(handle)

        assert recorder.done.wait(2.0)
        time.sleep(0.1)
        assert transcriber.active_sessions() == 0

    def test_feed_unknown_handle(self, transcriber, sample_audio_chunk):
        """Test feeding a finished session doesn't raise."""
        transcriber.feed(TranscriptionHandle(id=999), sample_audio_chunk)
        transcriber.end_audio(TranscriptionHandle(id=999))
        transcriber.cancel(TranscriptionHandle(id=999))

    def test_callback_error_handling(self, transcriber):
        """Test callback errors don't kill the session thread."""
        done = threading.Event()

        def error_callback(event):
            done.set()
            raise ValueError("Callback error")

        handle = transcriber.begin_session(error_callback)
        transcriber.end_audio(handle)

        assert done.wait(2.0)
