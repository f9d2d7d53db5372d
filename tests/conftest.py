"""Pytest configuration and shared fixtures."""

import tempfile
import threading
from pathlib import Path
from typing import Optional
from unittest.mock import MagicMock

import cv2
import numpy as np
import pytest

from src.audio.capture import AudioSource
from src.audio.permissions import Authorizer
from src.audio.transcriber import (
    EventKind,
    Transcriber,
    TranscriptionEvent,
    TranscriptionHandle,
)
from src.errors import RequestFailed
from src.vision.analyzer import AnalysisRequest, AnalysisResult, VisionAnalyzer


# ==================== Path Fixtures ====================

@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def temp_config_file(temp_dir):
    """Create a temporary config file."""
    config_path = temp_dir / "settings.yaml"
    config_content = """
audio:
  device: "default"
  sample_rate: 16000
  channels: 1
  chunk_duration_ms: 512
  whisper_model: "tiny"
  whisper_device: "cpu"
  partial_interval_ms: 500
  finalize_timeout: 2.0

vision:
  api_key: "sk-test"
  model: "gpt-4o-mini"
  timeout: 10.0

web:
  enabled: false
  port: 9090

logging:
  level: "DEBUG"
  file: null
"""
    config_path.write_text(config_content)
    return config_path


# ==================== Audio Fixtures ====================

@pytest.fixture
def sample_audio_chunk():
    """Generate a sample audio chunk."""
    # 512ms of audio at 16kHz = 8192 samples
    duration_samples = int(16000 * 0.512)
    return np.random.randn(duration_samples).astype(np.float32) * 0.1


@pytest.fixture
def silence_audio_chunk():
    """Generate a silent audio chunk."""
    duration_samples = int(16000 * 0.512)
    return np.zeros(duration_samples, dtype=np.float32)


@pytest.fixture
def mock_audio_config():
    """Create a test audio config."""
    from src.config import AudioConfig
    return AudioConfig(
        device="default",
        sample_rate=16000,
        channels=1,
        chunk_duration_ms=512,
        whisper_model="tiny",
        whisper_device="cpu",
        whisper_compute_type="float32",
        partial_interval_ms=512,
        vad_threshold=0.5,
        vad_min_speech_ms=250,
        vad_min_silence_ms=500,
    )


@pytest.fixture
def mock_vad_model():
    """Create a mock Silero VAD model."""
    mock_model = MagicMock()
    mock_model.return_value = MagicMock(item=MagicMock(return_value=0.8))
    mock_model.reset_states = MagicMock()
    return mock_model


@pytest.fixture
def mock_whisper_model():
    """Create a mock Whisper model."""
    mock_model = MagicMock()
    mock_segment = MagicMock()
    mock_segment.text = " Test transcription "
    mock_model.transcribe.return_value = ([mock_segment], MagicMock())
    return mock_model


# ==================== Capability Fakes ====================

class FakeTranscriber(Transcriber):
    """Scripted transcriber: tests emit events by hand."""

    def __init__(
        self,
        available: bool = True,
        begin_error: Optional[Exception] = None,
        end_audio_error: Optional[Exception] = None,
    ):
        self.available = available
        self.begin_error = begin_error
        self.end_audio_error = end_audio_error
        self.handles: list[TranscriptionHandle] = []
        self.callbacks: dict[int, object] = {}
        self.fed: dict[int, list[np.ndarray]] = {}
        self.ended: list[int] = []
        self.cancelled: list[int] = []

    def is_available(self) -> bool:
        return self.available

    def begin_session(self, on_event, partial_results=True):
        if self.begin_error is not None:
            raise self.begin_error
        handle = TranscriptionHandle(id=len(self.handles) + 1, partial_results=partial_results)
        self.handles.append(handle)
        self.callbacks[handle.id] = on_event
        self.fed[handle.id] = []
        return handle

    def feed(self, handle, frame):
        self.fed[handle.id].append(frame)

    def end_audio(self, handle):
        self.ended.append(handle.id)
        if self.end_audio_error is not None:
            raise self.end_audio_error

    def cancel(self, handle):
        self.cancelled.append(handle.id)

    def emit(self, handle, kind: EventKind, text: str = "", error=None) -> None:
        """Deliver an event the way the transcriber thread would."""
        self.callbacks[handle.id](
            TranscriptionEvent(handle=handle, kind=kind, text=text, error=error)
        )

    def partial(self, handle, text: str) -> None:
        self.emit(handle, EventKind.PARTIAL, text=text)

    def final(self, handle, text: str) -> None:
        self.emit(handle, EventKind.FINAL, text=text)

    def error(self, handle, error: Exception) -> None:
        self.emit(handle, EventKind.ERROR, error=error)

    @property
    def current(self) -> TranscriptionHandle:
        return self.handles[-1]


class FakeAudioSource(AudioSource):
    """Audio source whose frames are pushed by the test."""

    def __init__(self, open_error: Optional[Exception] = None):
        self.open_error = open_error
        self.on_frame = None
        self.open_count = 0
        self.close_count = 0
        self._running = False

    def open(self, on_frame):
        if self.open_error is not None:
            raise self.open_error
        self.open_count += 1
        self.on_frame = on_frame
        self._running = True

    def close(self):
        self.close_count += 1
        self.on_frame = None
        self._running = False

    def is_running(self) -> bool:
        return self._running

    def push(self, frame: np.ndarray) -> None:
        if self.on_frame is not None:
            self.on_frame(frame)


class FakeAuthorizer(Authorizer):
    """Authorizer answering a fixed value, optionally after a gate opens."""

    def __init__(self, granted: bool = True, gate: Optional[threading.Event] = None):
        self.granted = granted
        self.gate = gate
        self.calls = 0
        self.entered = threading.Event()

    def request(self) -> bool:
        self.calls += 1
        self.entered.set()
        if self.gate is not None:
            self.gate.wait(timeout=5.0)
        return self.granted


class FakeVisionAnalyzer(VisionAnalyzer):
    """Analyzer returning a scripted result or raising a scripted error."""

    def __init__(
        self,
        configured: bool = True,
        result: Optional[AnalysisResult] = None,
        error: Optional[Exception] = None,
    ):
        self.configured = configured
        self.result = result
        self.error = error
        self.requests: list[AnalysisRequest] = []

    def is_configured(self) -> bool:
        return self.configured

    def analyze(self, request: AnalysisRequest) -> AnalysisResult:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        if self.result is None:
            raise RequestFailed("no scripted result")
        return self.result


@pytest.fixture
def fake_transcriber():
    return FakeTranscriber()


@pytest.fixture
def fake_audio_source():
    return FakeAudioSource()


@pytest.fixture
def fake_authorizer():
    return FakeAuthorizer()


# ==================== Vision Fixtures ====================

@pytest.fixture
def sample_analysis_result():
    """Create a sample image analysis result."""
    return AnalysisResult(
        description="Water stain on ceiling tile near the vent",
        recommendations=["Locate leak source", "Replace ceiling tile"],
        estimated_time="2-3 hours",
        priority="High",
        confidence=0.92,
        category="Plumbing",
    )


@pytest.fixture
def sample_image_bytes():
    """A small JPEG-encoded BGR image."""
    frame = np.random.randint(0, 255, (480, 640, 3), dtype=np.uint8)
    ok, encoded = cv2.imencode(".jpg", frame)
    assert ok
    return encoded.tobytes()


@pytest.fixture
def large_image_bytes():
    """A PNG image larger than the analysis size limit."""
    frame = np.zeros((1200, 1600, 3), dtype=np.uint8)
    ok, encoded = cv2.imencode(".png", frame)
    assert ok
    return encoded.tobytes()
