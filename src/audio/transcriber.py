"""Streaming speech-to-text sessions using faster-whisper."""

import itertools
import logging
import queue
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

import numpy as np
from faster_whisper import WhisperModel

from ..config import AudioConfig

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    """Kind of result emitted by a transcription session."""
    PARTIAL = "partial"
    FINAL = "final"
    ERROR = "error"


@dataclass(frozen=True)
class TranscriptionHandle:
    """Identifies one transcription session."""
    id: int
    partial_results: bool = True


@dataclass
class TranscriptionEvent:
    """A result delivered by a transcription session."""
    handle: TranscriptionHandle
    kind: EventKind
    text: str = ""
    error: Optional[BaseException] = None


EventCallback = Callable[[TranscriptionEvent], None]


class Transcriber(ABC):
    """Speech-to-text capability.

    A session receives audio frames through ``feed`` and reports zero or
    more PARTIAL events followed by exactly one FINAL or ERROR event,
    unless it is cancelled first, in which case it reports nothing more.
    """

    @abstractmethod
    def is_available(self) -> bool:
        raise NotImplementedError

    @abstractmethod
    def begin_session(
        self, on_event: EventCallback, partial_results: bool = True
    ) -> TranscriptionHandle:
        raise NotImplementedError

    @abstractmethod
    def feed(self, handle: TranscriptionHandle, frame: np.ndarray) -> None:
        raise NotImplementedError

    @abstractmethod
    def end_audio(self, handle: TranscriptionHandle) -> None:
        raise NotImplementedError

    @abstractmethod
    def cancel(self, handle: TranscriptionHandle) -> None:
        raise NotImplementedError


_END_OF_AUDIO = object()


@dataclass
class _Session:
    handle: TranscriptionHandle
    on_event: EventCallback
    frames: queue.Queue = field(default_factory=queue.Queue)
    cancelled: threading.Event = field(default_factory=threading.Event)
    ended: bool = False
    thread: Optional[threading.Thread] = None


class WhisperTranscriber(Transcriber):
    """Speech-to-text transcription using faster-whisper.

    Whisper has no native streaming mode, so each session re-transcribes
    its accumulated audio every ``partial_interval_ms`` of new input to
    produce partial results, and once more after end of audio for the
    final result.
    """

    def __init__(self, config: AudioConfig):
        self.config = config
        self.model_name = config.whisper_model
        self.device = config.whisper_device
        self.compute_type = config.whisper_compute_type
        self.sample_rate = config.sample_rate
        self.partial_samples = int(config.sample_rate * config.partial_interval_ms / 1000)

        self._model: Optional[WhisperModel] = None
        self._model_lock = threading.Lock()
        self._ids = itertools.count(1)
        self._sessions: dict[int, _Session] = {}
        self._sessions_lock = threading.Lock()

    def load_model(self) -> None:
        """Load the Whisper model."""
        logger.info(f"Loading Whisper model: {self.model_name} on {self.device}")
        try:
            self._model = WhisperModel(
                self.model_name,
                device=self.device,
                compute_type=self.compute_type,
            )
            logger.info("Whisper model loaded")
        except Exception as e:
            logger.error(f"Failed to load Whisper model: {e}")
            raise

    def is_available(self) -> bool:
        """Load the model on first use; False when it cannot be loaded."""
        if self._model is not None:
            return True
        try:
            self.load_model()
        except Exception:
            return False
        return True

    def begin_session(
        self, on_event: EventCallback, partial_results: bool = True
    ) -> TranscriptionHandle:
        if self._model is None:
            raise RuntimeError("Whisper model not loaded")

        handle = TranscriptionHandle(id=next(self._ids), partial_results=partial_results)
        session = _Session(handle=handle, on_event=on_event)
        session.thread = threading.Thread(
            target=self._session_loop, args=(session,), daemon=True
        )

        with self._sessions_lock:
            self._sessions[handle.id] = session
        session.thread.start()

        logger.debug(f"Transcription session {handle.id} started")
        return handle

    def _get(self, handle: TranscriptionHandle) -> Optional[_Session]:
        with self._sessions_lock:
            return self._sessions.get(handle.id)

    def feed(self, handle: TranscriptionHandle, frame: np.ndarray) -> None:
        session = self._get(handle)
        if session is None or session.ended or session.cancelled.is_set():
            return
        session.frames.put(frame)

    def end_audio(self, handle: TranscriptionHandle) -> None:
        session = self._get(handle)
        if session is None or session.ended:
            return
        session.ended = True
        session.frames.put(_END_OF_AUDIO)

    def cancel(self, handle: TranscriptionHandle) -> None:
        """Cancel without waiting for the worker to exit."""
        session = self._get(handle)
        if session is None:
            return
        session.cancelled.set()
        session.frames.put(_END_OF_AUDIO)

    def active_sessions(self) -> int:
        with self._sessions_lock:
            return len(self._sessions)

    def _session_loop(self, session: _Session) -> None:
        """Accumulate audio and emit partial/final results for one session."""
        buffer: list[np.ndarray] = []
        pending_samples = 0

        try:
            while not session.cancelled.is_set():
                try:
                    item = session.frames.get(timeout=0.5)
                except queue.Empty:
                    continue

                if session.cancelled.is_set():
                    break

                if item is _END_OF_AUDIO:
                    text = self._transcribe(buffer)
                    self._emit(session, EventKind.FINAL, text=text)
                    break

                buffer.append(item)
                pending_samples += len(item)

                if session.handle.partial_results and pending_samples >= self.partial_samples:
                    pending_samples = 0
                    text = self._transcribe(buffer)
                    if text:
                        self._emit(session, EventKind.PARTIAL, text=text)

        except Exception as e:
            logger.error(f"Transcription error in session {session.handle.id}: {e}")
            self._emit(session, EventKind.ERROR, error=e)

        finally:
            with self._sessions_lock:
                self._sessions.pop(session.handle.id, None)
            logger.debug(f"Transcription session {session.handle.id} finished")

    def _transcribe(self, buffer: list[np.ndarray]) -> str:
        """Transcribe everything captured so far."""
        if not buffer:
            return ""

        audio = np.concatenate(buffer)
        # faster-whisper is not safe to call concurrently on one model
        with self._model_lock:
            segments, _info = self._model.transcribe(
                audio,
                beam_size=self.config.beam_size,
                language=self.config.language,
                vad_filter=False,
            )
            texts = [seg.text.strip() for seg in segments]

        return " ".join(t for t in texts if t)

    def _emit(
        self,
        session: _Session,
        kind: EventKind,
        text: str = "",
        error: Optional[BaseException] = None,
    ) -> None:
        if session.cancelled.is_set():
            return
        try:
            session.on_event(TranscriptionEvent(
                handle=session.handle, kind=kind, text=text, error=error,
            ))
        except Exception as e:
            logger.error(f"Transcription callback error: {e}")
