"""Voice capture lifecycle: microphone -> transcriber -> classification."""

import logging
import queue
import threading
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Callable, Optional

import numpy as np

from ..errors import (
    AudioEngineError,
    CaptureError,
    RequestCreationFailed,
    TranscriptionError,
    Unavailable,
)
from ..issue.classifier import ClassificationResult, classify
from .capture import AudioSource
from .permissions import Authorizer
from .transcriber import EventKind, Transcriber, TranscriptionEvent, TranscriptionHandle
from .vad import EndpointDetector

logger = logging.getLogger(__name__)


class Phase(str, Enum):
    """Capture lifecycle phase. Only moves forward within a generation."""
    IDLE = "idle"
    AUTHORIZING = "authorizing"
    CAPTURING = "capturing"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_active(self) -> bool:
        return self in (Phase.AUTHORIZING, Phase.CAPTURING, Phase.FINALIZING)

    @property
    def is_terminal(self) -> bool:
        return self in (Phase.COMPLETED, Phase.FAILED)


@dataclass(frozen=True)
class SessionState:
    """Immutable view of the session published to observers."""
    phase: Phase
    generation: int
    live_transcript: str
    final_transcript: str
    last_classification_text: str
    last_confidence: float
    last_error: Optional[str]
    pending_cancellation: bool

    @property
    def is_capturing(self) -> bool:
        return self.phase is Phase.CAPTURING

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["phase"] = self.phase.value
        data["is_capturing"] = self.is_capturing
        return data


# ==================== Dispatcher messages ====================

@dataclass(frozen=True)
class _Delivery:
    generation: int
    event: TranscriptionEvent


@dataclass(frozen=True)
class _FinishRequest:
    generation: int


@dataclass(frozen=True)
class _FinalizeTimeout:
    generation: int


_SHUTDOWN = object()

StateCallback = Callable[[SessionState], None]


class CaptureSession:
    """Owns one microphone and one transcription session at a time.

    All state lives behind ``_lock``. Transcriber callbacks never touch it
    directly: they are queued together with the generation that issued
    them and applied in order by a single dispatcher thread, which drops
    anything from a superseded generation.
    """

    def __init__(
        self,
        transcriber: Transcriber,
        audio_source: AudioSource,
        authorizer: Optional[Authorizer] = None,
        endpoint_detector: Optional[EndpointDetector] = None,
        finalize_timeout: float = 5.0,
        classifier: Callable[[str], ClassificationResult] = classify,
    ):
        self.transcriber = transcriber
        self.audio_source = audio_source
        self.authorizer = authorizer
        self.endpoint_detector = endpoint_detector
        self.finalize_timeout = finalize_timeout
        self.classifier = classifier

        self._lock = threading.RLock()
        self._phase = Phase.IDLE
        self._generation = 0
        self._live_transcript = ""
        self._final_transcript = ""
        self._pending_cancellation = False
        self._classification: Optional[ClassificationResult] = None
        self._last_error: Optional[CaptureError] = None
        self._authorized = False

        self._handle: Optional[TranscriptionHandle] = None
        self._audio_open = False
        self._audio_generation = 0
        self._finalize_timer: Optional[threading.Timer] = None

        self._events: queue.Queue = queue.Queue()
        self._dispatcher: Optional[threading.Thread] = None

        self._subscribers: list[StateCallback] = []
        self._subscribers_lock = threading.Lock()
        self._publish_lock = threading.RLock()

        if endpoint_detector is not None:
            endpoint_detector.on_endpoint(self._on_endpoint)

    # ==================== Authorization ====================

    def request_authorization(self) -> bool:
        """Ask for microphone/speech permission. Blocks; never raises."""
        if self.authorizer is None:
            return True
        try:
            granted = bool(self.authorizer.request())
        except Exception as e:
            logger.error(f"Authorization request failed: {e}")
            return False

        if not granted:
            logger.warning("Speech capture authorization denied")
        return granted

    def _transcriber_available(self) -> bool:
        try:
            return self.transcriber.is_available()
        except Exception as e:
            logger.error(f"Transcriber availability check failed: {e}")
            return False

    # ==================== Lifecycle ====================

    def start(self) -> None:
        """
        Start a new capture, superseding any capture in progress.

        Raises:
            Unavailable: permission denied or transcriber not ready
            RequestCreationFailed: transcription session could not be created
            AudioEngineError: audio input could not be started
        """
        with self._lock:
            self._ensure_dispatcher()
            if self._phase.is_active:
                logger.info(f"Superseding capture generation {self._generation}")
                self._release_locked()

            self._generation += 1
            generation = self._generation
            self._phase = Phase.AUTHORIZING
            self._pending_cancellation = False
            self._last_error = None
            authorized = self._authorized
        self._publish()

        logger.info(f"Starting capture generation {generation}")

        if not authorized:
            authorized = self.request_authorization()
        available = authorized and self._transcriber_available()

        error: Optional[CaptureError] = None
        with self._lock:
            if generation != self._generation or self._phase is not Phase.AUTHORIZING:
                logger.info(f"Capture generation {generation} cancelled before start")
                return

            if not authorized:
                error = Unavailable("Speech recognition authorization denied")
            elif not available:
                error = Unavailable("Speech recognition is not available")
            else:
                self._authorized = True
                try:
                    self._begin_capture_locked(generation)
                except CaptureError as e:
                    error = e

            if error is not None:
                self._fail_locked(error)
        self._publish()

        if error is not None:
            raise error

    def _begin_capture_locked(self, generation: int) -> None:
        def on_event(event: TranscriptionEvent) -> None:
            self._post(_Delivery(generation, event))

        try:
            self._handle = self.transcriber.begin_session(on_event, partial_results=True)
        except Exception as e:
            raise RequestCreationFailed(
                f"Unable to create speech recognition request: {e}"
            ) from e

        handle = self._handle
        self._live_transcript = ""
        if self.endpoint_detector is not None:
            self.endpoint_detector.reset_state()
        self._audio_generation = generation

        try:
            self.audio_source.open(lambda frame: self._on_frame(handle, frame))
        except AudioEngineError:
            raise
        except Exception as e:
            raise AudioEngineError(f"Unable to start audio input: {e}") from e

        self._audio_open = True
        self._phase = Phase.CAPTURING
        logger.info(f"Capture generation {generation} started")

    def stop(self) -> None:
        """Abort the capture and release all resources. Idempotent."""
        with self._lock:
            if self._phase is Phase.IDLE:
                return

            changed = False
            if self._phase.is_active:
                self._pending_cancellation = True
                self._phase = Phase.COMPLETED
                changed = True
                logger.info(f"Capture generation {self._generation} stopped")
            self._release_locked()

        if changed:
            self._publish()

    def finish(self) -> bool:
        """
        End dictation and wait for the final transcription.

        The tap is released immediately; the final result completes the
        capture. If it does not arrive within ``finalize_timeout`` the last
        partial transcript is used instead.

        Returns:
            True if the capture left CAPTURING (finalizing, or failed when the
            transcriber could not end the audio), False if nothing was capturing
        """
        with self._lock:
            started = self._finish_locked()
        if started:
            self._publish()
        return started

    def _finish_locked(self) -> bool:
        if self._phase is not Phase.CAPTURING:
            return False

        self._close_audio_locked()
        if self._handle is not None:
            try:
                self.transcriber.end_audio(self._handle)
            except Exception as e:
                self._fail_locked(TranscriptionError(f"Unable to end audio input: {e}"))
                return True
        self._phase = Phase.FINALIZING

        self._finalize_timer = threading.Timer(
            self.finalize_timeout,
            self._post,
            args=(_FinalizeTimeout(self._generation),),
        )
        self._finalize_timer.daemon = True
        self._finalize_timer.start()

        logger.info(f"Capture generation {self._generation} finalizing")
        return True

    def shutdown(self) -> None:
        """Stop any capture and the dispatcher thread."""
        self.stop()
        dispatcher = self._dispatcher
        if dispatcher is not None and dispatcher.is_alive():
            self._events.put(_SHUTDOWN)
            if dispatcher is not threading.current_thread():
                dispatcher.join(timeout=2.0)
        self._dispatcher = None

    def flush(self, timeout: float = 2.0) -> bool:
        """Wait until every event queued so far has been applied."""
        dispatcher = self._dispatcher
        if dispatcher is None or not dispatcher.is_alive():
            return True
        marker = threading.Event()
        self._events.put(marker)
        return marker.wait(timeout)

    # ==================== Resource handling ====================

    def _close_audio_locked(self) -> None:
        if not self._audio_open:
            return
        self._audio_open = False
        try:
            self.audio_source.close()
        except Exception as e:
            logger.warning(f"Error closing audio source: {e}")

    def _release_locked(self) -> None:
        """Release tap and transcription session without touching the phase."""
        if self._finalize_timer is not None:
            self._finalize_timer.cancel()
            self._finalize_timer = None

        self._close_audio_locked()

        handle, self._handle = self._handle, None
        if handle is None:
            return
        try:
            self.transcriber.end_audio(handle)
        except Exception as e:
            logger.warning(f"Error ending transcription audio: {e}")
        try:
            self.transcriber.cancel(handle)
        except Exception as e:
            logger.warning(f"Error cancelling transcription: {e}")

    def _fail_locked(self, error: CaptureError) -> None:
        self._release_locked()
        self._phase = Phase.FAILED
        self._last_error = error
        logger.error(f"Capture generation {self._generation} failed: {error}")

    def _complete_locked(self, text: str) -> None:
        self._final_transcript = text
        self._classification = self.classifier(text)
        self._phase = Phase.COMPLETED
        logger.info(
            f"Capture generation {self._generation} completed "
            f"(confidence {self._classification.confidence:.2f})"
        )

    # ==================== Event delivery ====================

    def _on_frame(self, handle: TranscriptionHandle, frame: np.ndarray) -> None:
        """Runs on the audio thread; must not take the state lock."""
        self.transcriber.feed(handle, frame)
        if self.endpoint_detector is not None:
            self.endpoint_detector.process_audio(frame)

    def _on_endpoint(self) -> None:
        self._post(_FinishRequest(self._audio_generation))

    def _post(self, message: Any) -> None:
        self._events.put(message)

    def _ensure_dispatcher(self) -> None:
        if self._dispatcher is None or not self._dispatcher.is_alive():
            self._dispatcher = threading.Thread(target=self._dispatch_loop, daemon=True)
            self._dispatcher.start()

    def _dispatch_loop(self) -> None:
        """Apply queued messages one at a time."""
        while True:
            message = self._events.get()
            try:
                if message is _SHUTDOWN:
                    break
                if isinstance(message, threading.Event):
                    message.set()
                    continue
                if self._handle_message(message):
                    self._publish()
            except Exception as e:
                logger.error(f"Error applying capture event: {e}", exc_info=True)

    def _handle_message(self, message: Any) -> bool:
        with self._lock:
            if message.generation != self._generation:
                logger.debug(
                    f"Dropping stale {type(message).__name__} from generation "
                    f"{message.generation} (current {self._generation})"
                )
                return False

            if isinstance(message, _Delivery):
                return self._apply_event_locked(message.event)
            if isinstance(message, _FinishRequest):
                return self._finish_locked()
            if isinstance(message, _FinalizeTimeout):
                return self._finalize_timeout_locked()
            return False

    def _apply_event_locked(self, event: TranscriptionEvent) -> bool:
        if event.kind is EventKind.PARTIAL:
            if self._phase is not Phase.CAPTURING:
                return False
            self._live_transcript = event.text
            return True

        if self._phase not in (Phase.CAPTURING, Phase.FINALIZING):
            logger.debug(f"Ignoring {event.kind.value} result in phase {self._phase.value}")
            return False

        if event.kind is EventKind.FINAL:
            if self._phase is Phase.CAPTURING:
                self._live_transcript = event.text
            self._release_locked()
            self._complete_locked(event.text)
            return True

        message = str(event.error) if event.error is not None else "Transcription failed"
        self._fail_locked(TranscriptionError(message))
        return True

    def _finalize_timeout_locked(self) -> bool:
        if self._phase is not Phase.FINALIZING:
            return False

        logger.warning("No final transcription received, using last partial result")
        text = self._live_transcript
        self._release_locked()
        if text:
            self._complete_locked(text)
        else:
            self._fail_locked(TranscriptionError("No transcription received"))
        return True

    # ==================== Observation ====================

    def subscribe(self, callback: StateCallback) -> Callable[[], None]:
        """Register for state snapshots. Returns a function that unsubscribes."""
        with self._subscribers_lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._subscribers_lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def _publish(self) -> None:
        # Each delivery carries the latest state, so a late delivery never
        # overwrites a newer one with stale values.
        with self._publish_lock:
            state = self.snapshot()
            with self._subscribers_lock:
                subscribers = list(self._subscribers)
            for callback in subscribers:
                try:
                    callback(state)
                except Exception as e:
                    logger.error(f"State subscriber error: {e}")

    def snapshot(self) -> SessionState:
        with self._lock:
            return SessionState(
                phase=self._phase,
                generation=self._generation,
                live_transcript=self._live_transcript,
                final_transcript=self._final_transcript,
                last_classification_text=(
                    self._classification.description if self._classification else ""
                ),
                last_confidence=(
                    self._classification.confidence if self._classification else 0.0
                ),
                last_error=str(self._last_error) if self._last_error else None,
                pending_cancellation=self._pending_cancellation,
            )

    @property
    def phase(self) -> Phase:
        with self._lock:
            return self._phase

    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation

    @property
    def pending_cancellation(self) -> bool:
        with self._lock:
            return self._pending_cancellation

    @property
    def is_capturing(self) -> bool:
        return self.phase is Phase.CAPTURING

    @property
    def live_transcript(self) -> str:
        with self._lock:
            return self._live_transcript

    @property
    def final_transcript(self) -> str:
        with self._lock:
            return self._final_transcript

    @property
    def last_classification_text(self) -> str:
        return self.snapshot().last_classification_text

    @property
    def last_confidence(self) -> float:
        return self.snapshot().last_confidence

    @property
    def last_error(self) -> Optional[CaptureError]:
        with self._lock:
            return self._last_error
