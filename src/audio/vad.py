"""End-of-utterance detection using Silero VAD."""

import logging
import threading
from typing import Callable, Optional

import numpy as np
import torch

from ..config import AudioConfig

logger = logging.getLogger(__name__)


class EndpointDetector:
    """Detects when the speaker has finished talking.

    An endpoint is reported once per utterance: after at least
    ``vad_min_speech_ms`` of speech followed by ``vad_min_silence_ms`` of
    silence.
    """

    def __init__(self, config: AudioConfig):
        self.config = config
        self.sample_rate = config.sample_rate
        self.threshold = config.vad_threshold
        self.min_speech_samples = int(config.vad_min_speech_ms * self.sample_rate / 1000)
        self.min_silence_samples = int(config.vad_min_silence_ms * self.sample_rate / 1000)

        # Silero only accepts fixed window sizes
        self.window_samples = 512 if self.sample_rate == 16000 else 256

        self._lock = threading.Lock()
        self._is_speaking = False
        self._speech_samples = 0
        self._silence_samples = 0

        self._on_endpoint: list[Callable[[], None]] = []

        self._model = None
        self._load_model()

    def _load_model(self) -> None:
        """Load the Silero VAD model."""
        logger.info("Loading Silero VAD model...")
        try:
            self._model, _utils = torch.hub.load(
                repo_or_dir="snakers4/silero-vad",
                model="silero_vad",
                force_reload=False,
                onnx=False,
            )
            self._model.eval()
            logger.info("Silero VAD model loaded")
        except Exception as e:
            logger.error(f"Failed to load Silero VAD: {e}")
            raise

    def reset_state(self) -> None:
        """Forget the current utterance."""
        with self._lock:
            self._is_speaking = False
            self._speech_samples = 0
            self._silence_samples = 0
            if self._model is not None:
                self._model.reset_states()

    def on_endpoint(self, callback: Callable[[], None]) -> None:
        """Register callback for the end of an utterance."""
        self._on_endpoint.append(callback)

    def speech_probability(self, audio_chunk: np.ndarray) -> float:
        """Highest speech probability over the chunk's VAD windows."""
        probs = []
        for start in range(0, len(audio_chunk) - self.window_samples + 1, self.window_samples):
            window = torch.from_numpy(
                audio_chunk[start:start + self.window_samples]
            ).float()
            with torch.no_grad():
                probs.append(self._model(window, self.sample_rate).item())
        return max(probs) if probs else 0.0

    def process_audio(self, audio_chunk: np.ndarray) -> Optional[float]:
        """
        Process an audio chunk through VAD.

        Args:
            audio_chunk: Audio samples as float32 numpy array

        Returns:
            Speech probability (0.0-1.0) or None if model not loaded
        """
        if self._model is None:
            return None

        speech_prob = self.speech_probability(audio_chunk)
        if self._update_state(len(audio_chunk), speech_prob):
            self._fire_endpoint()
        return speech_prob

    def _update_state(self, n_samples: int, speech_prob: float) -> bool:
        """Advance the utterance state machine. True when an endpoint is reached."""
        with self._lock:
            if speech_prob >= self.threshold:
                if not self._is_speaking:
                    self._is_speaking = True
                    logger.debug("Speech started")
                self._speech_samples += n_samples
                self._silence_samples = 0
                return False

            if not self._is_speaking:
                return False

            self._silence_samples += n_samples
            if self._silence_samples < self.min_silence_samples:
                return False

            reached = self._speech_samples >= self.min_speech_samples
            if not reached:
                logger.debug("Utterance too short, ignoring")

            self._is_speaking = False
            self._speech_samples = 0
            self._silence_samples = 0
            return reached

    def _fire_endpoint(self) -> None:
        logger.debug("Endpoint detected")
        for callback in self._on_endpoint:
            try:
                callback()
            except Exception as e:
                logger.error(f"Endpoint callback error: {e}")

    @property
    def is_speaking(self) -> bool:
        """Check if currently detecting speech."""
        return self._is_speaking
