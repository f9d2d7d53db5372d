"""Microphone capture delivering audio frames to a single consumer."""

import logging
import queue
import threading
from abc import ABC, abstractmethod
from typing import Callable, Optional

import numpy as np
import sounddevice as sd

from ..config import AudioConfig
from ..errors import AudioEngineError

logger = logging.getLogger(__name__)

FrameCallback = Callable[[np.ndarray], None]


class AudioSource(ABC):
    """Source of fixed-format audio frames, delivered on an internal thread."""

    @abstractmethod
    def open(self, on_frame: FrameCallback) -> None:
        """Start delivering frames to ``on_frame``. Raises AudioEngineError."""
        raise NotImplementedError

    @abstractmethod
    def close(self) -> None:
        """Stop delivering frames and release the device. Safe to repeat."""
        raise NotImplementedError

    @abstractmethod
    def is_running(self) -> bool:
        raise NotImplementedError


class AudioCapture(AudioSource):
    """Microphone input over a PortAudio stream, one consumer at a time."""

    def __init__(self, config: AudioConfig):
        self.config = config
        self.sample_rate = config.sample_rate
        self.channels = config.channels
        self.chunk_samples = int(config.sample_rate * config.chunk_duration_ms / 1000)

        self._audio_queue: queue.Queue[np.ndarray] = queue.Queue()
        self._stream: Optional[sd.InputStream] = None
        self._running = False
        self._thread: Optional[threading.Thread] = None
        self._on_frame: Optional[FrameCallback] = None

    def _audio_callback(
        self,
        indata: np.ndarray,
        frames: int,
        time_info: dict,
        status: sd.CallbackFlags,
    ) -> None:
        """Runs on the PortAudio thread; only copies and enqueues."""
        if status:
            logger.warning(f"Input stream status: {status}")

        # Mono float32, copied out of the driver buffer
        audio_data = indata.copy().flatten().astype(np.float32)

        self._audio_queue.put(audio_data)

    def _process_loop(self) -> None:
        """Hand queued frames to the consumer."""
        while self._running:
            try:
                audio_chunk = self._audio_queue.get(timeout=0.5)
            except queue.Empty:
                continue

            callback = self._on_frame
            if callback is None:
                continue
            try:
                callback(audio_chunk)
            except Exception as e:
                logger.error(f"Audio frame consumer error: {e}")

    def resolve_device(self) -> Optional[int | str]:
        """Translate the configured device name into a sounddevice argument."""
        if self.config.device == "default":
            return None
        try:
            return int(self.config.device)
        except ValueError:
            return self.config.device

    def open(self, on_frame: FrameCallback) -> None:
        """Open the input stream and start delivering frames to ``on_frame``."""
        if self._running:
            logger.warning("Audio capture already running, reopening")
            self.close()

        logger.info(f"Opening microphone: {self.sample_rate}Hz, {self.channels}ch, {self.chunk_samples} samples per frame")

        self._on_frame = on_frame
        self._running = True

        self._thread = threading.Thread(target=self._process_loop, daemon=True)
        self._thread.start()

        try:
            self._stream = sd.InputStream(
                device=self.resolve_device(),
                samplerate=self.sample_rate,
                channels=self.channels,
                dtype=np.float32,
                blocksize=self.chunk_samples,
                callback=self._audio_callback,
            )
            self._stream.start()
        except Exception as e:
            logger.error(f"Failed to start audio stream: {e}")
            self.close()
            raise AudioEngineError(f"Unable to start audio input: {e}") from e

        logger.info("Microphone open")

    def close(self) -> None:
        """Stop audio capture."""
        if not self._running:
            return

        logger.debug("Closing microphone stream")
        self._running = False
        self._on_frame = None

        if self._stream is not None:
            try:
                self._stream.stop()
                self._stream.close()
            except Exception as e:
                logger.warning(f"Error closing audio stream: {e}")
            self._stream = None

        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=2.0)
        self._thread = None

        # Drop frames nobody will consume
        while not self._audio_queue.empty():
            try:
                self._audio_queue.get_nowait()
            except queue.Empty:
                break

        logger.info("Microphone closed")

    def is_running(self) -> bool:
        return self._running

    @staticmethod
    def list_devices() -> list[dict]:
        """Input-capable devices as reported by PortAudio."""
        devices = []
        for i, device in enumerate(sd.query_devices()):
            if device["max_input_channels"] > 0:
                devices.append({
                    "id": i,
                    "name": device["name"],
                    "channels": device["max_input_channels"],
                    "sample_rate": device["default_samplerate"],
                })
        return devices
