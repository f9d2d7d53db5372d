"""Microphone authorization checks."""

import logging
from abc import ABC, abstractmethod

import sounddevice as sd

from ..config import AudioConfig

logger = logging.getLogger(__name__)


class Authorizer(ABC):
    """Platform permission layer for microphone and speech access."""

    @abstractmethod
    def request(self) -> bool:
        """Block until the platform answers. True when capture is permitted."""
        raise NotImplementedError


class MicrophoneAuthorizer(Authorizer):
    """Grants access when the configured input device accepts our format.

    On desktop platforms there is no permission prompt to wait on; the
    closest equivalent is asking PortAudio whether the device can be
    opened with the configured sample rate and channel count.
    """

    def __init__(self, config: AudioConfig):
        self.config = config

    def _device(self):
        if self.config.device == "default":
            return None
        try:
            return int(self.config.device)
        except ValueError:
            return self.config.device

    def request(self) -> bool:
        try:
            sd.check_input_settings(
                device=self._device(),
                channels=self.config.channels,
                samplerate=self.config.sample_rate,
                dtype="float32",
            )
        except Exception as e:
            logger.warning(f"Microphone access denied: {e}")
            return False

        logger.info("Microphone access granted")
        return True
