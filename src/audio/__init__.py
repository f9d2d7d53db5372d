"""Audio pipeline components for voice capture and transcription."""

from .capture import AudioCapture, AudioSource
from .permissions import Authorizer, MicrophoneAuthorizer
from .session import CaptureSession, Phase, SessionState
from .transcriber import Transcriber, WhisperTranscriber
from .vad import EndpointDetector

__all__ = [
    "AudioCapture",
    "AudioSource",
    "Authorizer",
    "MicrophoneAuthorizer",
    "CaptureSession",
    "Phase",
    "SessionState",
    "Transcriber",
    "WhisperTranscriber",
    "EndpointDetector",
]
