"""Exception hierarchy for the capture and analysis pipelines.

Every error carries a machine-readable ``error_code`` and the HTTP
``status_code`` the web layer answers with when it escapes a request.
"""

from typing import Any


class MaintvoiceError(Exception):
    """Base exception for all Maintvoice errors."""

    status_code: int = 500
    error_code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.context = context


# ==================== Capture path ====================

class CaptureError(MaintvoiceError):
    """Failure on the voice capture path. Terminal for the current generation."""


class Unavailable(CaptureError):
    """Speech capability is not ready or permission was denied."""

    status_code = 503
    error_code = "UNAVAILABLE"


class RequestCreationFailed(CaptureError):
    """The transcription session could not be created."""

    error_code = "REQUEST_CREATION_FAILED"


class AudioEngineError(CaptureError):
    """The audio input could not be configured or started."""

    error_code = "AUDIO_ENGINE_ERROR"


class TranscriptionError(CaptureError):
    """Error reported by the transcriber for the current capture."""

    status_code = 502
    error_code = "TRANSCRIPTION_ERROR"


# ==================== Analysis path ====================

class AnalysisError(MaintvoiceError):
    """Failure while analyzing an image."""


class ConfigurationError(AnalysisError):
    """The vision analyzer is not configured (e.g. missing API key)."""

    status_code = 503
    error_code = "CONFIGURATION_ERROR"


class RequestFailed(AnalysisError):
    """Transport or parsing failure talking to the vision analyzer."""

    status_code = 502
    error_code = "REQUEST_FAILED"
