"""One-shot image analysis requests."""

import logging
import time
from typing import Optional

from ..errors import ConfigurationError, RequestFailed
from .analyzer import AnalysisRequest, AnalysisResult, VisionAnalyzer

logger = logging.getLogger(__name__)


class AnalysisDispatcher:
    """Runs image analysis against a VisionAnalyzer.

    Stateless per call and never retries: a failed call surfaces to the
    caller immediately.
    """

    def __init__(self, analyzer: VisionAnalyzer):
        self.analyzer = analyzer

    @property
    def is_configured(self) -> bool:
        return self.analyzer.is_configured()

    def analyze_image(
        self,
        image: bytes,
        user_id: Optional[str] = None,
        context_id: Optional[str] = None,
    ) -> AnalysisResult:
        """
        Analyze a maintenance photo.

        Raises:
            ConfigurationError: the analyzer is not configured; nothing is sent
            RequestFailed: transport or parsing failure
        """
        if not self.analyzer.is_configured():
            logger.error("Vision analyzer not configured")
            raise ConfigurationError("Vision analyzer is not configured")

        request = AnalysisRequest(image=image, user_id=user_id, context_id=context_id)
        started = time.monotonic()
        logger.info(f"Starting image analysis ({len(image)} bytes, user={user_id})")

        try:
            result = self.analyzer.analyze(request)
        except RequestFailed as e:
            logger.error(f"Image analysis failed: {e}")
            raise
        except Exception as e:
            logger.error(f"Image analysis failed: {e}")
            raise RequestFailed(f"Image analysis failed: {e}") from e

        duration = time.monotonic() - started
        logger.info(
            f"Image analysis completed in {duration:.2f}s "
            f"(priority={result.priority}, confidence={result.confidence:.2f})"
        )
        return result
