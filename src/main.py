"""Main orchestrator for Maintvoice - voice issue capture and analysis."""

import argparse
import json
import logging
import signal
import sys
import threading
import time
from pathlib import Path
from typing import Optional

import uvicorn

from .audio.capture import AudioCapture
from .audio.permissions import MicrophoneAuthorizer
from .audio.session import CaptureSession
from .audio.transcriber import WhisperTranscriber
from .audio.vad import EndpointDetector
from .config import Config, load_config
from .errors import MaintvoiceError
from .issue.summary import IssueSummary, build_summary
from .vision.analyzer import AnalysisResult, OpenAIVisionAnalyzer
from .vision.dispatcher import AnalysisDispatcher
from .web.api import create_app, set_app_instance

logger = logging.getLogger(__name__)


class Maintvoice:
    """Main application orchestrator."""

    def __init__(self, config: Config):
        self.config = config
        self._running = False

        self._init_audio()
        self._init_vision()

        # Web server
        self._web_thread: Optional[threading.Thread] = None
        self._web_server: Optional[uvicorn.Server] = None

    def _init_audio(self) -> None:
        """Initialize voice capture components."""
        logger.info("Initializing audio pipeline...")
        self.audio_capture = AudioCapture(self.config.audio)
        self.transcriber = WhisperTranscriber(self.config.audio)
        self.authorizer = MicrophoneAuthorizer(self.config.audio)

        self.endpoint_detector = None
        if self.config.audio.endpoint_detection:
            self.endpoint_detector = EndpointDetector(self.config.audio)

        self.session = CaptureSession(
            transcriber=self.transcriber,
            audio_source=self.audio_capture,
            authorizer=self.authorizer,
            endpoint_detector=self.endpoint_detector,
            finalize_timeout=self.config.audio.finalize_timeout,
        )

    def _init_vision(self) -> None:
        """Initialize image analysis components."""
        logger.info("Initializing vision pipeline...")
        self.analyzer = OpenAIVisionAnalyzer(self.config.vision)
        self.dispatcher = AnalysisDispatcher(self.analyzer)

        if not self.dispatcher.is_configured:
            logger.warning("Vision API key not set, image analysis disabled")

    def analyze_image(
        self,
        image: bytes,
        user_id: Optional[str] = None,
        context_id: Optional[str] = None,
    ) -> AnalysisResult:
        """Analyze a maintenance photo."""
        return self.dispatcher.analyze_image(image, user_id=user_id, context_id=context_id)

    def build_summary(
        self,
        title: str,
        transcript: Optional[str] = None,
        voice_notes: str = "",
        analysis: Optional[AnalysisResult] = None,
    ) -> IssueSummary:
        """Build an issue summary, defaulting to the last captured transcript."""
        state = self.session.snapshot()
        if transcript is None:
            transcript = state.final_transcript

        return build_summary(
            title=title,
            transcript=transcript,
            voice_notes=voice_notes,
            analysis=analysis,
            fallback_confidence=state.last_confidence,
        )

    def _start_web_server(self, host: str, port: int) -> None:
        """Start the web server in a background thread."""
        logger.info(f"Starting web server on {host}:{port}...")

        set_app_instance(self)
        app = create_app()

        config = uvicorn.Config(
            app,
            host=host,
            port=port,
            log_level="warning",
            access_log=False,
        )
        self._web_server = uvicorn.Server(config)

        def run_server():
            self._web_server.run()

        self._web_thread = threading.Thread(target=run_server, daemon=True)
        self._web_thread.start()

        logger.info(f"Web server started at http://{host}:{port}")

    def _stop_web_server(self) -> None:
        """Stop the web server."""
        if self._web_server is not None:
            logger.info("Stopping web server...")
            self._web_server.should_exit = True
            if self._web_thread is not None:
                self._web_thread.join(timeout=5.0)
            self._web_server = None
            self._web_thread = None

    def start(self, enable_web: bool = True, web_port: Optional[int] = None) -> None:
        """Start the service."""
        if self._running:
            logger.warning("Maintvoice already running")
            return

        logger.info("Starting Maintvoice...")
        self._running = True

        if enable_web:
            self._start_web_server(
                host=self.config.web.host,
                port=web_port or self.config.web.port,
            )

        logger.info("Maintvoice started successfully")

    def stop(self) -> None:
        """Stop all components gracefully."""
        if not self._running:
            return

        logger.info("Stopping Maintvoice...")
        self._running = False

        self._stop_web_server()
        self.session.shutdown()
        self.analyzer.close()

        logger.info("Maintvoice stopped")

    def get_status(self) -> dict:
        """Get the published capture state."""
        state = self.session.snapshot()
        return {
            "phase": state.phase.value,
            "is_capturing": state.is_capturing,
            "generation": state.generation,
            "live_transcript": state.live_transcript,
            "final_transcript": state.final_transcript,
            "last_classification_text": state.last_classification_text,
            "last_confidence": state.last_confidence,
            "last_error": state.last_error,
            "analysis_configured": self.dispatcher.is_configured,
        }

    @property
    def is_running(self) -> bool:
        return self._running


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Maintvoice - Voice Issue Capture")
    parser.add_argument(
        "-c", "--config",
        default=None,
        help="Path to configuration file (default: $MAINTVOICE_CONFIG or config/settings.yaml)",
    )
    parser.add_argument(
        "-p", "--port",
        type=int,
        default=None,
        help="Web server port (default: from config, 8080)",
    )
    parser.add_argument(
        "--no-web",
        action="store_true",
        help="Disable web server",
    )
    parser.add_argument(
        "--list-audio",
        action="store_true",
        help="List available audio devices",
    )
    parser.add_argument(
        "--analyze",
        metavar="IMAGE",
        help="Analyze a single image, print the result as JSON and exit",
    )
    args = parser.parse_args()

    if args.list_audio:
        print("Available audio devices:")
        for dev in AudioCapture.list_devices():
            print(f"  [{dev['id']}] {dev['name']} ({dev['channels']}ch)")
        return

    config = load_config(args.config)
    config.setup_logging()

    if args.analyze:
        dispatcher = AnalysisDispatcher(OpenAIVisionAnalyzer(config.vision))
        try:
            result = dispatcher.analyze_image(Path(args.analyze).read_bytes())
        except MaintvoiceError as e:
            logger.error(f"Image analysis failed: {e}")
            sys.exit(1)
        print(json.dumps(result.to_dict(), indent=2))
        return

    logger.info("=" * 50)
    logger.info("Maintvoice - Voice Issue Capture")
    logger.info("=" * 50)

    app = Maintvoice(config)

    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}")
        app.stop()
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    enable_web = config.web.enabled and not args.no_web
    app.start(enable_web=enable_web, web_port=args.port)

    if enable_web:
        logger.info(f"API available at http://localhost:{args.port or config.web.port}")

    try:
        while True:
            time.sleep(1.0)
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")
    finally:
        app.stop()


if __name__ == "__main__":
    main()
