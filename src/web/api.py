"""FastAPI REST API for Maintvoice."""

import logging
from datetime import datetime
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ..errors import MaintvoiceError
from ..vision.analyzer import AnalysisResult

logger = logging.getLogger(__name__)

# Will be set by main.py
_app_instance = None


class ActionResponse(BaseModel):
    """Response model for capture actions."""
    success: bool
    message: str
    data: Optional[dict] = None


class StatusResponse(BaseModel):
    """Published capture state."""
    phase: str
    is_capturing: bool
    generation: int
    live_transcript: str
    final_transcript: str
    last_classification_text: str
    last_confidence: float
    last_error: Optional[str] = None
    analysis_configured: bool
    uptime_seconds: float


class AnalysisPayload(BaseModel):
    """Image analysis result as sent and received over the API."""
    description: str
    recommendations: list[str] = Field(default_factory=list)
    estimated_time: str = "Unknown"
    priority: str = "Normal"
    confidence: float = 0.0
    category: Optional[str] = None
    materials: list[str] = Field(default_factory=list)
    safety_concerns: list[str] = Field(default_factory=list)


class SummaryRequest(BaseModel):
    """Request body for summary generation."""
    title: str
    transcript: Optional[str] = None
    voice_notes: str = ""
    analysis: Optional[AnalysisPayload] = None


class SummaryResponse(BaseModel):
    text: str
    suggested_priority: str
    estimated_time: str
    confidence: float


def set_app_instance(instance) -> None:
    """Set the Maintvoice instance for API access."""
    global _app_instance
    _app_instance = instance


def _require_instance():
    if _app_instance is None:
        raise HTTPException(status_code=503, detail="Maintvoice not initialized")
    return _app_instance


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""

    app = FastAPI(
        title="Maintvoice API",
        description="Voice issue capture and maintenance analysis API",
        version="0.1.0",
    )

    # CORS for local network access
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.start_time = datetime.now()

    @app.exception_handler(MaintvoiceError)
    async def maintvoice_error_handler(request: Request, exc: MaintvoiceError):
        logger.error(f"{exc.error_code} on {request.url.path}: {exc}")
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.error_code, "detail": str(exc)},
        )

    # ==================== Capture ====================

    @app.get("/api/status", response_model=StatusResponse)
    async def get_status():
        """Get the published capture state."""
        instance = _require_instance()

        status = instance.get_status()
        uptime = (datetime.now() - app.state.start_time).total_seconds()

        return StatusResponse(**status, uptime_seconds=uptime)

    # Capture actions block on hardware and locks, so they are plain
    # ``def`` handlers run in the threadpool.
    @app.post("/api/capture/start", response_model=ActionResponse)
    def start_capture():
        """Start a new voice capture."""
        instance = _require_instance()
        instance.session.start()
        state = instance.session.snapshot()
        return ActionResponse(
            success=True,
            message=f"Capture {state.phase.value}",
            data={"generation": state.generation},
        )

    @app.post("/api/capture/finish", response_model=ActionResponse)
    def finish_capture():
        """End dictation and wait for the final transcript."""
        instance = _require_instance()
        started = instance.session.finish()
        if not started:
            raise HTTPException(status_code=409, detail="No capture in progress")
        return ActionResponse(success=True, message="Finalizing capture")

    @app.post("/api/capture/stop", response_model=ActionResponse)
    def stop_capture():
        """Abort the current capture."""
        instance = _require_instance()
        instance.session.stop()
        return ActionResponse(
            success=True,
            message=f"Capture {instance.session.phase.value}",
        )

    # ==================== Analysis ====================

    @app.post("/api/analysis", response_model=AnalysisPayload)
    async def analyze_image(
        request: Request,
        user_id: Optional[str] = None,
        context_id: Optional[str] = None,
    ):
        """Analyze a maintenance photo sent as the raw request body."""
        instance = _require_instance()

        image = await request.body()
        if not image:
            raise HTTPException(status_code=400, detail="Empty image body")

        result = await run_in_threadpool(
            instance.analyze_image, image, user_id=user_id, context_id=context_id
        )
        return AnalysisPayload(**result.to_dict())

    @app.post("/api/summary", response_model=SummaryResponse)
    def build_summary(request: SummaryRequest):
        """Build an issue summary from the last capture and optional analysis."""
        instance = _require_instance()

        analysis = None
        if request.analysis is not None:
            analysis = AnalysisResult(**request.analysis.model_dump())

        summary = instance.build_summary(
            title=request.title,
            transcript=request.transcript,
            voice_notes=request.voice_notes,
            analysis=analysis,
        )
        return SummaryResponse(**summary.to_dict())

    return app
