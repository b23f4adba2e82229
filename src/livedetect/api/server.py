"""
FastAPI Server - local control API

Provides HTTP endpoints for:
- Status and health checks
- Starting/stopping the live camera loop
- Threshold and class filter changes
- One-shot image upload detection
- Annotated image, snapshots and tally history

Security: binds to localhost by default. Do NOT expose directly to the
internet without authentication.
"""

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

import uvicorn
from fastapi import FastAPI, File, HTTPException, Response, UploadFile
from pydantic import BaseModel, Field

from livedetect import __version__
from livedetect.errors import DeviceUnavailable, InferenceError

if TYPE_CHECKING:
    from livedetect.main import LiveDetectApp

logger = logging.getLogger(__name__)


# Pydantic models for API


class ActionResponse(BaseModel):
    """Action result response."""

    success: bool
    message: str
    timestamp: str


class ThresholdRequest(BaseModel):
    """Threshold change request body."""

    threshold: float = Field(ge=0.1, le=0.9)


class ParametersResponse(BaseModel):
    """Current detection parameters."""

    threshold: float
    classes: list[str] | None


class DetectionResponse(BaseModel):
    """Result of an upload detection."""

    image: str
    detections: list[dict[str, Any]]
    total_count: int
    tally: dict[str, int]


# Global application reference
_live_app: "LiveDetectApp | None" = None


def set_live_app(live_app: "LiveDetectApp | None") -> None:
    """Set reference to the running application."""
    global _live_app
    _live_app = live_app


def _require_app() -> "LiveDetectApp":
    if _live_app is None:
        raise HTTPException(status_code=503, detail="Application not available")
    return _live_app


def _action(success: bool, message: str) -> ActionResponse:
    return ActionResponse(
        success=success,
        message=message,
        timestamp=datetime.now().isoformat(),
    )


def create_app(live_app: "LiveDetectApp | None" = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    if live_app is not None:
        set_live_app(live_app)

    app = FastAPI(
        title="LiveDetect API",
        description="Control API for the live object detection client",
        version=__version__,
    )

    # ==================== Status Endpoints ====================

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {"status": "healthy", "timestamp": datetime.now().isoformat()}

    @app.get("/status")
    async def get_status():
        """Get full application status."""
        return _require_app().get_status()

    # ==================== Loop Control ====================

    @app.post("/loop/start", response_model=ActionResponse)
    async def start_loop():
        """Acquire the camera and start live detection."""
        live = _require_app()
        try:
            started = live.start_loop()
        except DeviceUnavailable as e:
            raise HTTPException(status_code=503, detail=str(e))
        return _action(started, "Live detection started" if started else "Already running")

    @app.post("/loop/stop", response_model=ActionResponse)
    async def stop_loop():
        """Stop live detection and release the camera."""
        stopped = _require_app().stop_loop()
        return _action(stopped, "Live detection stopped" if stopped else "Not running")

    # ==================== Parameters ====================

    @app.put("/parameters/threshold", response_model=ParametersResponse)
    async def set_threshold(request: ThresholdRequest):
        """Change the confidence threshold for subsequent rounds."""
        params = _require_app().set_threshold(request.threshold)
        return ParametersResponse(**params.to_dict())

    @app.post("/parameters/classes/{label}/toggle", response_model=ParametersResponse)
    async def toggle_class(label: str):
        """Add or remove a class label from the filter."""
        params = _require_app().toggle_class(label)
        return ParametersResponse(**params.to_dict())

    @app.get("/classes")
    async def list_classes():
        """Labels offered by the service and the current selection."""
        live = _require_app()
        return {
            "classes": live.session.available_classes,
            "selected": live.session.parameters.to_dict()["classes"],
        }

    # ==================== Detection ====================

    @app.post("/upload", response_model=DetectionResponse)
    async def upload(file: UploadFile = File(...)):
        """Run one-shot detection on an uploaded image."""
        live = _require_app()
        data = await file.read()
        if not data:
            raise HTTPException(status_code=400, detail="Empty upload")
        try:
            result = await live.detect_upload(
                data, filename=file.filename, content_type=file.content_type
            )
        except InferenceError as e:
            logger.warning(f"Upload detection failed: {e}")
            raise HTTPException(status_code=502, detail=str(e))

        entry = live.session.history.latest()
        return DetectionResponse(
            image=result.annotated_image,
            detections=[d.to_dict() for d in result.detections],
            total_count=entry.total_count,
            tally=dict(entry.tally),
        )

    @app.get("/annotated")
    async def annotated_image():
        """Return the currently displayed annotated image."""
        try:
            image = _require_app().session.annotated_bytes()
        except ValueError as e:
            raise HTTPException(status_code=500, detail=f"Bad annotated image: {e}")
        if image is None:
            raise HTTPException(status_code=404, detail="No annotated image yet")
        return Response(
            content=image.data,
            media_type=image.mime_type,
            headers={"Content-Disposition": 'inline; filename="annotated.jpg"'},
        )

    @app.post("/snapshot", response_model=ActionResponse)
    async def save_snapshot():
        """Save the annotated image to the snapshot directory."""
        path = _require_app().save_snapshot()
        if path is None:
            return _action(False, "No annotated image to save")
        return _action(True, str(path))

    @app.get("/history")
    async def history():
        """Get recent tally history, most recent first."""
        entries = _require_app().session.history.entries()
        return {"entries": [e.to_dict() for e in entries]}

    return app


async def start_server(
    host: str = "127.0.0.1",
    port: int = 8080,
    live_app: "LiveDetectApp | None" = None,
) -> None:
    """
    Start the API server.

    Args:
        host: Bind host
        port: Bind port
        live_app: Application instance the routes operate on
    """
    app = create_app(live_app)

    config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_level="info",
        access_log=False,
    )
    server = uvicorn.Server(config)

    logger.info(f"Starting API server on {host}:{port}")
    await server.serve()
