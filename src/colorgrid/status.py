"""
Status Server
=============

Optional HTTP status endpoints for a running triage loop.

Endpoints:
    GET  /          - Service information
    GET  /health    - Liveness probe (is process alive?)
    GET  /ready     - Readiness probe (is the camera streaming?)
    GET  /metrics   - Loop and writer counters

The server runs uvicorn on a daemon thread next to the acquisition
loop and only reads the engine's counters.
"""

import logging
import threading
import time
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.responses import JSONResponse

from colorgrid import __version__
from colorgrid.config import Settings
from colorgrid.triage.engine import TriageEngine


logger = logging.getLogger(__name__)


def create_status_app(engine: TriageEngine, settings: Settings) -> FastAPI:
    """Build the status application for `engine`."""
    started_at = time.time()

    app = FastAPI(
        title="ColorGrid Triage",
        description="Grid color triage of industrial camera frames",
        version=__version__,
    )

    @app.get("/")
    async def root() -> JSONResponse:
        """Service information endpoint."""
        return JSONResponse({
            "service": "colorgrid",
            "version": __version__,
            "source": settings.camera.source,
            "color_range": {
                "lower": list(settings.detection.color_range.lower),
                "upper": list(settings.detection.color_range.upper),
            },
            "state": engine.state.value,
        })

    @app.get("/health")
    async def health() -> JSONResponse:
        """Always 200 while the process is running."""
        return JSONResponse({
            "status": "healthy",
            "uptime_seconds": round(time.time() - started_at, 1),
        })

    @app.get("/ready")
    async def ready() -> JSONResponse:
        """
        Readiness probe.

        Returns 200 while acquisition is running, 503 otherwise.
        """
        if engine.acquiring:
            return JSONResponse({
                "status": "ready",
                "state": engine.state.value,
                "frames_processed": engine.stats.frames_processed,
            })
        return JSONResponse(
            {"status": "not_ready", "state": engine.state.value},
            status_code=503,
        )

    @app.get("/metrics")
    async def metrics() -> JSONResponse:
        """Detailed counters for observability."""
        return JSONResponse({
            "uptime_seconds": round(time.time() - started_at, 1),
            **engine.metrics(),
        })

    return app


class StatusServer:
    """uvicorn server running on a background thread."""

    def __init__(self, app: FastAPI, host: str, port: int) -> None:
        self.host = host
        self.port = port
        self._server = uvicorn.Server(
            uvicorn.Config(app, host=host, port=port, log_level="warning")
        )
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        self._thread = threading.Thread(
            target=self._server.run,
            name="status-server",
            daemon=True,
        )
        self._thread.start()
        logger.info(f"Status server listening on http://{self.host}:{self.port}")

    def stop(self, timeout: float = 5.0) -> None:
        if self._thread is None:
            return
        self._server.should_exit = True
        self._thread.join(timeout=timeout)
        self._thread = None
