"""
Salesmap Attribution Hub — API Server
=======================================

Live API layer over the Salesmap CRM history endpoints. Nothing is stored:
each request drains the upstream pages it needs and derives from them.

Route groups:
  /api/health                 - Health check
  /api/v2/{kind}/history      - Flattened change history (people | organization)
  /api/v2/{kind}/entities     - Entity browse list
  /api/v2/{kind}/attribution  - Per-entity UTM attribution
  /api/v2/{kind}/export       - Attribution workbook download
  /                           - Browsable dashboard
"""

import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, HTMLResponse, JSONResponse
from fastapi.staticfiles import StaticFiles

load_dotenv()

from dashboard.api.middleware import BearerTokenMiddleware
from dashboard.api.routers.history import router as history_router
from integrations.salesmap import SalesmapIntegration
from scripts.lib.errors import HubError
from scripts.lib.logger import setup_logger

logger = setup_logger("api_server")

BASE_DIR = Path(__file__).resolve().parent.parent.parent
FRONTEND_DIR = BASE_DIR / "dashboard" / "frontend"

VERSION = "1.0.0"

# Error code -> HTTP status for HubError responses
ERROR_STATUS = {
    "API_AUTH_FAILED": 401,
    "API_TIMEOUT": 504,
    "EXPORT_EMPTY": 404,
}


# ─── Lifespan ─────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app):
    """Application startup and shutdown."""
    logger.info("Starting Salesmap Attribution Hub...")
    app.state.salesmap = SalesmapIntegration()
    logger.info("Salesmap API: %s", app.state.salesmap.base_url)
    logger.info("Salesmap Attribution Hub ready")
    yield
    logger.info("Shutting down Salesmap Attribution Hub...")


# ─── App Setup ────────────────────────────────────────────────

cors_origins = os.getenv(
    "CORS_ORIGINS", "http://localhost:3000,http://localhost:8001"
).split(",")

app = FastAPI(
    title="Salesmap Attribution Hub",
    version=VERSION,
    description="Salesmap change history with UTM attribution and Excel export",
    lifespan=lifespan,
)

app.add_middleware(BearerTokenMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(history_router)


@app.exception_handler(HubError)
async def hub_error_handler(request: Request, exc: HubError):
    status = ERROR_STATUS.get(exc.code, 500)
    if status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    else:
        logger.info("%s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status,
        content={"success": False, "message": exc.message, "code": exc.code},
    )


# ─── Health ───────────────────────────────────────────────────

@app.get("/api/health", tags=["system"])
async def health(request: Request):
    """Health check with integration status."""
    salesmap = getattr(request.app.state, "salesmap", None)
    return {
        "status": "healthy",
        "service": "Salesmap Attribution Hub",
        "version": VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "integrations": {
            "salesmap": salesmap.get_status() if salesmap else None,
        },
    }


# ─── Frontend ─────────────────────────────────────────────────

if FRONTEND_DIR.exists():
    app.mount("/static", StaticFiles(directory=str(FRONTEND_DIR)), name="static")

    @app.get("/", response_class=HTMLResponse, tags=["frontend"])
    async def serve_dashboard():
        """Serve the attribution dashboard."""
        index = FRONTEND_DIR / "index.html"
        if index.exists():
            return FileResponse(str(index))
        return HTMLResponse(
            "<h1>Salesmap Attribution Hub</h1><p>Dashboard frontend not found.</p>"
        )
