"""SessionLens FastAPI application entry point."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from sessionlens import config
from sessionlens.observability import initialize as initialize_observability, shutdown as shutdown_observability
from sessionlens.routers.sessions import sessions_router
from sessionlens.services.session_service import SessionService

logging.basicConfig(level=getattr(logging, config.LOG_LEVEL, logging.INFO))
logger = logging.getLogger("sessionlens")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    logger.info("SessionLens starting up (claude root: %s)", config.CLAUDE_ROOT)
    initialize_observability(app)
    app.state.session_service = SessionService.from_config()

    yield

    logger.info("SessionLens shutting down")
    shutdown_observability(app)


app = FastAPI(
    title="SessionLens API",
    description="Reconstructs agent session logs into turns, context accounting and timelines",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        config.FRONTEND_ORIGIN,
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(sessions_router)


@app.get("/api/health")
def health():
    """Health check endpoint."""
    return {
        "status": "ok",
        "claudeRoot": str(config.CLAUDE_ROOT),
        "projectsDirExists": config.PROJECTS_DIR.is_dir(),
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("sessionlens.main:app", host=config.HOST, port=config.PORT)
