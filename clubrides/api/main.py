"""
FastAPI Application

Main entry point for the Club Rides web API.
"""

import logging
from contextlib import asynccontextmanager
from typing import Dict

from fastapi import FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from clubrides.api.routes import participations, rides, strava
from clubrides.config import get_settings
from clubrides.errors import ClubRidesError
from clubrides.logging_config import setup_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    logger.info("Club Rides API starting")
    yield


def create_app() -> FastAPI:
    """Build the application with CORS, routers and error handlers."""
    settings = get_settings()

    app = FastAPI(
        title="Club Rides API",
        description="Club ride lifecycle, participation, authorization and Strava attendance matching",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(rides.router, prefix="/api", tags=["Rides"])
    app.include_router(participations.router, prefix="/api", tags=["Participation"])
    app.include_router(strava.router, prefix="/api", tags=["Strava Integration"])

    @app.get("/health")
    async def health_check() -> Dict[str, str]:
        """Health check endpoint."""
        return {"status": "healthy", "service": "clubrides-api"}

    @app.exception_handler(ClubRidesError)
    async def domain_exception_handler(request, exc: ClubRidesError):
        """Map domain errors to their status code."""
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request, exc: HTTPException):
        """Handle HTTP exceptions with consistent error format."""
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail, "message": str(exc.detail)},
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request, exc: Exception):
        """Handle unexpected exceptions."""
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Internal Server Error", "message": str(exc)},
        )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "clubrides.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info",
    )
