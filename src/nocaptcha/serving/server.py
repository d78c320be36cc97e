"""
Recognition Server

FastAPI application around ``CaptchaRegistry``:
- ``POST /recognize`` scores one image against one challenge model
- ``GET /health`` reports loaded challenges and uptime
- ``GET /metrics`` exposes Prometheus metrics

The registry is loaded once during application startup; a load failure
aborts startup. Predictions run in Starlette's worker threadpool, so
requests for different challenges execute in parallel and never block the
event loop. Requests for the same challenge queue on its engine lock.
"""

import argparse
import logging
import time
from contextlib import asynccontextmanager
from typing import List, Optional

import uvicorn
from fastapi import APIRouter, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.concurrency import run_in_threadpool
from starlette.responses import Response
from starlette.routing import Match

from .. import __version__
from ..errors import PredictionError
from ..metrics import REQUEST_COUNT, REQUEST_DURATION
from ..registry import CaptchaRegistry
from .config import ServingSettings
from .errors import ApiError
from .schemas import (
    ChallengeStatus,
    ErrorResponse,
    HealthResponse,
    PredictionResponse,
    RecognitionRequest,
)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

logger = logging.getLogger(__name__)

UNMATCHED_ENDPOINT = "unmatched"

router = APIRouter()


def _endpoint_label(request: Request) -> str:
    """Route template for the request, so unknown paths share one series."""
    for route in request.app.router.routes:
        match, _ = route.matches(request.scope)
        if match == Match.FULL:
            return route.path
    return UNMATCHED_ENDPOINT


# API Endpoints

@router.post(
    "/recognize",
    response_model=PredictionResponse,
    responses={500: {"model": ErrorResponse}},
)
async def recognize(request: Request, body: RecognitionRequest) -> PredictionResponse:
    """Score one encoded image against the requested challenge model."""
    request.state.challenge = body.challenge.value

    try:
        image = body.decode_image()
    except ValueError as e:
        logger.warning(f"Rejecting recognition request: {e}")
        raise ApiError.msg("Invalid image Base64")

    registry: CaptchaRegistry = request.app.state.registry
    try:
        prediction = await run_in_threadpool(registry.predict, body.challenge, image)
    except PredictionError as e:
        logger.error(f"Prediction failed for '{body.challenge}': {e}", exc_info=True)
        raise ApiError.msg("Prediction failed")

    return PredictionResponse.from_prediction(prediction)


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    """Report loaded challenges and uptime."""
    registry: CaptchaRegistry = request.app.state.registry
    return HealthResponse(
        status="healthy",
        challenges_loaded=[ChallengeStatus(**item) for item in registry.describe()],
        uptime_seconds=time.time() - request.app.state.start_time,
        version=__version__,
    )


@router.get("/metrics")
async def metrics() -> Response:
    """Prometheus metrics endpoint."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


# Error handlers

async def api_error_handler(request: Request, exc: ApiError) -> Response:
    return exc.to_response()


async def validation_error_handler(request: Request, exc: RequestValidationError) -> Response:
    logger.info(f"Invalid recognition request: {exc.errors()}")
    return ApiError.invalid_request().to_response()


async def global_exception_handler(request: Request, exc: Exception) -> Response:
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return ApiError.msg("Internal error").to_response()


def create_app(
    settings: Optional[ServingSettings] = None,
    registry: Optional[CaptchaRegistry] = None,
) -> FastAPI:
    """
    Build the recognition application.

    Args:
        settings: Server settings; read from the environment if None
        registry: Preloaded registry. If None, one is loaded from
            ``settings.models_dir`` at startup and closed at shutdown.
    """
    settings = settings or ServingSettings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owns_registry = registry is None

        if owns_registry:
            logger.info(f"Loading challenge models from {settings.models_dir}")
            app.state.registry = await run_in_threadpool(
                CaptchaRegistry.load_from_models_dir,
                settings.models_dir,
                max_workers=settings.load_workers,
                poison_on_fault=settings.poison_on_fault,
                quiet_runtime=settings.quiet_runtime,
            )
        else:
            app.state.registry = registry

        app.state.start_time = time.time()
        logger.info(f"Serving {len(app.state.registry)} challenges")

        try:
            yield
        finally:
            if owns_registry:
                app.state.registry.close()
            logger.info("Server shutdown complete")

    app = FastAPI(
        title="reCAPTCHA Challenge Recognition API",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    @app.middleware("http")
    async def track_requests(request: Request, call_next):
        """Record request counts and latency."""
        start_time = time.time()
        response = await call_next(request)
        endpoint = _endpoint_label(request)

        REQUEST_DURATION.labels(endpoint=endpoint).observe(time.time() - start_time)
        REQUEST_COUNT.labels(
            endpoint=endpoint,
            status=str(response.status_code),
        ).inc()
        return response

    app.include_router(router)
    return app


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Serve reCAPTCHA challenge models over HTTP")
    parser.add_argument("--models-dir", help="Models root directory")
    parser.add_argument("--host", help="Bind address")
    parser.add_argument("--port", type=int, help="Bind port")
    parser.add_argument("--workers", dest="load_workers", type=int, help="Model loader threads")
    parser.add_argument("--log-level", help="Logging level")
    args = parser.parse_args(argv)

    overrides = {key: value for key, value in vars(args).items() if value is not None}
    settings = ServingSettings(**overrides)

    logging.basicConfig(level=settings.log_level, format=LOG_FORMAT)

    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
