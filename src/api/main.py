"""
FILE: src/api/main.py
"""

import logging
from contextlib import asynccontextmanager

from fastapi import APIRouter, FastAPI, Request, status
from fastapi.responses import JSONResponse

from src.api.observability import setup_observability
from src.api.persistence_profile import validate_persistence_profile_guardrails
from src.api.routers.flow_definitions import router as flow_definitions_router
from src.api.routers.flows import router as flow_engine_router


@asynccontextmanager
async def _app_lifespan(_app: FastAPI):
    validate_persistence_profile_guardrails()
    yield


app = FastAPI(
    title="Field Inspection Flow Engine API",
    version="0.1.0",
    description=(
        "Drives claim field inspections through versioned flow definitions.\n\n"
        "A flow advances phase by phase; each phase is sealed by a gate that checks required "
        "movements and their evidence."
    ),
    openapi_tags=[
        {
            "name": "Flow Engine",
            "description": "Flow instance lifecycle, movement execution, gates and evidence.",
        },
        {
            "name": "Flow Definitions",
            "description": "Authoring, validation and activation of flow definitions.",
        },
        {
            "name": "Health",
            "description": "Liveness and readiness checks.",
        },
    ],
    lifespan=_app_lifespan,
)

logger = logging.getLogger(__name__)

app.include_router(flow_engine_router)
app.include_router(flow_definitions_router)

health_router = APIRouter(tags=["Health"])


@health_router.get("/health", summary="Health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@health_router.get("/health/live", summary="Liveness")
def health_live() -> dict[str, str]:
    return {"status": "live"}


@health_router.get("/health/ready", summary="Readiness")
def health_ready() -> dict[str, str]:
    return {"status": "ready"}


app.include_router(health_router)
app.include_router(health_router, prefix="/api/v1")


@app.exception_handler(Exception)
async def unhandled_exception_to_problem_details(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception while serving request", exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        media_type="application/problem+json",
        content={
            "type": "about:blank",
            "title": "Internal Server Error",
            "status": 500,
            "detail": "An unexpected error occurred.",
            "instance": str(request.url.path),
        },
    )


setup_observability(app)
