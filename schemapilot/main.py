import logging
import logging.config

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from schemapilot.exceptions import (
    CredentialError,
    NetworkError,
    PipelineError,
    SitemapError,
    StageError,
)
from schemapilot.routers.autopilot import router as autopilot_router
from schemapilot.routers.runs import limiter, router as runs_router
from schemapilot.routers.tools import router as tools_router

logging.config.dictConfig(
    {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {
                "format": '{"time": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s"}',
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "json",
            },
        },
        "root": {"level": "INFO", "handlers": ["console"]},
    }
)

logger = logging.getLogger(__name__)

app = FastAPI(
    title="SchemaPilot – WordPress Structured Data API",
    description=(
        "Finds pages on a WordPress site that lack structured data, drafts "
        "JSON-LD for them with an AI provider, validates it and writes it back."
    ),
    version="1.0.0",
)

# Rate-limiting state
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

_STATUS_CODES = {
    CredentialError: 400,
    SitemapError: 400,
    StageError: 409,
    NetworkError: 502,
}


@app.exception_handler(PipelineError)
async def pipeline_exception_handler(request: Request, exc: PipelineError) -> JSONResponse:
    status_code = next(
        (code for cls, code in _STATUS_CODES.items() if isinstance(exc, cls)), 500
    )
    logger.warning("%s for %s: %s", type(exc).__name__, request.url, exc)
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception for %s", request.url)
    return JSONResponse(status_code=500, content={"detail": "An unexpected error occurred."})


app.include_router(runs_router)
app.include_router(autopilot_router)
app.include_router(tools_router)


@app.get("/", summary="Health check")
async def root() -> dict:
    return {"message": "Hello from SchemaPilot"}
