import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .config import settings
from .encryption import EncryptionError
from .errors import (
    ImmutableRecordError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from .logging_utils import configure_logging
from .routers.sickness import router as sickness_router

configure_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

app = FastAPI(title="Salus Sickness Case API", version="0.1.0")


# =============================================================================
# Domain error mapping
# =============================================================================


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(InvalidTransitionError)
async def invalid_transition_handler(request: Request, exc: InvalidTransitionError):
    return JSONResponse(
        status_code=409,
        content={
            "detail": str(exc),
            "action": exc.action,
            "current_status": exc.current_status,
        },
    )


@app.exception_handler(ValidationError)
async def validation_handler(request: Request, exc: ValidationError):
    return JSONResponse(
        status_code=400, content={"detail": str(exc), "field": exc.field}
    )


@app.exception_handler(ImmutableRecordError)
async def immutable_handler(request: Request, exc: ImmutableRecordError):
    logger.error("Attempted mutation of append-only record: %s", exc)
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(EncryptionError)
async def encryption_handler(request: Request, exc: EncryptionError):
    logger.error("Notes encryption failure on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=500, content={"detail": "Notes encryption unavailable"})


app.include_router(sickness_router)


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "version": app.version}
