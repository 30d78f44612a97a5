"""
Quiz attempt delivery API.
"""
from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from qbank_attempts.api.attempts import router as attempts_router
from qbank_attempts.api.quizzes import router as quizzes_router
from qbank_attempts.core.config import settings
from qbank_attempts.core.database import init_db
from qbank_attempts.core.errors import QuizError

logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL), format=settings.LOG_FORMAT)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.APP_NAME} {settings.APP_VERSION} ({settings.ENVIRONMENT})")
    if not settings.is_production():
        init_db()
    yield
    logger.info(f"Shutting down {settings.APP_NAME}")


app = FastAPI(title=settings.APP_NAME, version=settings.APP_VERSION, lifespan=lifespan)
app.add_middleware(CORSMiddleware, allow_origins=settings.CORS_ORIGINS, allow_credentials=True, allow_methods=["*"], allow_headers=["*"])
app.include_router(quizzes_router, prefix=f"{settings.API_V1_PREFIX}/quizzes", tags=["quizzes"])
app.include_router(attempts_router, prefix=f"{settings.API_V1_PREFIX}/attempts", tags=["attempts"])


@app.exception_handler(QuizError)
async def quiz_error_handler(request: Request, exc: QuizError):
    """Domain errors carry their own status code and machine-readable code."""
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": {"message": exc.detail, "type": "http_error", "status_code": exc.status_code}},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content={"error": {"message": "Validation error", "type": "validation_error", "details": jsonable_encoder(exc.errors())}},
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    message = "An internal error occurred" if settings.is_production() else str(exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": {"message": message, "type": "internal_error"}},
    )


@app.get("/health", tags=["health"])
def health():
    return {"status": "ok", "version": settings.APP_VERSION}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("qbank_attempts.main:app", host="0.0.0.0", port=8000, log_level=settings.LOG_LEVEL.lower())
