# main.py
"""
FastAPI app: routes from api.py, tables created on startup.

Run locally with:

    uvicorn main:app --reload --port 8002
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import config
from api import router
from db import init_db
from llm import LLMError, LLMNotConfigured
from logging_config import setup_logging
from repository import NotFoundError
from speech import SpeechError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    init_db()
    logger.info("FormPilot starting up (database: %s)", config.DATABASE_URL.split("@")[-1])
    if not config.GEMINI_API_KEY:
        logger.warning("GEMINI_API_KEY not set; form generation and chat filling will return 503")
    yield
    logger.info("FormPilot shutting down")


app = FastAPI(
    title="FormPilot",
    version="0.1.0",
    description="Build forms by chatting with Gemini, publish them, collect and analyse responses",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------- exception handlers ----------
@app.exception_handler(NotFoundError)
async def not_found_handler(request, exc: NotFoundError):
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})


@app.exception_handler(LLMNotConfigured)
async def llm_not_configured_handler(request, exc: LLMNotConfigured):
    logger.error("LLM unavailable: %s", exc)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "AI service is not configured"},
    )


@app.exception_handler(LLMError)
async def llm_error_handler(request, exc: LLMError):
    logger.error("LLM error: %s", exc)
    return JSONResponse(
        status_code=status.HTTP_502_BAD_GATEWAY,
        content={"detail": f"Failed to generate response: {exc}"},
    )


@app.exception_handler(SpeechError)
async def speech_error_handler(request, exc: SpeechError):
    logger.error("Speech error: %s", exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"detail": str(exc)}
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


app.include_router(router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8002, log_level=config.LOG_LEVEL.lower())
