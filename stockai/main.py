from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from prometheus_fastapi_instrumentator import Instrumentator

from stockai.config import Settings
from stockai.controllers import v1
from stockai.db import init_db
from stockai.dependencies import error_response
from stockai.errors import AnalyzerError
from stockai.logger import setup_logging

settings = Settings()
setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await asyncio.to_thread(init_db, settings)
    yield


app = FastAPI(
    title="Stock Analyzer API",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(v1.router)


@app.exception_handler(AnalyzerError)
async def analyzer_error_handler(request: Request, exc: AnalyzerError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return error_response(exc)


@app.get("/health")
async def health():
    return {"status": "ok"}


Instrumentator().instrument(app).expose(app)
