"""
FastAPI application entry point for Selo.

Audits are accepted here and handed to the Celery worker; the API itself
never crawls.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from selo.api.v1.router import api_router
from selo.config import settings
from selo.database import init_db
from selo.worker import celery_app

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    logger.info(f"{settings.PROJECT_NAME} {settings.VERSION} started ({settings.ENVIRONMENT})")
    yield
    # Drop pooled broker connections held for task dispatch
    celery_app.close()


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    docs_url=f"{settings.API_V1_STR}/docs",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["Authorization", "Content-Type", "X-Cron-Secret"],
)

app.include_router(api_router, prefix=settings.API_V1_STR)


def _health() -> dict:
    return {"status": "healthy", "service": "site-audit", "version": settings.VERSION}


@app.get("/health")
async def health_check():
    return _health()


@app.get(f"{settings.API_V1_STR}/health")
async def api_health_check():
    return _health()
