"""
API v1 router aggregating all endpoints.
"""
from fastapi import APIRouter

from selo.api.v1.audits import router as audits_router
from selo.api.v1.cron import router as cron_router

api_router = APIRouter()

api_router.include_router(audits_router)
api_router.include_router(cron_router)
