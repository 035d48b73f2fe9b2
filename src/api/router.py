"""
API router - aggregates all route modules.
"""
from fastapi import APIRouter
from src.api.webhooks import router as webhooks_router
from src.api.webhook_events import router as webhook_events_router
from src.api.signing import router as signing_router
from src.api.health import router as health_router

api_router = APIRouter()
api_router.include_router(webhooks_router)
api_router.include_router(webhook_events_router)
api_router.include_router(signing_router)
api_router.include_router(health_router)
