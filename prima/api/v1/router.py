"""Main API router aggregating all v1 routes."""

from fastapi import APIRouter

from prima.api.v1 import conversations, webhooks

api_router = APIRouter()

# Include all route modules
api_router.include_router(webhooks.router)
api_router.include_router(conversations.router)
