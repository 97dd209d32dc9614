"""API routers for the trustdesk backend."""
from fastapi import APIRouter

from . import apikeys, disputes, escrow, fees, health, transactions


def get_api_router() -> APIRouter:
    """Return the root API router."""

    api_router = APIRouter()
    api_router.include_router(health.router)
    api_router.include_router(escrow.router)
    api_router.include_router(disputes.router)
    api_router.include_router(transactions.router)
    api_router.include_router(fees.router)
    api_router.include_router(apikeys.router)
    return api_router
