"""API routes."""

from fastapi import APIRouter

from lotstock.api.routes import inventory

api_router = APIRouter()

api_router.include_router(inventory.router, prefix="/inventory", tags=["inventory"])
