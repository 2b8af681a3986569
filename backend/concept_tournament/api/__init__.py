"""
API routes
"""

from fastapi import APIRouter
from .tournament_routes import router as tournament_router

# Main router
api_router = APIRouter()

api_router.include_router(tournament_router, prefix="/tournaments", tags=["tournaments"])
