"""
API v1 Router - Aggregates all endpoint routers
"""
from fastapi import APIRouter

from schemacrud.api.v1.endpoints.crud import router as crud_router

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(crud_router)
