"""
API v1 - REST endpoints for estimates.

Implements:
- Estimate endpoints (create, read, list, metadata update, soft delete)
- Line item endpoints (add, update, delete)
- Status endpoints (send, approve, reject)
- Versioning endpoint (clone into a new version)
"""
from fastapi import APIRouter

from .estimates import router as estimates_router

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(estimates_router, prefix="/estimates", tags=["Estimates"])
