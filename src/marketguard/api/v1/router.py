"""API v1 router aggregating all endpoint routers.

All endpoints are mounted under /api/v1/marketguard/ via the v1_prefix configuration.
"""

from __future__ import annotations

from fastapi import APIRouter

from marketguard.api.v1.endpoints import access, health, oauth, security_audit


router = APIRouter()

router.include_router(health.router)
router.include_router(oauth.router)
router.include_router(access.router)
router.include_router(security_audit.router)
