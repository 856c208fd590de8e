"""
API v1 router aggregation.

WHAT: Combine all v1 endpoint routers under one prefix
WHY: Single place to register the deal desk routes
HOW: One include per endpoint module, tagged for the OpenAPI docs
"""

from fastapi import APIRouter

from .endpoints import agents, deals, pricing, proofs, status

API_PREFIX = "/api/v1"

api_router = APIRouter(prefix=API_PREFIX)

for module, tag in (
    (status, "status"),
    (deals, "deals"),
    (proofs, "proofs"),
    (pricing, "pricing"),
    (agents, "agents"),
):
    api_router.include_router(module.router, tags=[tag])
