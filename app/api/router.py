"""
Roommate Match — Main API Router

Aggregates all sub-routers under a single prefix so that ``app.main``
can mount the entire API surface with one ``include_router`` call.
"""

from fastapi import APIRouter

from app.api import compatibility, conversations, discovery, matching, profiles, swipes

router = APIRouter()

router.include_router(profiles.router, prefix="/profiles", tags=["Profiles"])
router.include_router(swipes.router, prefix="/swipes", tags=["Swipes"])
router.include_router(matching.router, prefix="/matches", tags=["Matching"])
router.include_router(compatibility.router, prefix="/compatibility", tags=["Compatibility"])
router.include_router(discovery.router, prefix="/discovery", tags=["Discovery"])
router.include_router(conversations.router, prefix="/conversations", tags=["Conversations"])
