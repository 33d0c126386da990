"""
Roommate Match — API dependencies

Builds the process-wide document store once and hands out the matching
core services through FastAPI's dependency graph.  Tests replace
``get_store`` via ``app.dependency_overrides``.
"""

from __future__ import annotations

import structlog
from fastapi import Depends, HTTPException, status

from app.config import get_settings
from app.services.compatibility_service import CompatibilityScorer
from app.services.conversation_service import ConversationGateway
from app.services.discovery_service import DiscoveryRanker
from app.services.matching_service import MatchManager
from app.services.profile_service import ProfileService
from app.services.swipe_service import SwipeLedger
from app.store.base import DocumentStore
from app.store.memory import InMemoryDocumentStore
from app.utils.errors import (
    ConversationNotFoundError,
    InvalidUserIdsError,
    MessageValidationError,
    NotMatchedError,
    PersistenceFailure,
    ProfileNotFoundError,
    RoommateError,
)

logger = structlog.get_logger("roommate.api.deps")

# ── Store singleton ───────────────────────────────────────────────────────────

_store: DocumentStore | None = None


def get_store() -> DocumentStore:
    global _store
    if _store is None:
        settings = get_settings()
        if settings.STORE_BACKEND == "memory":
            _store = InMemoryDocumentStore()
        else:
            from app.database import get_session_factory
            from app.store.sql import SqlDocumentStore

            _store = SqlDocumentStore(get_session_factory())
        logger.info("document_store_created", backend=settings.STORE_BACKEND)
    return _store


# ── Services ─────────────────────────────────────────────────────────────────

def get_profile_service(store: DocumentStore = Depends(get_store)) -> ProfileService:
    return ProfileService(store)


def get_swipe_ledger(store: DocumentStore = Depends(get_store)) -> SwipeLedger:
    return SwipeLedger(store)


def get_match_manager(
    store: DocumentStore = Depends(get_store),
    swipes: SwipeLedger = Depends(get_swipe_ledger),
    profiles: ProfileService = Depends(get_profile_service),
) -> MatchManager:
    return MatchManager(store, swipes, profiles)


def get_scorer(
    store: DocumentStore = Depends(get_store),
    profiles: ProfileService = Depends(get_profile_service),
) -> CompatibilityScorer:
    return CompatibilityScorer(store, profiles)


def get_discovery_ranker(
    profiles: ProfileService = Depends(get_profile_service),
    matches: MatchManager = Depends(get_match_manager),
    scorer: CompatibilityScorer = Depends(get_scorer),
) -> DiscoveryRanker:
    return DiscoveryRanker(profiles, matches, scorer)


def get_conversation_gateway(
    store: DocumentStore = Depends(get_store),
    matches: MatchManager = Depends(get_match_manager),
    profiles: ProfileService = Depends(get_profile_service),
) -> ConversationGateway:
    return ConversationGateway(store, matches, profiles)


# ── Error translation ────────────────────────────────────────────────────────

def to_http_exception(exc: RoommateError) -> HTTPException:
    """Map a matching-core error onto the HTTP status the client sees."""
    if isinstance(exc, (InvalidUserIdsError, MessageValidationError)):
        code = status.HTTP_422_UNPROCESSABLE_ENTITY
    elif isinstance(exc, NotMatchedError):
        code = status.HTTP_403_FORBIDDEN
    elif isinstance(exc, (ProfileNotFoundError, ConversationNotFoundError)):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, PersistenceFailure):
        code = status.HTTP_503_SERVICE_UNAVAILABLE
    else:
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return HTTPException(status_code=code, detail=str(exc))
