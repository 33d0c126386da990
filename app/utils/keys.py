"""Canonical identifiers and collection paths shared across services."""

from __future__ import annotations

from app.utils.errors import InvalidUserIdsError

PAIR_SEPARATOR = "_"

USERS_COLLECTION = "users"
SWIPES_COLLECTION = "swipes"
MATCHES_COLLECTION = "matches"
SCORES_COLLECTION = "compatibilityScores"
CONVERSATIONS_COLLECTION = "conversations"
MESSAGES_SUBCOLLECTION = "messages"


def require_distinct(user_a: str, user_b: str) -> None:
    """Reject empty or identical user IDs before any I/O."""
    if not user_a or not user_b:
        raise InvalidUserIdsError("Both user IDs are required")
    if user_a == user_b:
        raise InvalidUserIdsError(f"User {user_a} cannot be paired with themselves")


def pair_key(user_a: str, user_b: str) -> str:
    """Order-independent key for an unordered user pair."""
    return PAIR_SEPARATOR.join(sorted((user_a, user_b)))


def swipes_path(swiper_id: str) -> str:
    return f"{SWIPES_COLLECTION}/{swiper_id}/swipedUsers"


def user_matches_path(owner_id: str) -> str:
    return f"{MATCHES_COLLECTION}/{owner_id}/userMatches"


def messages_path(conversation_id: str) -> str:
    return f"{CONVERSATIONS_COLLECTION}/{conversation_id}/{MESSAGES_SUBCOLLECTION}"
