"""
Roommate Match — error taxonomy.

Services raise these; the API layer translates them into HTTP responses.
``NotMatchedError`` is an authorization-shaped condition and is kept apart
from ``PersistenceFailure`` so callers can tell "no longer matched" from a
store fault.
"""

from __future__ import annotations


class RoommateError(Exception):
    """Base class for every error raised by the matching core."""


class PersistenceFailure(RoommateError):
    """The backing document store failed a read or write."""

    def __init__(self, operation: str, detail: str = "") -> None:
        self.operation = operation
        self.detail = detail
        message = f"Store operation {operation!r} failed"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class SessionEnded(RoommateError):
    """The caller's identity session is gone; listeners stop silently."""


class InvalidUserIdsError(RoommateError, ValueError):
    """User IDs are empty or refer to the same user."""


class NotMatchedError(RoommateError):
    """The two users do not currently hold a consistent match."""

    def __init__(self, user_a: str, user_b: str) -> None:
        self.user_a = user_a
        self.user_b = user_b
        super().__init__(f"Users {user_a} and {user_b} are not matched")


class ProfileNotFoundError(RoommateError):
    def __init__(self, user_id: str) -> None:
        self.user_id = user_id
        super().__init__(f"No profile for user {user_id}")


class ConversationNotFoundError(RoommateError):
    def __init__(self, conversation_id: str) -> None:
        self.conversation_id = conversation_id
        super().__init__(f"Conversation {conversation_id} not found")


class MessageValidationError(RoommateError, ValueError):
    """A message payload was rejected before any I/O."""


class EmptyMessageError(MessageValidationError):
    def __init__(self) -> None:
        super().__init__("Message needs text, an image or a file")


class MissingDocumentError(PersistenceFailure):
    """An update targeted a document that does not exist; the batch was
    rejected as a whole."""

    def __init__(self, collection: str, doc_id: str) -> None:
        self.collection = collection
        self.doc_id = doc_id
        super().__init__("update", f"{collection}/{doc_id} does not exist")
