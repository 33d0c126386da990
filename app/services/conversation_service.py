"""
Roommate Match — Match-gated conversations.

A conversation between two users lives at ``conversations/<min>_<max>``
with its messages in the ``messages`` sub-collection.  The match is
checked when the conversation is opened *and again on every send*, since
an unmatch can happen while a conversation is open.  Message
subscriptions re-check the match on every change and deliver an empty
list while the pair is not matched; conversation-list subscriptions
re-run the participant query on every change to the collection.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Awaitable, Callable

import structlog

from app.config import get_settings
from app.schemas.conversation import (
    ConversationRecord,
    ConversationSummary,
    MessagePayload,
    MessageRecord,
)
from app.services.profile_service import ProfileService
from app.store.base import DocumentStore, Predicate, StoredDocument, WriteOp, filter_and_sort
from app.store.changes import maybe_await
from app.utils.errors import (
    ConversationNotFoundError,
    EmptyMessageError,
    MessageValidationError,
    MissingDocumentError,
    NotMatchedError,
    PersistenceFailure,
    SessionEnded,
)
from app.utils.keys import (
    CONVERSATIONS_COLLECTION,
    messages_path,
    pair_key,
    require_distinct,
)

if TYPE_CHECKING:
    from app.services.matching_service import MatchManager

logger = structlog.get_logger("roommate.conversation_service")

MessagesCallback = Callable[[list[MessageRecord]], "Awaitable[None] | None"]
ConversationsCallback = Callable[[list[ConversationSummary]], "Awaitable[None] | None"]
ErrorCallback = Callable[[Exception], "Awaitable[None] | None"]

IMAGE_PREVIEW_ICON = "📷"
FILE_PREVIEW_ICON = "📎"
DEFAULT_IMAGE_NAME = "image.jpg"
DEFAULT_FILE_NAME = "File"


def canonical_conversation_id(user_a: str, user_b: str) -> str:
    require_distinct(user_a, user_b)
    return pair_key(user_a, user_b)


def validate_payload(payload: MessagePayload) -> None:
    """Reject a payload before any I/O.

    At least one of trimmed text, image URL or file URL must be present,
    and a message carries at most one attachment.
    """
    has_text = bool(payload.text and payload.text.strip())
    if not (has_text or payload.image_url or payload.file_url):
        raise EmptyMessageError()
    if payload.image_url and payload.file_url:
        raise MessageValidationError("A message carries either an image or a file, not both")


def build_preview(payload: MessagePayload, max_length: int = 50) -> str:
    """Conversation-list preview for the last message."""
    if payload.text and payload.text.strip():
        return payload.text[:max_length].replace("\n", " ")
    if payload.image_url:
        return f"{IMAGE_PREVIEW_ICON} {payload.file_name or DEFAULT_IMAGE_NAME}"
    if payload.file_url:
        return f"{FILE_PREVIEW_ICON} {payload.file_name or DEFAULT_FILE_NAME}"
    return "..."


def _message_from_document(doc: StoredDocument) -> MessageRecord:
    return MessageRecord.from_document({**doc.data, "id": doc.id})


def _conversation_or_none(conversation_id: str, data: dict | None) -> ConversationRecord | None:
    if not data or not data.get("participants"):
        return None
    return ConversationRecord.from_document({**data, "id": conversation_id})


async def purge_conversation(store: DocumentStore, user_a: str, user_b: str) -> int:
    """Delete a pair's conversation and all of its messages.

    Individual message deletions that fail are logged and skipped; the
    conversation document is removed regardless.  Returns the number of
    messages deleted.
    """
    conversation_id = pair_key(user_a, user_b)
    log = logger.bind(conversation_id=conversation_id)

    removed = 0
    for doc in await store.query(messages_path(conversation_id)):
        try:
            await store.delete(messages_path(conversation_id), doc.id)
            removed += 1
        except PersistenceFailure as exc:
            log.warning("message_delete_failed", message_id=doc.id, error=str(exc))

    await store.delete(CONVERSATIONS_COLLECTION, conversation_id)
    log.info("conversation_deleted", messages_removed=removed)
    return removed


class ConversationGateway:
    def __init__(
        self,
        store: DocumentStore,
        matches: "MatchManager",
        profiles: ProfileService,
    ) -> None:
        self.store = store
        self.matches = matches
        self.profiles = profiles
        self.preview_length = get_settings().MESSAGE_PREVIEW_LENGTH

    canonical_conversation_id = staticmethod(canonical_conversation_id)

    # ── Conversations ─────────────────────────────────────────────────────

    async def get_or_create_conversation(self, user_a: str, user_b: str) -> str:
        """Return the pair's conversation id, creating the document once.

        Raises ``NotMatchedError`` without writing anything when the pair
        is not currently matched.
        """
        conversation_id = canonical_conversation_id(user_a, user_b)
        log = logger.bind(conversation_id=conversation_id)

        if not await self.matches.are_matched(user_a, user_b):
            log.info("conversation_refused_not_matched")
            raise NotMatchedError(user_a, user_b)

        existing = await self.store.get(CONVERSATIONS_COLLECTION, conversation_id)
        if existing is not None and existing.get("participants"):
            log.debug("conversation_exists")
            return conversation_id
        if existing is not None:
            log.warning("conversation_rewritten_without_participants")

        record = ConversationRecord(
            id=conversation_id,
            participants=[user_a, user_b],
            created_at=datetime.now(timezone.utc),
        )
        await self.store.set(CONVERSATIONS_COLLECTION, conversation_id, record.to_document())
        log.info("conversation_created")
        return conversation_id

    async def get_conversation(self, conversation_id: str) -> ConversationRecord:
        data = await self.store.get(CONVERSATIONS_COLLECTION, conversation_id)
        conversation = _conversation_or_none(conversation_id, data)
        if conversation is None:
            raise ConversationNotFoundError(conversation_id)
        return conversation

    async def list_conversations(self, user_id: str) -> list[ConversationSummary]:
        """The user's conversations, most recently active first."""
        documents = await self.store.query(
            CONVERSATIONS_COLLECTION,
            [Predicate("participants", "array-contains", user_id)],
            order_by="lastMessageTimestamp",
            descending=True,
        )
        summaries = await self._summarize(user_id, documents)
        logger.info("conversations_listed", user_id=user_id, count=len(summaries))
        return summaries

    async def _summarize(
        self, user_id: str, documents: list[StoredDocument]
    ) -> list[ConversationSummary]:
        """Attach the other participant's profile to each conversation."""
        summaries: list[ConversationSummary] = []
        for doc in documents:
            conversation = ConversationRecord.from_document({**doc.data, "id": doc.id})
            other_id = conversation.other_participant(user_id)
            other_profile = None
            if other_id:
                try:
                    other_profile = await self.profiles.get_profile(other_id)
                except PersistenceFailure as exc:
                    logger.warning(
                        "conversation_profile_fetch_failed",
                        conversation_id=doc.id,
                        other_user_id=other_id,
                        error=str(exc),
                    )
            summaries.append(
                ConversationSummary(
                    conversation=conversation,
                    other_user_id=other_id,
                    other_profile=other_profile,
                )
            )
        return summaries

    async def delete_conversation(self, user_a: str, user_b: str) -> int:
        return await purge_conversation(self.store, user_a, user_b)

    # ── Messages ──────────────────────────────────────────────────────────

    async def append_message(
        self,
        conversation_id: str,
        sender_id: str,
        payload: MessagePayload,
    ) -> str:
        """Append a message and refresh the conversation preview as one
        batch.  Returns the new message id.

        Order of checks: payload validation (no I/O), conversation lookup,
        then the match re-check against the other participant.  Unmatching
        deletes the conversation, so a missing conversation is reported as
        ``NotMatchedError`` as well.
        """
        validate_payload(payload)
        log = logger.bind(conversation_id=conversation_id, sender_id=sender_id)

        try:
            conversation = await self.get_conversation(conversation_id)
        except ConversationNotFoundError as exc:
            log.info("message_refused_no_conversation")
            raise NotMatchedError(sender_id, conversation_id) from exc
        other_id = conversation.other_participant(sender_id)
        if other_id is None:
            log.warning("message_refused_not_participant")
            raise NotMatchedError(sender_id, conversation_id)

        if not await self.matches.are_matched(sender_id, other_id):
            log.info("message_refused_not_matched", other_user_id=other_id)
            raise NotMatchedError(sender_id, other_id)

        now = datetime.now(timezone.utc)
        message = MessageRecord(
            id=uuid.uuid4().hex,
            sender_id=sender_id,
            timestamp=now,
            **payload.model_dump(),
        )
        message_doc = message.to_document()
        message_doc.pop("id")

        preview = build_preview(payload, self.preview_length)
        try:
            await self.store.batch_write([
                WriteOp.set(messages_path(conversation_id), message.id, message_doc),
                WriteOp.update(
                    CONVERSATIONS_COLLECTION,
                    conversation_id,
                    {
                        "lastMessageTimestamp": message_doc["timestamp"],
                        "lastMessageText": preview,
                        "lastMessageSenderId": sender_id,
                    },
                ),
            ])
        except MissingDocumentError as exc:
            # Unmatched (and purged) between the re-check and the write.
            log.info("message_refused_conversation_purged", other_user_id=other_id)
            raise NotMatchedError(sender_id, other_id) from exc

        log.info("message_appended", message_id=message.id)
        return message.id

    async def list_messages(self, conversation_id: str, viewer_id: str) -> list[MessageRecord]:
        """Messages in ascending time order; empty while unmatched."""
        conversation = await self.get_conversation(conversation_id)
        other_id = conversation.other_participant(viewer_id)
        if other_id is None:
            raise NotMatchedError(viewer_id, conversation_id)
        if not await self.matches.are_matched(viewer_id, other_id):
            return []

        documents = await self.store.query(messages_path(conversation_id))
        return sorted(
            (_message_from_document(d) for d in documents),
            key=lambda m: (m.timestamp, m.id),
        )

    async def get_last_message(self, conversation_id: str) -> MessageRecord | None:
        documents = await self.store.query(
            messages_path(conversation_id),
            order_by="timestamp",
            descending=True,
            limit=1,
        )
        return _message_from_document(documents[0]) if documents else None

    async def subscribe_messages(
        self,
        conversation_id: str,
        viewer_id: str,
        on_messages: MessagesCallback,
        on_error: ErrorCallback | None = None,
        session_active: Callable[[], bool] | None = None,
    ) -> "MessageSubscription":
        """Start a gated message subscription; call ``stop()`` to end it."""
        subscription = MessageSubscription(
            self, conversation_id, viewer_id, on_messages, on_error, session_active
        )
        await subscription.start()
        return subscription

    async def subscribe_conversations(
        self,
        user_id: str,
        on_conversations: ConversationsCallback,
        on_error: ErrorCallback | None = None,
        session_active: Callable[[], bool] | None = None,
    ) -> "ConversationListSubscription":
        """Live version of :meth:`list_conversations`; call ``stop()`` to end it."""
        subscription = ConversationListSubscription(
            self, user_id, on_conversations, on_error, session_active
        )
        await subscription.start()
        return subscription


class _GatedSubscription:
    """Shared lifecycle for the gateway's long-lived subscriptions.

    ``stop()`` detaches every underlying listener and no callback fires
    afterwards.  When the viewer's session ends (the ``session_active``
    check returns false, or a read raises ``SessionEnded``) the
    subscription stops without reporting an error.
    """

    kind = "gated"

    def __init__(
        self,
        gateway: ConversationGateway,
        viewer_id: str,
        on_error: ErrorCallback | None = None,
        session_active: Callable[[], bool] | None = None,
    ) -> None:
        self.gateway = gateway
        self.viewer_id = viewer_id
        self._on_error = on_error
        self._session_active = session_active

        self.active = False
        self._ready = False
        self._unsubscribers: list[Callable[[], None]] = []

    async def start(self):
        raise NotImplementedError

    async def _watch(self, collection: str, doc_id: str | None, on_change: Callable) -> None:
        unsubscribe = await self.gateway.store.subscribe(
            collection, doc_id, on_change, self._report, on_session_end=self.stop
        )
        if self.active:
            self._unsubscribers.append(unsubscribe)
        else:
            unsubscribe()

    def stop(self) -> None:
        if not self.active:
            return
        self.active = False
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        logger.info("subscription_stopped", kind=self.kind, viewer_id=self.viewer_id)

    async def __aenter__(self):
        if not self.active:
            await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self.stop()

    def _still_wanted(self) -> bool:
        if not self.active:
            return False
        if self._session_active is not None and not self._session_active():
            logger.info("subscription_session_ended", kind=self.kind, viewer_id=self.viewer_id)
            self.stop()
            return False
        return True

    async def _report(self, exc: Exception) -> None:
        if isinstance(exc, SessionEnded):
            self.stop()
            return
        if not self.active:
            return
        logger.error("subscription_error", kind=self.kind, viewer_id=self.viewer_id, error=str(exc))
        if self._on_error is not None:
            await maybe_await(self._on_error(exc))


class MessageSubscription(_GatedSubscription):
    """Watches a conversation document and its messages.

    Every change re-checks the match between the viewer and the other
    participant; while the pair is not matched (or the conversation is
    gone) the callback receives an empty list.
    """

    kind = "messages"

    def __init__(
        self,
        gateway: ConversationGateway,
        conversation_id: str,
        viewer_id: str,
        on_messages: MessagesCallback,
        on_error: ErrorCallback | None = None,
        session_active: Callable[[], bool] | None = None,
    ) -> None:
        super().__init__(gateway, viewer_id, on_error, session_active)
        self.conversation_id = conversation_id
        self._on_messages = on_messages

        self.matched: bool | None = None
        self._conversation: ConversationRecord | None = None
        self._messages: list[MessageRecord] = []

    async def start(self) -> "MessageSubscription":
        self.active = True
        await self._watch(CONVERSATIONS_COLLECTION, self.conversation_id, self._conversation_changed)
        if self.active:
            await self._watch(messages_path(self.conversation_id), None, self._messages_changed)
        if not self.active:
            return self

        self._ready = True
        await self._publish()
        logger.info(
            "message_subscription_started",
            conversation_id=self.conversation_id,
            viewer_id=self.viewer_id,
        )
        return self

    async def _conversation_changed(self, data: dict | None) -> None:
        if not self._still_wanted():
            return
        self._conversation = _conversation_or_none(self.conversation_id, data)
        await self._publish()

    async def _messages_changed(self, documents: list[StoredDocument]) -> None:
        if not self._still_wanted():
            return
        self._messages = sorted(
            (_message_from_document(d) for d in documents),
            key=lambda m: (m.timestamp, m.id),
        )
        await self._publish()

    async def _publish(self) -> None:
        if not self._ready or not self._still_wanted():
            return
        try:
            matched = await self._gate()
        except SessionEnded:
            self.stop()
            return
        except Exception as exc:
            await self._report(exc)
            return

        if not self._still_wanted():
            return
        if self.matched and not matched:
            logger.info(
                "message_delivery_suppressed",
                conversation_id=self.conversation_id,
                viewer_id=self.viewer_id,
            )
        self.matched = matched
        await maybe_await(self._on_messages(list(self._messages) if matched else []))

    async def _gate(self) -> bool:
        if self._conversation is None:
            return False
        other_id = self._conversation.other_participant(self.viewer_id)
        if other_id is None:
            return False
        return await self.gateway.matches.are_matched(self.viewer_id, other_id)


class ConversationListSubscription(_GatedSubscription):
    """Watches the conversations collection for one user.

    Each change re-runs the participant filter, the most-recent-first
    ordering and the other-participant profile lookup, then hands the
    full list to the callback.
    """

    kind = "conversations"

    def __init__(
        self,
        gateway: ConversationGateway,
        user_id: str,
        on_conversations: ConversationsCallback,
        on_error: ErrorCallback | None = None,
        session_active: Callable[[], bool] | None = None,
    ) -> None:
        super().__init__(gateway, user_id, on_error, session_active)
        self._on_conversations = on_conversations

    async def start(self) -> "ConversationListSubscription":
        self.active = True
        self._ready = True
        await self._watch(CONVERSATIONS_COLLECTION, None, self._collection_changed)
        if self.active:
            logger.info("conversation_subscription_started", user_id=self.viewer_id)
        return self

    async def _collection_changed(self, documents: list[StoredDocument]) -> None:
        if not self._ready or not self._still_wanted():
            return
        selected = filter_and_sort(
            documents,
            [Predicate("participants", "array-contains", self.viewer_id)],
            order_by="lastMessageTimestamp",
            descending=True,
        )
        try:
            summaries = await self.gateway._summarize(self.viewer_id, selected)
        except SessionEnded:
            self.stop()
            return
        except Exception as exc:
            await self._report(exc)
            return

        if not self._still_wanted():
            return
        await maybe_await(self._on_conversations(summaries))
