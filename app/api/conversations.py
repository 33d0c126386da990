"""
Roommate Match — Conversations API

REST endpoints for opening conversations and exchanging messages, plus
WebSockets that stream the live conversation list and the match-gated
message subscription.
"""

from __future__ import annotations

import asyncio

import structlog
from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status

from app.api.deps import get_conversation_gateway, to_http_exception
from app.schemas.conversation import (
    ConversationCreate,
    ConversationCreated,
    ConversationSummary,
    MessageCreate,
    MessageCreated,
    MessagePayload,
    MessageRecord,
)
from app.services.conversation_service import ConversationGateway
from app.utils.errors import RoommateError

logger = structlog.get_logger("roommate.api.conversations")

router = APIRouter()


# ──────────────────────────────────────────────────────────────────────────────
# POST / — Open (or reopen) a conversation
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "",
    response_model=ConversationCreated,
    summary="Get or create the conversation for a matched pair",
)
async def open_conversation(
    payload: ConversationCreate,
    gateway: ConversationGateway = Depends(get_conversation_gateway),
) -> ConversationCreated:
    try:
        conversation_id = await gateway.get_or_create_conversation(
            payload.user_a_id, payload.user_b_id
        )
    except RoommateError as exc:
        raise to_http_exception(exc) from exc
    return ConversationCreated(conversation_id=conversation_id)


# ──────────────────────────────────────────────────────────────────────────────
# GET / — A user's conversations
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "",
    response_model=list[ConversationSummary],
    summary="List a user's conversations, most recent first",
)
async def list_conversations(
    user_id: str = Query(..., min_length=1),
    gateway: ConversationGateway = Depends(get_conversation_gateway),
) -> list[ConversationSummary]:
    try:
        return await gateway.list_conversations(user_id)
    except RoommateError as exc:
        raise to_http_exception(exc) from exc


# ──────────────────────────────────────────────────────────────────────────────
# Messages
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/{conversation_id}/messages",
    response_model=list[MessageRecord],
    summary="Message history (empty once unmatched)",
)
async def list_messages(
    conversation_id: str,
    viewer_id: str = Query(..., min_length=1),
    gateway: ConversationGateway = Depends(get_conversation_gateway),
) -> list[MessageRecord]:
    try:
        return await gateway.list_messages(conversation_id, viewer_id)
    except RoommateError as exc:
        raise to_http_exception(exc) from exc


@router.post(
    "/{conversation_id}/messages",
    response_model=MessageCreated,
    status_code=status.HTTP_201_CREATED,
    summary="Send a message",
)
async def send_message(
    conversation_id: str,
    payload: MessageCreate,
    gateway: ConversationGateway = Depends(get_conversation_gateway),
) -> MessageCreated:
    """Append a message.  The sender must still be matched with the other
    participant at send time."""
    log = logger.bind(conversation_id=conversation_id, sender_id=payload.sender_id)

    body = MessagePayload.model_validate(payload.model_dump(exclude={"sender_id"}))
    try:
        message_id = await gateway.append_message(conversation_id, payload.sender_id, body)
    except RoommateError as exc:
        log.info("send_message_rejected", error=str(exc))
        raise to_http_exception(exc) from exc

    return MessageCreated(message_id=message_id, conversation_id=conversation_id)


# ──────────────────────────────────────────────────────────────────────────────
# WebSockets — live conversation list and match-gated message stream
# ──────────────────────────────────────────────────────────────────────────────

async def _pump_until_disconnect(
    websocket: WebSocket,
    outbox: asyncio.Queue,
    subscription,
    log,
) -> None:
    """Forward queued frames until the client goes away, then stop the
    subscription."""

    async def _pump() -> None:
        while True:
            await websocket.send_json(await outbox.get())

    sender = asyncio.create_task(_pump())
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        log.info("stream_disconnected")
    finally:
        subscription.stop()
        sender.cancel()
        try:
            await sender
        except (asyncio.CancelledError, WebSocketDisconnect, RuntimeError):
            pass


@router.websocket("/ws")
async def stream_conversations(
    websocket: WebSocket,
    user_id: str = Query(..., min_length=1),
    gateway: ConversationGateway = Depends(get_conversation_gateway),
) -> None:
    """Push the user's conversation list, most recent first, on every
    change to any of their conversations."""
    log = logger.bind(user_id=user_id)
    await websocket.accept()

    outbox: asyncio.Queue = asyncio.Queue()

    def _on_conversations(summaries: list[ConversationSummary]) -> None:
        outbox.put_nowait({"conversations": [s.to_document() for s in summaries]})

    def _on_error(exc: Exception) -> None:
        outbox.put_nowait({"error": str(exc)})

    try:
        subscription = await gateway.subscribe_conversations(user_id, _on_conversations, _on_error)
    except RoommateError as exc:
        log.warning("conversation_stream_refused", error=str(exc))
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR, reason=str(exc))
        return

    await _pump_until_disconnect(websocket, outbox, subscription, log)


@router.websocket("/{conversation_id}/ws")
async def stream_messages(
    websocket: WebSocket,
    conversation_id: str,
    user_id: str = Query(..., min_length=1),
    gateway: ConversationGateway = Depends(get_conversation_gateway),
) -> None:
    """Push the full message list on every change.  An empty list means
    the pair is no longer matched.  The stream ends when the client
    disconnects."""
    log = logger.bind(conversation_id=conversation_id, user_id=user_id)
    await websocket.accept()

    outbox: asyncio.Queue = asyncio.Queue()

    def _on_messages(messages: list[MessageRecord]) -> None:
        outbox.put_nowait({"messages": [m.to_document() for m in messages]})

    def _on_error(exc: Exception) -> None:
        outbox.put_nowait({"error": str(exc)})

    try:
        subscription = await gateway.subscribe_messages(
            conversation_id, user_id, _on_messages, _on_error
        )
    except RoommateError as exc:
        log.warning("message_stream_refused", error=str(exc))
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR, reason=str(exc))
        return

    await _pump_until_disconnect(websocket, outbox, subscription, log)
