"""Glue between matrix-nio and the embed pipeline."""

import html
import logging
from typing import Any, Dict, Tuple

from nio import AsyncClient, MatrixRoom, RoomMessage, RoomMessageText, RoomSendError

from unfurl.embeds import EmbedReply, IncomingMessage, handle_message
from unfurl.logging_config import logging_context
from unfurl.tasks import spawn

logger = logging.getLogger(__name__)

MATRIX_HTML_FORMAT = "org.matrix.custom.html"
MATRIX_TO = "https://matrix.to/#/"


def _is_reply(event: RoomMessage) -> bool:
    content = event.source.get("content") or {}
    relates_to = content.get("m.relates_to") or {}
    return "m.in_reply_to" in relates_to


def to_incoming_message(room: MatrixRoom, event: RoomMessage) -> IncomingMessage:
    body = event.body if isinstance(event, RoomMessageText) else None
    return IncomingMessage(
        room_id=room.room_id,
        event_id=event.event_id,
        sender=event.sender,
        body=body,
        is_reply=_is_reply(event),
    )


def _quote_fallback(message: IncomingMessage) -> Tuple[str, str]:
    """Return the plain and HTML reply fallbacks quoting *message*."""
    original = message.body or ""
    lines = original.splitlines() or [""]
    plain = "\n".join(
        [f"> <{message.sender}> {lines[0]}"] + [f"> {line}" for line in lines[1:]]
    )
    quoted = html.escape(original).replace("\n", "<br />")
    rich = (
        "<mx-reply><blockquote>"
        f'<a href="{MATRIX_TO}{message.room_id}/{message.event_id}">In reply to</a> '
        f'<a href="{MATRIX_TO}{message.sender}">{html.escape(message.sender)}</a>'
        f"<br />{quoted}"
        "</blockquote></mx-reply>"
    )
    return plain, rich


def build_reply_content(reply: EmbedReply) -> Dict[str, Any]:
    """Build the ``m.room.message`` content for an embed reply."""
    plain_quote, rich_quote = _quote_fallback(reply.message)
    return {
        "msgtype": "m.text",
        "body": f"{plain_quote}\n\n{reply.body}",
        "format": MATRIX_HTML_FORMAT,
        "formatted_body": f"{rich_quote}{reply.formatted_body}",
        "m.relates_to": {"m.in_reply_to": {"event_id": reply.in_reply_to}},
    }


class EmbedHandler:
    """nio event callback that runs the embed pipeline for room messages."""

    def __init__(self, client: AsyncClient):
        self.client = client

    def register(self) -> None:
        self.client.add_event_callback(self.on_message, RoomMessage)

    async def send_reply(self, reply: EmbedReply) -> bool:
        response = await self.client.room_send(
            room_id=reply.room_id,
            message_type="m.room.message",
            content=build_reply_content(reply),
        )
        if isinstance(response, RoomSendError):
            logger.warning("Matrix send failed: %s", response)
            return False
        return True

    async def process(self, message: IncomingMessage) -> int:
        with logging_context(room_id=message.room_id, sender=message.sender):
            return await handle_message(message, self.client.user_id, self.send_reply)

    async def on_message(self, room: MatrixRoom, event: RoomMessage) -> None:
        message = to_incoming_message(room, event)
        # nio awaits callbacks inside the sync loop, keep slow pages off it
        spawn(self.process(message), name=f"embed-{message.event_id}")
