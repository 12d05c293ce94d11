"""Link embeds: turn URLs posted in chat into title/description replies.

The pipeline for one incoming message is::

    eligibility gate -> extract_urls -> for each URL:
        fetch_page -> parse_metadata -> build_reply -> send_reply

URLs are handled one after another. A failure on one URL is logged and the
loop moves on to the next; nothing here raises into the caller.

When a page is fetched but no usable metadata comes out of it, the bot
answers with a "No metadata found" notice instead of staying silent. A page
that cannot be fetched at all gets no reply.
"""

import html
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Optional

import aiohttp

from unfurl.fetcher import FetchError, create_session, fetch_page
from unfurl.metadata import MetadataParseError, PageMetadata, parse_metadata
from unfurl.url_extractor import extract_urls

logger = logging.getLogger(__name__)

NO_METADATA_TEXT = "No metadata found"

FetchFunc = Callable[[str, aiohttp.ClientSession], Awaitable[str]]


@dataclass(frozen=True)
class IncomingMessage:
    room_id: str
    event_id: str
    sender: str
    # None when the event isn't a plain text message
    body: Optional[str]
    is_reply: bool = False


@dataclass(frozen=True)
class EmbedReply:
    message: IncomingMessage
    url: str
    metadata: Optional[PageMetadata]
    body: str
    formatted_body: str

    @property
    def room_id(self) -> str:
        return self.message.room_id

    @property
    def in_reply_to(self) -> str:
        return self.message.event_id


SendReplyFunc = Callable[[EmbedReply], Awaitable[bool]]


def is_eligible(message: IncomingMessage, bot_user_id: str) -> bool:
    """Return True if *message* should be scanned for links."""
    if message.sender == bot_user_id:
        logger.debug("Ignoring message, it's our own")
        return False
    # Replies are skipped entirely, so a URL inside a reply never gets an
    # embed. Scanning replies for new URLs only would lift this.
    if message.is_reply:
        logger.info("Ignoring message, it's a reply to someone else")
        return False
    if message.body is None:
        logger.info("Ignoring message, content is not plaintext")
        return False
    return True


def build_reply(
    message: IncomingMessage, url: str, metadata: Optional[PageMetadata]
) -> EmbedReply:
    """Format the embed for *url*, or the no-metadata notice."""
    if metadata is None:
        return EmbedReply(
            message=message,
            url=url,
            metadata=None,
            body=NO_METADATA_TEXT,
            formatted_body=(
                "<blockquote>"
                f"<h3><strong>{NO_METADATA_TEXT}</strong></h3>"
                "</blockquote>"
            ),
        )

    link = html.escape(url)
    formatted = (
        "<blockquote>"
        f'<h6><a href="{link}">{link}</a></h6>'
        f"<h3><strong>{html.escape(metadata.title)}</strong></h3>"
        f"<p>{html.escape(metadata.description)}</p>"
        "</blockquote>"
    )
    body = "\n".join(part for part in (metadata.title, metadata.description) if part) or url
    return EmbedReply(
        message=message,
        url=url,
        metadata=metadata,
        body=body,
        formatted_body=formatted,
    )


def _extract_metadata(url: str, page: str) -> Optional[PageMetadata]:
    try:
        return parse_metadata(page)
    except MetadataParseError as e:
        logger.error("Failed to parse metadata for '%s': %s", url, e)
        return None


async def iter_embed_replies(
    message: IncomingMessage,
    bot_user_id: str,
    fetch: FetchFunc = fetch_page,
) -> AsyncIterator[EmbedReply]:
    """Yield one reply per fetchable URL in *message*.

    Each reply is yielded before the next URL is fetched, so a consumer that
    sends as it iterates keeps the per-URL ordering.
    """
    if not is_eligible(message, bot_user_id):
        return

    urls = extract_urls(message.body)
    if not urls:
        return

    async with create_session() as session:
        for url in urls:
            try:
                page = await fetch(url, session)
            except FetchError as e:
                logger.warning("Failed to get page for '%s': %s", url, e.reason)
                continue

            metadata = _extract_metadata(url, page)
            yield build_reply(message, url, metadata)


async def handle_message(
    message: IncomingMessage,
    bot_user_id: str,
    send_reply: SendReplyFunc,
    fetch: FetchFunc = fetch_page,
) -> int:
    """Run the embed pipeline for *message* and return how many replies went out."""
    sent = 0
    async for reply in iter_embed_replies(message, bot_user_id, fetch=fetch):
        logger.info("Sending embed for URL: '%s'", reply.url)
        try:
            ok = await send_reply(reply)
        except Exception:
            logger.exception("Failed to send embed for URL: '%s'", reply.url)
            continue
        if not ok:
            logger.warning("Failed to send embed for URL: '%s'", reply.url)
            continue
        sent += 1
    return sent


__all__ = [
    "NO_METADATA_TEXT",
    "IncomingMessage",
    "EmbedReply",
    "is_eligible",
    "build_reply",
    "iter_embed_replies",
    "handle_message",
]
