import logging

import pytest

from unfurl.embeds import (
    NO_METADATA_TEXT,
    IncomingMessage,
    build_reply,
    handle_message,
    is_eligible,
    iter_embed_replies,
)
from unfurl.fetcher import FetchBodyDecodeFailed, FetchUnreachable
from unfurl.metadata import PageMetadata

BOT = "@unfurl:example.org"
PAGE_A = '<html><head><title>A</title><meta name="description" content="desc"></head></html>'


def make_message(body="check this http://example.com/a out", **kwargs):
    fields = {
        "room_id": "!room:example.org",
        "event_id": "$event1",
        "sender": "@alice:example.org",
        "body": body,
        "is_reply": False,
    }
    fields.update(kwargs)
    return IncomingMessage(**fields)


class FakeFetcher:
    def __init__(self, pages):
        self.pages = pages
        self.calls = []

    async def __call__(self, url, session):
        self.calls.append(url)
        page = self.pages[url]
        if isinstance(page, Exception):
            raise page
        return page


class Recorder:
    def __init__(self, result=True):
        self.result = result
        self.replies = []

    async def __call__(self, reply):
        self.replies.append(reply)
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


@pytest.mark.asyncio
async def test_single_url_end_to_end():
    fetch = FakeFetcher({"http://example.com/a": PAGE_A})
    send = Recorder()

    sent = await handle_message(make_message(), BOT, send, fetch=fetch)

    assert sent == 1
    assert fetch.calls == ["http://example.com/a"]
    assert len(send.replies) == 1
    reply = send.replies[0]
    assert reply.room_id == "!room:example.org"
    assert reply.in_reply_to == "$event1"
    assert reply.metadata == PageMetadata(title="A", description="desc")
    assert "<strong>A</strong>" in reply.formatted_body
    assert "<p>desc</p>" in reply.formatted_body
    assert 'href="http://example.com/a"' in reply.formatted_body


@pytest.mark.asyncio
async def test_own_message_ignored():
    fetch = FakeFetcher({})
    send = Recorder()
    sent = await handle_message(make_message(sender=BOT), BOT, send, fetch=fetch)
    assert sent == 0
    assert fetch.calls == []
    assert send.replies == []


@pytest.mark.asyncio
async def test_reply_message_ignored():
    fetch = FakeFetcher({})
    send = Recorder()
    sent = await handle_message(make_message(is_reply=True), BOT, send, fetch=fetch)
    assert sent == 0
    assert fetch.calls == []


@pytest.mark.asyncio
async def test_non_text_message_ignored():
    fetch = FakeFetcher({})
    send = Recorder()
    sent = await handle_message(make_message(body=None), BOT, send, fetch=fetch)
    assert sent == 0
    assert fetch.calls == []


@pytest.mark.asyncio
async def test_message_without_urls_does_nothing():
    fetch = FakeFetcher({})
    send = Recorder()
    assert await handle_message(make_message(body="just chatting"), BOT, send, fetch=fetch) == 0
    assert fetch.calls == []


@pytest.mark.asyncio
async def test_fetch_failure_skips_to_next_url(caplog):
    caplog.set_level(logging.WARNING, logger="unfurl.embeds")
    fetch = FakeFetcher({
        "http://down.example.com/": FetchUnreachable("http://down.example.com/", "refused"),
        "http://garbled.example.com/": FetchBodyDecodeFailed("http://garbled.example.com/", "bad bytes"),
        "http://example.com/a": PAGE_A,
    })
    send = Recorder()
    body = "http://down.example.com/ http://garbled.example.com/ http://example.com/a"

    sent = await handle_message(make_message(body=body), BOT, send, fetch=fetch)

    assert fetch.calls == [
        "http://down.example.com/",
        "http://garbled.example.com/",
        "http://example.com/a",
    ]
    assert sent == 1
    assert [r.url for r in send.replies] == ["http://example.com/a"]
    assert any("down.example.com" in r.getMessage() for r in caplog.records)


@pytest.mark.asyncio
async def test_missing_metadata_sends_notice():
    fetch = FakeFetcher({"http://example.com/a": "<html><body>bare</body></html>"})
    send = Recorder()

    await handle_message(make_message(), BOT, send, fetch=fetch)

    reply = send.replies[0]
    assert reply.metadata is None
    assert reply.body == NO_METADATA_TEXT
    assert NO_METADATA_TEXT in reply.formatted_body
    assert "example.com" not in reply.formatted_body


@pytest.mark.asyncio
async def test_description_without_content_sends_notice(caplog):
    caplog.set_level(logging.ERROR, logger="unfurl.embeds")
    page = '<title>T</title><meta name="description">'
    fetch = FakeFetcher({"http://example.com/a": page})
    send = Recorder()

    sent = await handle_message(make_message(), BOT, send, fetch=fetch)

    assert sent == 1
    assert send.replies[0].body == NO_METADATA_TEXT
    assert any("Failed to parse metadata" in r.message for r in caplog.records)


@pytest.mark.asyncio
async def test_dispatch_failure_does_not_stop_loop(caplog):
    caplog.set_level(logging.WARNING, logger="unfurl.embeds")
    fetch = FakeFetcher({"http://a.example.com/": PAGE_A, "http://b.example.com/": PAGE_A})
    send = Recorder(result=False)

    sent = await handle_message(
        make_message(body="http://a.example.com/ http://b.example.com/"), BOT, send, fetch=fetch
    )

    assert sent == 0
    assert len(send.replies) == 2
    assert any("Failed to send embed" in r.message for r in caplog.records)


@pytest.mark.asyncio
async def test_dispatch_exception_is_logged_not_raised(caplog):
    caplog.set_level(logging.ERROR, logger="unfurl.embeds")
    fetch = FakeFetcher({"http://example.com/a": PAGE_A})
    send = Recorder(result=RuntimeError("boom"))

    assert await handle_message(make_message(), BOT, send, fetch=fetch) == 0
    assert any("Failed to send embed" in r.message for r in caplog.records)


@pytest.mark.asyncio
async def test_replies_are_yielded_before_next_fetch():
    order = []

    async def fetch(url, session):
        order.append(("fetch", url))
        return PAGE_A

    message = make_message(body="http://a.example.com/ http://b.example.com/")
    async for reply in iter_embed_replies(message, BOT, fetch=fetch):
        order.append(("reply", reply.url))

    assert order == [
        ("fetch", "http://a.example.com/"),
        ("reply", "http://a.example.com/"),
        ("fetch", "http://b.example.com/"),
        ("reply", "http://b.example.com/"),
    ]


def test_partial_metadata_keeps_empty_field():
    reply = build_reply(make_message(), "http://example.com/a", PageMetadata(title="T"))
    assert "<p></p>" in reply.formatted_body
    assert reply.body == "T"


def test_reply_escapes_page_text():
    metadata = PageMetadata(title="<script>x</script>", description='a "quoted" & b')
    reply = build_reply(make_message(), "http://example.com/?a=1&b=2", metadata)
    assert "<script>" not in reply.formatted_body
    assert "&lt;script&gt;" in reply.formatted_body
    assert "a=1&amp;b=2" in reply.formatted_body


def test_empty_metadata_falls_back_to_url_body():
    reply = build_reply(make_message(), "http://example.com/a", PageMetadata())
    assert reply.body == "http://example.com/a"


def test_is_eligible():
    assert is_eligible(make_message(), BOT)
    assert not is_eligible(make_message(sender=BOT), BOT)
    assert not is_eligible(make_message(is_reply=True), BOT)
    assert not is_eligible(make_message(body=None), BOT)



def test_own_message_gate_is_logged(caplog):
    caplog.set_level(logging.DEBUG, logger="unfurl.embeds")
    assert not is_eligible(make_message(sender=BOT), BOT)
    assert any("our own" in r.message for r in caplog.records)
