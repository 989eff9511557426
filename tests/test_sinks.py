"""
Tests for the Telegram and webhook notification sinks.
"""
import pytest
from aiogram.exceptions import TelegramForbiddenError, TelegramRetryAfter
from aiogram.methods import SendMessage
from aiohttp import web
from aiohttp.test_utils import TestServer

from conftest import SENDER, WATCHED, tx_hash
from core.chains import DEFAULT_CHAINS
from core.models import TransferEvent, TransferKind, TransferNotification
from notify.telegram import TelegramSink, parse_chat_destination
from notify.webhook import WebhookSink


def notification():
    event = TransferEvent(
        chain_id=56,
        kind=TransferKind.NATIVE,
        from_address=SENDER,
        to_address=WATCHED,
        amount="0.5",
        tx_hash=tx_hash(1),
        block_number=10,
    )
    return TransferNotification.for_chain(event, DEFAULT_CHAINS[56])


class FakeBot:
    def __init__(self, failures=()):
        self.failures = list(failures)
        self.sent = []

    async def send_message(self, **kwargs):
        if self.failures:
            raise self.failures.pop(0)
        self.sent.append(kwargs)


def api_method():
    return SendMessage(chat_id=1, text="x")


@pytest.mark.parametrize("value,expected", [
    ("-1001234", (-1001234, None)),
    ("-1001234:42", (-1001234, 42)),
    ("abc", (None, None)),
    (None, (None, None)),
])
def test_parse_chat_destination(value, expected):
    assert parse_chat_destination(value) == expected


async def test_telegram_delivers_text():
    bot = FakeBot()
    sink = TelegramSink(bot, "-100:7")
    sink._rate_limit_delay = 0

    await sink.deliver(notification())

    assert len(bot.sent) == 1
    message = bot.sent[0]
    assert message["chat_id"] == -100
    assert message["message_thread_id"] == 7
    assert "💰 Incoming BNB" in message["text"]
    assert "https://bscscan.com/tx/" in message["text"]


async def test_telegram_retries_after_rate_limit():
    bot = FakeBot([TelegramRetryAfter(method=api_method(), message="Too Many Requests", retry_after=0)])
    sink = TelegramSink(bot, "1")
    sink._rate_limit_delay = 0

    await sink.deliver(notification())
    assert len(bot.sent) == 1


async def test_telegram_disables_itself_when_blocked():
    bot = FakeBot([TelegramForbiddenError(method=api_method(), message="bot was blocked by the user")])
    sink = TelegramSink(bot, "1")
    sink._rate_limit_delay = 0

    await sink.deliver(notification())
    await sink.deliver(notification())

    assert sink.blocked
    assert bot.sent == []


async def test_webhook_posts_outbound_record():
    received = []

    async def handle(request):
        received.append(await request.json())
        return web.json_response({"ok": True})

    app = web.Application()
    app.router.add_post("/hook", handle)
    server = TestServer(app)
    await server.start_server()

    sink = WebhookSink([str(server.make_url("/hook")), "http://127.0.0.1:9/unreachable"], timeout=2)
    try:
        await sink.deliver(notification())
    finally:
        await sink.close()
        await server.close()

    assert received == [notification().to_message()]
