"""
Telegram Bot API client tests
=============================

A small aiohttp application plays the Bot API.
"""

import pytest
from aiohttp import web
from aiohttp import test_utils

from errors import RendezvousError
from rendezvous.channel import TelegramChannel

TOKEN = "123:abc"
CHAT = -1001


def update(update_id: int, chat_id: int = CHAT, text: str | None = "hi", kind: str = "channel_post") -> dict:
    message = {"message_id": update_id * 10, "chat": {"id": chat_id, "type": "channel"}}
    if text is not None:
        message["text"] = text
    return {"update_id": update_id, kind: message}


class FakeBotApi:
    """Records calls and replies from a script keyed by method name."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict]] = []
        self.replies: dict[str, dict] = {}

    async def handle(self, request: web.Request) -> web.Response:
        method = request.match_info["method"]
        self.calls.append((method, await request.json()))
        reply = self.replies.get(method, {"ok": False, "description": "Not Found"})
        if isinstance(reply, str):
            return web.Response(text=reply)
        return web.json_response(reply)


@pytest.fixture
async def bot_api():
    api = FakeBotApi()
    app = web.Application()
    app.router.add_post(f"/bot{TOKEN}/{{method}}", api.handle)
    server = test_utils.TestServer(app)
    await server.start_server()
    channel = TelegramChannel(TOKEN, api_url_prefix=str(server.make_url("/bot")), long_poll_timeout=1)
    yield api, channel
    await channel.close()
    await server.close()


class TestTelegramChannel:

    async def test_check_identity(self, bot_api):
        api, channel = bot_api
        api.replies["getMe"] = {"ok": True, "result": {"id": 1, "is_bot": True, "first_name": "Hub", "username": "hub_bot"}}
        assert await channel.check_identity() == "@hub_bot"

    async def test_api_error_description(self, bot_api):
        api, channel = bot_api
        api.replies["getMe"] = {"ok": False, "description": "Unauthorized"}
        with pytest.raises(RendezvousError, match="Unauthorized"):
            await channel.check_identity()

    async def test_api_error_without_description(self, bot_api):
        api, channel = bot_api
        api.replies["getMe"] = {"ok": False}
        with pytest.raises(RendezvousError, match="Unknown error"):
            await channel.check_identity()

    async def test_garbage_response(self, bot_api):
        api, channel = bot_api
        api.replies["getMe"] = "<html>bad gateway</html>"
        with pytest.raises(RendezvousError, match="Cannot decode JSON"):
            await channel.check_identity()

    async def test_tail(self, bot_api):
        api, channel = bot_api
        api.replies["getUpdates"] = {"ok": True, "result": [update(57)]}
        assert await channel.tail() == 57
        assert api.calls == [("getUpdates", {"offset": -1, "timeout": 0})]

    async def test_tail_of_empty_channel(self, bot_api):
        api, channel = bot_api
        api.replies["getUpdates"] = {"ok": True, "result": []}
        assert await channel.tail() == 0

    async def test_poll(self, bot_api):
        api, channel = bot_api
        api.replies["getUpdates"] = {"ok": True, "result": [
            update(11),
            update(12, chat_id=555),
            update(13, text=None),
            update(14, kind="message"),
        ]}
        entries = await channel.poll(CHAT, 10)

        assert [(e.entry_id, e.scope, e.text) for e in entries] == [
            (11, CHAT, "hi"),
            (12, 555, "hi"),
            (13, CHAT, None),
            (14, None, None),
        ]
        method, payload = api.calls[0]
        assert method == "getUpdates"
        assert payload == {"offset": 11, "timeout": 1, "allowed_updates": ["channel_post"]}

    async def test_poll_drops_already_seen_ids(self, bot_api):
        api, channel = bot_api
        api.replies["getUpdates"] = {"ok": True, "result": [update(9), update(10), update(11)]}
        entries = await channel.poll(CHAT, 10)
        assert [e.entry_id for e in entries] == [11]

    async def test_publish(self, bot_api):
        api, channel = bot_api
        api.replies["sendMessage"] = {"ok": True, "result": {"message_id": 99, "chat": {"id": CHAT}, "text": "x"}}
        assert await channel.publish(CHAT, '{"a": 1}') == 99
        assert api.calls == [("sendMessage", {"chat_id": CHAT, "text": '{"a": 1}'})]

    async def test_unreachable_server(self):
        channel = TelegramChannel(TOKEN, api_url_prefix="http://127.0.0.1:9/bot")
        try:
            with pytest.raises(RendezvousError):
                await channel.check_identity()
        finally:
            await channel.close()
