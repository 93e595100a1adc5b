import asyncio
import json

import httpx
import pytest

from app.client.api_client import InboxApiClient, send_with_optimistic
from app.client.dedup_cache import DedupCache
from app.client.reconciler import ConversationView


def _api(handler):
    return InboxApiClient("https://inbox.test/", token="tok", transport=httpx.MockTransport(handler))


def _view(api):
    return ConversationView("c1", DedupCache(), api.fetch_recent)


class TestInboxApiClient:
    def test_fetch_recent(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=[{"id": "m1", "conversation_id": "c1"}])

        async def run():
            async with _api(handler) as api:
                return await api.fetch_recent("c1", 20)

        assert asyncio.run(run()) == [{"id": "m1", "conversation_id": "c1"}]
        assert seen[0].url.path == "/conversations/c1/messages"
        assert seen[0].url.params["limit"] == "20"
        assert seen[0].headers["authorization"] == "Bearer tok"

    def test_send_message_omits_empty_fields(self):
        seen = []

        def handler(request):
            seen.append(json.loads(request.content))
            return httpx.Response(200, json={"success": True, "message": {}})

        async def run():
            async with _api(handler) as api:
                await api.send_message("c1", text="oi", client_message_id="c-1")

        asyncio.run(run())
        assert seen == [{"text": "oi", "client_message_id": "c-1"}]


class TestSendWithOptimistic:
    def test_confirmed_send_replaces_optimistic_entry(self):
        def handler(request):
            if request.method == "GET":
                return httpx.Response(200, json=[])
            body = json.loads(request.content)
            return httpx.Response(
                200,
                json={
                    "success": True,
                    "message": {
                        "id": "m9",
                        "conversation_id": "c1",
                        "content": body["text"],
                        "client_message_id": body["client_message_id"],
                        "sender_type": "agent",
                        "direction": "outbound",
                        "status": "sent",
                        "created_at": "2026-01-01T10:00:00Z",
                    },
                },
            )

        async def run():
            async with _api(handler) as api:
                view = _view(api)
                await view.initialize()
                await send_with_optimistic(view, api, "Bom dia")
                return view

        view = asyncio.run(run())
        assert [(m["id"], m["status"]) for m in view.messages] == [("m9", "sent")]

    def test_transport_failure_marks_entry_failed(self):
        def handler(request):
            if request.method == "GET":
                return httpx.Response(200, json=[])
            return httpx.Response(502)

        async def run():
            async with _api(handler) as api:
                view = _view(api)
                await view.initialize()
                with pytest.raises(httpx.HTTPStatusError):
                    await send_with_optimistic(view, api, "Bom dia")
                return view

        view = asyncio.run(run())
        assert view.messages[0]["status"] == "failed"
        assert view.messages[0]["optimistic"] is True
