import asyncio
from datetime import datetime, timedelta

from app.client.dedup_cache import DedupCache
from app.client.reconciler import (
    ConversationView,
    ViewState,
    content_hash,
    deduplicate_messages,
    message_keys,
    normalize_content,
    parse_timestamp,
)

CONVERSATION_ID = "c1"


def _row(message_id, content="oi", created_at="2026-01-01T10:00:00Z", **fields):
    row = {
        "id": message_id,
        "conversation_id": CONVERSATION_ID,
        "content": content,
        "sender_type": "contact",
        "direction": "inbound",
        "status": "delivered",
        "created_at": created_at,
    }
    row.update(fields)
    return row


def _insert(row):
    return {"type": "INSERT", "new": row}


def _shifted(timestamp: str, seconds: float) -> str:
    return (parse_timestamp(timestamp) + timedelta(seconds=seconds)).isoformat()


def _view(rows=None, **kwargs):
    fetched = list(rows or [])
    calls = []

    async def fetch_recent(conversation_id, limit):
        calls.append((conversation_id, limit))
        return list(fetched)

    view = ConversationView(CONVERSATION_ID, DedupCache(), fetch_recent, **kwargs)
    view.fetch_calls = calls
    return view


class TestHelpers:
    def test_normalize_content(self):
        assert normalize_content("  Bom\n Dia ") == "bomdia"
        assert normalize_content(None) == ""

    def test_keys_priority(self):
        assert message_keys(_row("m1", provider_message_id="W1")) == ["id:m1", "wa:W1"]
        assert message_keys({"content": "oi", "conversation_id": "c1"})[0].startswith("hash:")

    def test_optimistic_rows_have_no_id_key(self):
        keys = message_keys({"id": "temp-1", "optimistic": True, "content": "oi"})
        assert all(not key.startswith("id:") for key in keys)

    def test_content_hash_ignores_whitespace(self):
        assert content_hash(_row(None, content="Bom dia")) == content_hash(_row(None, content=" bom  DIA"))

    def test_deduplicate_messages(self):
        rows = [
            _row("m2", created_at="2026-01-01T10:00:02Z"),
            _row("m1", created_at="2026-01-01T10:00:01Z", provider_message_id="W1"),
            _row("m1", created_at="2026-01-01T10:00:01Z"),
            _row("m3", created_at="2026-01-01T10:00:03Z", provider_message_id="W1"),
        ]
        assert [row["id"] for row in deduplicate_messages(rows)] == ["m1", "m2"]


class TestInitialize:
    def test_fetches_dedupes_and_streams(self):
        view = _view([_row("m2", created_at="2026-01-01T10:00:02Z"), _row("m1"), _row("m1")])

        messages = asyncio.run(view.initialize())

        assert [m["id"] for m in messages] == ["m1", "m2"]
        assert view.state == ViewState.STREAMING
        assert view.cache.is_processed("id:m1")
        assert view.fetch_calls == [(CONVERSATION_ID, 50)]

    def test_events_before_initialize_are_buffered(self):
        view = _view([_row("m1")])

        async def run():
            applied = await view.apply_event(_insert(_row("m2", created_at="2026-01-01T10:00:05Z")))
            await view.initialize()
            return applied

        assert asyncio.run(run()) is False
        assert [m["id"] for m in view.messages] == ["m1", "m2"]

    def test_buffered_duplicate_of_fetched_row_is_dropped(self):
        view = _view([_row("m1")])

        async def run():
            await view.apply_event(_insert(_row("m1")))
            await view.initialize()

        asyncio.run(run())
        assert len(view.messages) == 1

    def test_resync_keeps_unconfirmed_optimistic_messages(self):
        view = _view([_row("m1")])

        async def run():
            await view.initialize()
            view.add_optimistic("enviando")
            await view.initialize()

        asyncio.run(run())
        assert [m["content"] for m in view.messages] == ["oi", "enviando"]

    def test_resync_replaces_optimistic_stored_without_client_id(self):
        rows = []

        async def fetch_recent(conversation_id, limit):
            return list(rows)

        view = ConversationView(CONVERSATION_ID, DedupCache(), fetch_recent)

        async def run():
            await view.initialize()
            optimistic = view.add_optimistic("Bom dia")
            rows.append(
                _row(
                    "m9",
                    content="bom dia",
                    sender_type="agent",
                    direction="outbound",
                    created_at=_shifted(optimistic["created_at"], 1),
                )
            )
            await view.initialize()

        asyncio.run(run())
        assert [m["id"] for m in view.messages] == ["m9"]

    def test_resync_replaces_optimistic_by_client_id(self):
        rows = []

        async def fetch_recent(conversation_id, limit):
            return list(rows)

        view = ConversationView(CONVERSATION_ID, DedupCache(), fetch_recent)

        async def run():
            await view.initialize()
            optimistic = view.add_optimistic("Bom dia", client_message_id="cm-1")
            rows.append(
                _row(
                    "m9",
                    content="Bom dia (editado)",
                    sender_type="agent",
                    direction="outbound",
                    client_message_id="cm-1",
                    created_at=_shifted(optimistic["created_at"], 30),
                )
            )
            await view.initialize()

        asyncio.run(run())
        assert [m["id"] for m in view.messages] == ["m9"]


class TestInsert:
    def test_new_row_is_appended_in_order(self):
        view = _view([_row("m1"), _row("m3", created_at="2026-01-01T10:00:10Z")])

        async def run():
            await view.initialize()
            return await view.apply_event(_insert(_row("m2", created_at="2026-01-01T10:00:05Z")))

        assert asyncio.run(run()) is True
        assert [m["id"] for m in view.messages] == ["m1", "m2", "m3"]

    def test_same_insert_twice_is_applied_once(self):
        view = _view()
        row = _row("m1", provider_message_id="W1")

        async def run():
            await view.initialize()
            return [await view.apply_event(_insert(row)), await view.apply_event(_insert(dict(row)))]

        assert asyncio.run(run()) == [True, False]
        assert len(view.messages) == 1

    def test_same_provider_id_with_new_storage_id_is_dropped(self):
        view = _view([_row("m1", provider_message_id="W1")])

        async def run():
            await view.initialize()
            return await view.apply_event(_insert(_row("m9", provider_message_id="W1")))

        assert asyncio.run(run()) is False
        assert len(view.messages) == 1

    def test_other_conversation_is_ignored(self):
        view = _view()

        async def run():
            await view.initialize()
            return await view.apply_event(_insert(_row("m1", conversation_id="other")))

        assert asyncio.run(run()) is False
        assert view.messages == []

    def test_view_is_updated_before_key_is_marked(self):
        seen = []
        view = _view()
        view.on_change = lambda messages: seen.append(
            ([m["id"] for m in messages], view.cache.is_processed("id:m1"))
        )

        async def run():
            await view.initialize()
            await view.apply_event(_insert(_row("m1")))

        asyncio.run(run())
        assert seen[-1] == (["m1"], False)
        assert view.cache.is_processed("id:m1") is True


class TestOptimistic:
    def test_replaced_by_client_message_id(self):
        view = _view()

        async def run():
            await view.initialize()
            optimistic = view.add_optimistic("Bom dia", client_message_id="c-1")
            server_row = _row(
                "m9",
                content="Bom dia",
                sender_type="agent",
                direction="outbound",
                client_message_id="c-1",
                created_at=_shifted(optimistic["created_at"], 30),
            )
            return await view.apply_event(_insert(server_row))

        assert asyncio.run(run()) is True
        assert len(view.messages) == 1
        assert view.messages[0]["id"] == "m9"
        assert "optimistic" not in view.messages[0]

    def test_replaced_by_content_within_window(self):
        view = _view()

        async def run():
            await view.initialize()
            optimistic = view.add_optimistic("Bom  dia!")
            server_row = _row(
                "m9",
                content="bom dia!",
                sender_type="agent",
                direction="outbound",
                created_at=_shifted(optimistic["created_at"], 1),
            )
            await view.apply_event(_insert(server_row))

        asyncio.run(run())
        assert [m["id"] for m in view.messages] == ["m9"]

    def test_outside_window_is_a_new_message(self):
        view = _view()

        async def run():
            await view.initialize()
            optimistic = view.add_optimistic("Bom dia")
            server_row = _row(
                "m9",
                content="Bom dia",
                sender_type="agent",
                direction="outbound",
                created_at=_shifted(optimistic["created_at"], 10),
            )
            await view.apply_event(_insert(server_row))

        asyncio.run(run())
        assert len(view.messages) == 2

    def test_inbound_row_never_replaces_agent_message(self):
        view = _view()

        async def run():
            await view.initialize()
            optimistic = view.add_optimistic("ok")
            await view.apply_event(_insert(_row("m9", content="ok", created_at=optimistic["created_at"])))

        asyncio.run(run())
        assert len(view.messages) == 2

    def test_mark_failed(self):
        view = _view()
        optimistic = view.add_optimistic("Bom dia", client_message_id="c-1")
        assert view.mark_optimistic_failed("c-1") is True
        assert optimistic["status"] == "failed"
        assert view.mark_optimistic_failed("missing") is False

    def test_confirm_sent_then_realtime_echo(self):
        view = _view()

        async def run():
            await view.initialize()
            view.add_optimistic("Bom dia", client_message_id="c-1")
            stored = _row("m9", content="Bom dia", sender_type="agent", direction="outbound", client_message_id="c-1")
            view.confirm_sent(stored)
            return await view.apply_event(_insert(dict(stored)))

        assert asyncio.run(run()) is False
        assert [m["id"] for m in view.messages] == ["m9"]


class TestUpdate:
    def test_status_update_is_merged(self):
        view = _view([_row("m1", status="sent", updated_at="t1")])

        async def run():
            await view.initialize()
            event = {"type": "UPDATE", "new": _row("m1", status="read", updated_at="t2")}
            return [await view.apply_event(event), await view.apply_event(dict(event))]

        assert asyncio.run(run()) == [True, False]
        assert view.messages[0]["status"] == "read"

    def test_update_for_unknown_row(self):
        view = _view()

        async def run():
            await view.initialize()
            return await view.apply_event({"type": "UPDATE", "new": _row("m404", status="read")})

        assert asyncio.run(run()) is False

    def test_unknown_event_type(self):
        view = _view()

        async def run():
            await view.initialize()
            return await view.apply_event({"type": "DELETE", "old": {"id": "m1"}})

        assert asyncio.run(run()) is False


def test_parse_timestamp_variants():
    assert parse_timestamp("2026-01-01T10:00:00Z").tzinfo is not None
    assert parse_timestamp(datetime(2026, 1, 1)).tzinfo is not None
    assert parse_timestamp("not a date") is None
    assert parse_timestamp(None) is None
