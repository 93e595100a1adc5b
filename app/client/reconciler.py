"""Client-side view of one conversation, converging fetched rows, realtime deltas
and optimistic local sends into a single ordered message list.

Duplicate detection uses three keys in priority order: storage id, provider
message id, then a composite of normalized content, timestamp, sender type and
conversation. A row is added to the dedup cache only after it was applied to
the view.
"""

import re
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from app.client.dedup_cache import DedupCache
from app.logging_config import get_logger

logger = get_logger("client.reconciler")

DUPLICATE_WINDOW_MS = 3000
DEFAULT_FETCH_LIMIT = 50
TEMP_ID_PREFIX = "temp-"

EVENT_INSERT = "INSERT"
EVENT_UPDATE = "UPDATE"

FetchRecent = Callable[[str, int], Awaitable[list[dict]]]


class ViewState(str, Enum):
    INIT = "init"
    STREAMING = "streaming"


def normalize_content(content: Any) -> str:
    return re.sub(r"\s", "", str(content or "")).lower()


def parse_timestamp(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _provider_id(message: dict) -> Optional[str]:
    return message.get("provider_message_id") or message.get("wa_message_id")


def _is_optimistic(message: dict) -> bool:
    return bool(message.get("optimistic")) or str(message.get("id") or "").startswith(TEMP_ID_PREFIX)


def content_hash(message: dict) -> str:
    return "_".join(
        [
            normalize_content(message.get("content")),
            str(message.get("created_at") or ""),
            str(message.get("sender_type") or ""),
            str(message.get("conversation_id") or ""),
        ]
    )


def message_keys(message: dict) -> list[str]:
    """Dedup keys in priority order. Optimistic rows have no storage id yet."""
    keys = []
    if message.get("id") and not _is_optimistic(message):
        keys.append(f"id:{message['id']}")
    if _provider_id(message):
        keys.append(f"wa:{_provider_id(message)}")
    if not keys:
        keys.append(f"hash:{content_hash(message)}")
    return keys


def update_key(message: dict) -> str:
    """Key for an UPDATE delta: the same row can legitimately change status several times."""
    return f"upd:{message.get('id')}:{message.get('status')}:{message.get('updated_at')}"


def _sort_key(message: dict):
    return parse_timestamp(message.get("created_at")) or datetime.max.replace(tzinfo=timezone.utc)


def deduplicate_messages(messages: list[dict]) -> list[dict]:
    """Keep the first row per storage id, then per provider id, then per content hash; sort by created_at."""
    seen_ids: set = set()
    seen_provider_ids: set = set()
    seen_hashes: set = set()
    result: list[dict] = []
    for message in messages:
        message_id = message.get("id")
        provider_id = _provider_id(message)
        if message_id and message_id in seen_ids:
            continue
        if provider_id and provider_id in seen_provider_ids:
            continue
        digest = content_hash(message)
        if not message_id and not provider_id and digest in seen_hashes:
            continue
        if message_id:
            seen_ids.add(message_id)
        if provider_id:
            seen_provider_ids.add(provider_id)
        seen_hashes.add(digest)
        result.append(message)
    return sorted(result, key=_sort_key)


def _same_direction(a: dict, b: dict) -> bool:
    if not a.get("direction") or not b.get("direction"):
        return True
    return a["direction"] == b["direction"]


def within_window(a: dict, b: dict, window_ms: int = DUPLICATE_WINDOW_MS) -> bool:
    first = parse_timestamp(a.get("created_at"))
    second = parse_timestamp(b.get("created_at"))
    if first is None or second is None:
        return False
    return abs((first - second).total_seconds() * 1000) < window_ms


class ConversationView:
    """Live message list for one conversation.

    ``INIT``: waiting for the first fetch; realtime events are buffered.
    ``STREAMING``: events are applied as they arrive.
    """

    def __init__(
        self,
        conversation_id: str,
        cache: DedupCache,
        fetch_recent: FetchRecent,
        *,
        limit: int = DEFAULT_FETCH_LIMIT,
        duplicate_window_ms: int = DUPLICATE_WINDOW_MS,
        on_change: Optional[Callable[[list[dict]], None]] = None,
    ):
        self.conversation_id = str(conversation_id)
        self.cache = cache
        self.fetch_recent = fetch_recent
        self.limit = limit
        self.duplicate_window_ms = duplicate_window_ms
        self.on_change = on_change
        self.state = ViewState.INIT
        self.messages: list[dict] = []
        self._buffered: list[dict] = []

    def _notify(self) -> None:
        if self.on_change:
            self.on_change(list(self.messages))

    def _mark(self, keys: list[str]) -> None:
        for key in keys:
            self.cache.mark_processed(key)

    async def initialize(self) -> list[dict]:
        """Fetch the latest rows, dedupe, mark them seen, then start streaming.

        Also used to resync after a reconnect: unresolved optimistic entries survive.
        """
        self.state = ViewState.INIT
        fetched = deduplicate_messages(await self.fetch_recent(self.conversation_id, self.limit))
        # Optimistic entries the server already stored are dropped with the same
        # matching rules a realtime INSERT uses.
        self.messages = [m for m in self.messages if _is_optimistic(m)]
        for row in fetched:
            index = self._find_optimistic_match(row)
            if index is not None:
                del self.messages[index]
        self.messages = sorted(fetched + self.messages, key=_sort_key)
        for message in fetched:
            self._mark(message_keys(message))
        await self.cache.flush()
        self.state = ViewState.STREAMING
        self._notify()

        buffered, self._buffered = self._buffered, []
        for event in buffered:
            await self.apply_event(event)
        return self.messages

    def add_optimistic(
        self,
        content: str,
        *,
        sender_type: str = "agent",
        direction: str = "outbound",
        client_message_id: Optional[str] = None,
        message_type: str = "text",
    ) -> dict:
        """Append a locally-created message before the server confirms it."""
        message = {
            "id": f"{TEMP_ID_PREFIX}{uuid.uuid4().hex}",
            "client_message_id": client_message_id or str(uuid.uuid4()),
            "conversation_id": self.conversation_id,
            "content": content,
            "sender_type": sender_type,
            "direction": direction,
            "message_type": message_type,
            "status": "pending",
            "created_at": datetime.now(timezone.utc).isoformat(),
            "optimistic": True,
        }
        self.messages.append(message)
        self._notify()
        return message

    def mark_optimistic_failed(self, client_message_id: str) -> bool:
        for message in self.messages:
            if _is_optimistic(message) and message.get("client_message_id") == client_message_id:
                message["status"] = "failed"
                self._notify()
                return True
        return False

    def _find_index(self, predicate: Callable[[dict], bool]) -> Optional[int]:
        for index, message in enumerate(self.messages):
            if predicate(message):
                return index
        return None

    def _find_optimistic_match(self, row: dict) -> Optional[int]:
        client_id = row.get("client_message_id")
        if client_id:
            index = self._find_index(lambda m: _is_optimistic(m) and m.get("client_message_id") == client_id)
            if index is not None:
                return index

        normalized = normalize_content(row.get("content"))

        def matches(m: dict) -> bool:
            return (
                _is_optimistic(m)
                and m.get("sender_type") == row.get("sender_type")
                and _same_direction(m, row)
                and normalize_content(m.get("content")) == normalized
                and within_window(m, row, self.duplicate_window_ms)
            )

        return self._find_index(matches)

    def _already_in_view(self, row: dict) -> bool:
        provider_id = _provider_id(row)
        return (
            self._find_index(
                lambda m: (row.get("id") and m.get("id") == row.get("id"))
                or (provider_id and _provider_id(m) == provider_id)
            )
            is not None
        )

    async def apply_event(self, event: dict) -> bool:
        """Apply one realtime delta ``{"type": "INSERT"|"UPDATE", "new": {...}}``. Returns True if the view changed."""
        if self.state != ViewState.STREAMING:
            self._buffered.append(event)
            return False

        row = event.get("new") or event.get("record") or {}
        if str(row.get("conversation_id") or self.conversation_id) != self.conversation_id:
            return False

        event_type = str(event.get("type") or event.get("eventType") or "").upper()
        if event_type == EVENT_INSERT:
            changed = self._apply_insert(row)
        elif event_type == EVENT_UPDATE:
            changed = self._apply_update(row)
        else:
            logger.debug("Ignoring realtime event", extra={"context": {"type": event_type}})
            return False

        if changed:
            await self.cache.maybe_flush()
        return changed

    def _apply_insert(self, row: dict) -> bool:
        keys = message_keys(row)
        if any(self.cache.is_processed(key) for key in keys):
            return False
        if self._already_in_view(row):
            self._mark(keys)
            return False

        index = self._find_optimistic_match(row)
        if index is not None:
            self.messages[index] = row
        else:
            self.messages.append(row)
            self.messages.sort(key=_sort_key)
        self._notify()
        self._mark(keys)
        return True

    def _apply_update(self, row: dict) -> bool:
        key = update_key(row)
        if self.cache.is_processed(key):
            return False
        index = self._find_index(lambda m: m.get("id") == row.get("id"))
        if index is None:
            index = self._find_optimistic_match(row) if row.get("client_message_id") else None
        if index is None:
            return False
        merged = {**self.messages[index], **row}
        merged.pop("optimistic", None)
        self.messages[index] = merged
        self._notify()
        self.cache.mark_processed(key)
        return True

    def confirm_sent(self, row: dict) -> bool:
        """Reconcile the server's response to a local send, same as the matching INSERT delta."""
        return self._apply_insert(row)
