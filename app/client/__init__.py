from app.client.api_client import InboxApiClient, send_with_optimistic
from app.client.dedup_cache import DedupCache
from app.client.realtime import RealtimeSubscription
from app.client.reconciler import ConversationView, ViewState, deduplicate_messages, message_keys
from app.client.snapshot_store import JsonFileSnapshotStore, MemorySnapshotStore, RedisSnapshotStore

__all__ = [
    "ConversationView",
    "DedupCache",
    "InboxApiClient",
    "JsonFileSnapshotStore",
    "MemorySnapshotStore",
    "RealtimeSubscription",
    "RedisSnapshotStore",
    "ViewState",
    "deduplicate_messages",
    "message_keys",
    "send_with_optimistic",
]
