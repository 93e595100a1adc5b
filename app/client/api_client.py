from typing import Any, Optional

import httpx

from app.logging_config import get_logger

logger = get_logger("client.api")

DEFAULT_TIMEOUT_SECONDS = 30.0


class InboxApiClient:
    """Thin async client for the conversation endpoints used by ConversationView."""

    def __init__(
        self,
        base_url: str,
        *,
        token: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "InboxApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def fetch_recent(self, conversation_id: str, limit: int = 50) -> list[dict]:
        response = await self._client.get(f"/conversations/{conversation_id}/messages", params={"limit": limit})
        response.raise_for_status()
        return response.json()

    async def mark_read(self, conversation_id: str) -> dict:
        response = await self._client.post(f"/conversations/{conversation_id}/read")
        response.raise_for_status()
        return response.json()

    async def send_message(
        self,
        conversation_id: str,
        *,
        text: Optional[str] = None,
        client_message_id: Optional[str] = None,
        media_type: Optional[str] = None,
        file: Optional[str] = None,
    ) -> dict[str, Any]:
        payload = {
            key: value
            for key, value in {
                "text": text,
                "client_message_id": client_message_id,
                "media_type": media_type,
                "file": file,
            }.items()
            if value is not None
        }
        response = await self._client.post(f"/conversations/{conversation_id}/messages", json=payload)
        response.raise_for_status()
        return response.json()


async def send_with_optimistic(view, api: InboxApiClient, text: str) -> dict:
    """Show the message immediately, send it, then reconcile by client_message_id."""
    optimistic = view.add_optimistic(text)
    client_message_id = optimistic["client_message_id"]
    try:
        result = await api.send_message(view.conversation_id, text=text, client_message_id=client_message_id)
    except httpx.HTTPError as e:
        logger.warning(
            "Send failed",
            extra={"context": {"conversation_id": view.conversation_id, "client_message_id": client_message_id, "error": str(e)}},
        )
        view.mark_optimistic_failed(client_message_id)
        raise

    stored = result.get("message") or {}
    view.confirm_sent(stored)
    if not result.get("success"):
        view.mark_optimistic_failed(client_message_id)
    return stored
