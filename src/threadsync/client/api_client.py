"""
Async HTTP client for the threadsync API.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Optional

import httpx

from threadsync.client.models import (
    GenerationEvent,
    MessageData,
    ShareData,
    SharedThreadData,
    ThreadData,
    TrailingDeleteResult,
)
from threadsync.client.retry import RetryConfig, check_response, with_async_retry

logger = logging.getLogger(__name__)


@dataclass
class ClientConfig:
    """Configuration for the API client."""

    base_url: str
    token: Optional[str] = None
    timeout: float = 30.0
    retry_config: RetryConfig = field(default_factory=RetryConfig)


async def parse_sse(lines: AsyncIterator[str]) -> AsyncIterator[GenerationEvent]:
    """
    Parse a server-sent event stream into GenerationEvents.

    Frames are separated by blank lines; ``data`` lines within one frame are
    joined with newlines before JSON decoding.
    """
    event_name: Optional[str] = None
    data_lines: list[str] = []

    async for line in lines:
        line = line.rstrip("\r")
        if not line:
            if event_name is not None or data_lines:
                payload = json.loads("\n".join(data_lines)) if data_lines else {}
                yield GenerationEvent(event=event_name or "message", data=payload)
            event_name, data_lines = None, []
            continue
        if line.startswith(":"):
            continue
        name, _, value = line.partition(":")
        value = value[1:] if value.startswith(" ") else value
        if name == "event":
            event_name = value
        elif name == "data":
            data_lines.append(value)

    if event_name is not None or data_lines:
        payload = json.loads("\n".join(data_lines)) if data_lines else {}
        yield GenerationEvent(event=event_name or "message", data=payload)


class ApiClient:
    """
    Asynchronous HTTP client for the threadsync REST API.

    Reads are retried on transient failures; mutations are sent once.

    Usage:
        async with ApiClient("http://localhost:8000", token=jwt) as api:
            threads = await api.list_threads()
            async for event in api.generate(threads[0].id, "Hello"):
                ...
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 30.0,
        retry_config: Optional[RetryConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the API client.

        Args:
            base_url: Base URL of the threadsync server
            token: Bearer token for private endpoints
            timeout: Request timeout in seconds
            retry_config: Retry configuration for reads
            transport: Optional httpx transport (tests)
        """
        self.config = ClientConfig(
            base_url=base_url.rstrip("/"),
            token=token,
            timeout=timeout,
            retry_config=retry_config or RetryConfig(),
        )
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._client = httpx.AsyncClient(
            base_url=self.config.base_url,
            timeout=timeout,
            headers=headers,
            transport=transport,
        )
        self._get = with_async_retry(self.config.retry_config)(self._send)

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    async def _send(
        self, method: str, path: str, json: Optional[dict[str, Any]] = None
    ) -> httpx.Response:
        response = await self._client.request(method, path, json=json)
        check_response(response, self.config.retry_config)
        return response

    # ===== Threads =====

    async def list_threads(self) -> list[ThreadData]:
        response = await self._get("GET", "/threads")
        return [ThreadData.model_validate(t) for t in response.json()]

    async def get_thread(self, thread_id: str) -> ThreadData:
        response = await self._get("GET", f"/threads/{thread_id}")
        return ThreadData.model_validate(response.json())

    async def create_thread(
        self, title: Optional[str] = None, visibility: str = "private"
    ) -> ThreadData:
        response = await self._send(
            "POST", "/threads", json={"title": title, "visibility": visibility}
        )
        return ThreadData.model_validate(response.json())

    async def delete_thread(self, thread_id: str) -> None:
        await self._send("DELETE", f"/threads/{thread_id}")

    async def set_visibility(self, thread_id: str, visibility: str) -> ThreadData:
        response = await self._send(
            "PUT", f"/threads/{thread_id}/visibility", json={"visibility": visibility}
        )
        return ThreadData.model_validate(response.json())

    async def branch_thread(
        self,
        thread_id: str,
        anchor_message_id: str,
        new_thread_id: Optional[str] = None,
    ) -> ThreadData:
        response = await self._send(
            "POST",
            f"/threads/{thread_id}/branch",
            json={
                "anchor_message_id": anchor_message_id,
                "new_thread_id": new_thread_id,
            },
        )
        return ThreadData.model_validate(response.json())

    async def generate_title(self, thread_id: str, user_query: str) -> ThreadData:
        response = await self._send(
            "POST",
            f"/threads/{thread_id}/generate-title",
            json={"user_query": user_query},
        )
        return ThreadData.model_validate(response.json())

    # ===== Messages =====

    async def list_messages(self, thread_id: str) -> list[MessageData]:
        response = await self._get("GET", f"/threads/{thread_id}/messages")
        return [MessageData.model_validate(m) for m in response.json()]

    async def post_message(
        self,
        thread_id: str,
        role: str,
        content: Optional[str] = None,
        parts: Optional[list[Any]] = None,
        model: Optional[str] = None,
        status: Optional[str] = None,
        annotations: Optional[list[dict[str, Any]]] = None,
    ) -> MessageData:
        payload: dict[str, Any] = {"role": role, "content": content, "parts": parts or []}
        if model is not None:
            payload["model"] = model
        if status is not None:
            payload["status"] = status
        if annotations is not None:
            payload["annotations"] = annotations
        response = await self._send(
            "POST", f"/threads/{thread_id}/messages", json=payload
        )
        return MessageData.model_validate(response.json())

    async def update_message(self, message_id: str, **fields: Any) -> MessageData:
        """Partially update a message (content, parts, status, error_message)."""
        payload = {k: v for k, v in fields.items() if v is not None}
        response = await self._send("PUT", f"/messages/{message_id}", json=payload)
        return MessageData.model_validate(response.json())

    async def delete_message(self, message_id: str) -> None:
        await self._send("DELETE", f"/messages/{message_id}")

    async def delete_trailing(
        self, message_id: str, inclusive: bool = False
    ) -> TrailingDeleteResult:
        suffix = "delete-inclusive-trailing" if inclusive else "delete-trailing"
        response = await self._send("POST", f"/messages/{message_id}/{suffix}")
        return TrailingDeleteResult.model_validate(response.json())

    # ===== Generation =====

    async def generate(
        self,
        thread_id: str,
        content: Optional[str] = None,
        parts: Optional[list[Any]] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> AsyncIterator[GenerationEvent]:
        """Post a user message and stream the assistant reply as events."""
        payload = {
            "content": content,
            "parts": parts or [],
            "model": model,
            "stream": True,
            "timeout": timeout,
        }
        async with self._client.stream(
            "POST", f"/threads/{thread_id}/generate", json=payload
        ) as response:
            if not response.is_success:
                await response.aread()
                check_response(response, self.config.retry_config)
            async for event in parse_sse(response.aiter_lines()):
                yield event

    async def generate_once(
        self,
        thread_id: str,
        content: Optional[str] = None,
        parts: Optional[list[Any]] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> MessageData:
        """Post a user message and wait for the complete assistant reply."""
        response = await self._send(
            "POST",
            f"/threads/{thread_id}/generate",
            json={
                "content": content,
                "parts": parts or [],
                "model": model,
                "stream": False,
                "timeout": timeout,
            },
        )
        return MessageData.model_validate(response.json())

    async def stop_generation(self, thread_id: str) -> bool:
        response = await self._send("POST", f"/threads/{thread_id}/generate/stop")
        return bool(response.json().get("stopped"))

    # ===== Shares =====

    async def create_share(
        self,
        thread_id: str,
        shared_up_to_message_id: str,
        token: Optional[str] = None,
    ) -> ShareData:
        response = await self._send(
            "POST",
            "/shares",
            json={
                "thread_id": thread_id,
                "shared_up_to_message_id": shared_up_to_message_id,
                "token": token,
            },
        )
        return ShareData.model_validate(response.json())

    async def list_shares(self) -> list[ShareData]:
        response = await self._get("GET", "/shares")
        return [ShareData.model_validate(s) for s in response.json()]

    async def delete_share(self, token: str) -> None:
        await self._send("DELETE", f"/shares/{token}")

    async def get_shared_thread(self, token: str) -> SharedThreadData:
        response = await self._get("GET", f"/shares/{token}/data")
        return SharedThreadData.model_validate(response.json())

    async def health(self) -> dict[str, Any]:
        response = await self._client.get("/health")
        return response.json()
