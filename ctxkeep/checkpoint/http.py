"""Checkpoint store backed by a remote HTTP service.

Endpoints (all JSON, thread ids URL-encoded):

    GET    /threads                                -> {"threads": [...]}
    GET    /threads/{thread_id}/latest             -> {"step": n}            (404: none)
    GET    /threads/{thread_id}/checkpoints        -> {"checkpoints": [...]}
    GET    /threads/{thread_id}/checkpoints/{step} -> checkpoint             (404: none)
    PUT    /threads/{thread_id}/checkpoints/{step} <- checkpoint             (409: conflict)
    DELETE /threads/{thread_id}                                              (404: none)
    DELETE /threads/{thread_id}/checkpoints/{step}

The server is the source of truth for "latest"; it must only move the pointer
forward on PUT.
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import httpx

from ..errors import CheckpointConflictError
from ..utils.serializer import deserialize, serialize
from .base import BaseCheckpointStore
from .types import Checkpoint, OutOfOrderPolicy, RetentionHook

logger = logging.getLogger(__name__)


class HttpCheckpointStore(BaseCheckpointStore):
    """Persists checkpoints through a REST API using ``httpx``.

    Args:
        base_url: Service root, e.g. "https://checkpoints.internal/api"
        api_key: Sent as a bearer token when set
        client: Pre-configured ``httpx.AsyncClient`` (its lifecycle stays with the caller)
        timeout: Request timeout in seconds for the client created here
    """

    write_errors = (httpx.HTTPError,)

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
        out_of_order: OutOfOrderPolicy = "ignore",
        retention_hook: RetentionHook | None = None,
    ):
        super().__init__(out_of_order=out_of_order, retention_hook=retention_hook)
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _thread_url(self, thread_id: str) -> str:
        return f"{self.base_url}/threads/{quote(thread_id, safe='')}"

    async def _get_json(self, url: str) -> Any | None:
        response = await self._client.get(url, headers=self._headers())
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return response.json()

    async def _read(self, thread_id: str, step: int) -> Checkpoint | None:
        data = await self._get_json(f"{self._thread_url(thread_id)}/checkpoints/{step}")
        return deserialize(data, Checkpoint) if data is not None else None

    async def _read_latest_step(self, thread_id: str) -> int | None:
        data = await self._get_json(f"{self._thread_url(thread_id)}/latest")
        if data is None or data.get("step") is None:
            return None
        return int(data["step"])

    async def _write(self, checkpoint: Checkpoint) -> None:
        response = await self._client.put(
            f"{self._thread_url(checkpoint.thread_id)}/checkpoints/{checkpoint.step}",
            json=serialize(checkpoint),
            headers=self._headers(),
        )
        if response.status_code == 409:
            raise CheckpointConflictError(
                "Server rejected checkpoint as conflicting", checkpoint.thread_id, checkpoint.step
            )
        response.raise_for_status()

    async def _list(self, thread_id: str) -> list[Checkpoint]:
        data = await self._get_json(f"{self._thread_url(thread_id)}/checkpoints")
        if not data:
            return []
        checkpoints = [deserialize(item, Checkpoint) for item in data.get("checkpoints", [])]
        return sorted(checkpoints, key=lambda c: c.step)

    async def _threads(self) -> list[str]:
        data = await self._get_json(f"{self.base_url}/threads")
        return list(data.get("threads", [])) if data else []

    async def _delete_thread(self, thread_id: str) -> bool:
        response = await self._client.delete(self._thread_url(thread_id), headers=self._headers())
        if response.status_code == 404:
            return False
        response.raise_for_status()
        return True

    async def _delete_steps(self, thread_id: str, steps: list[int]) -> None:
        for step in steps:
            response = await self._client.delete(
                f"{self._thread_url(thread_id)}/checkpoints/{step}", headers=self._headers()
            )
            if response.status_code != 404:
                response.raise_for_status()

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
