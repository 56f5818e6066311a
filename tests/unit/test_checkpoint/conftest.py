"""Fixtures for checkpoint store tests."""

import json
from urllib.parse import unquote

import httpx
import pytest


class FakeCheckpointServer:
    """In-memory implementation of the checkpoint REST API for httpx.MockTransport."""

    def __init__(self):
        self.data: dict[str, dict[int, dict]] = {}
        self.latest: dict[str, int] = {}
        self.requests: list[httpx.Request] = []
        self.fail_with: int | None = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_with is not None:
            return httpx.Response(self.fail_with, json={"error": "unavailable"})

        path = request.url.raw_path.decode().split("?", 1)[0]
        parts = [unquote(p) for p in path.removeprefix("/api/").split("/")]
        method = request.method

        if parts == ["threads"] and method == "GET":
            return httpx.Response(200, json={"threads": list(self.latest)})

        thread_id = parts[1]
        if len(parts) == 2 and method == "DELETE":
            if thread_id not in self.latest:
                return httpx.Response(404)
            self.data.pop(thread_id, None)
            self.latest.pop(thread_id, None)
            return httpx.Response(204)

        if parts[2] == "latest":
            if thread_id not in self.latest:
                return httpx.Response(404)
            return httpx.Response(200, json={"step": self.latest[thread_id]})

        steps = self.data.get(thread_id, {})
        if len(parts) == 3:
            return httpx.Response(200, json={"checkpoints": [steps[s] for s in sorted(steps)]})

        step = int(parts[3])
        if method == "GET":
            if step not in steps:
                return httpx.Response(404)
            return httpx.Response(200, json=steps[step])
        if method == "DELETE":
            steps.pop(step, None)
            return httpx.Response(204)

        payload = json.loads(request.content)
        existing = steps.get(step)
        if existing is not None and _content(existing) != _content(payload):
            return httpx.Response(409, json={"error": "conflict"})
        self.data.setdefault(thread_id, {})[step] = payload
        self.latest[thread_id] = max(step, self.latest.get(thread_id, step))
        return httpx.Response(200, json={"ok": True})


def _content(payload: dict) -> dict:
    return {k: v for k, v in payload.items() if k != "created_at"}


@pytest.fixture
def checkpoint_server():
    return FakeCheckpointServer()


@pytest.fixture
def http_client(checkpoint_server):
    return httpx.AsyncClient(transport=httpx.MockTransport(checkpoint_server.handler))


@pytest.fixture
def base_url():
    return "http://checkpoints.test/api"
