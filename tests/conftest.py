"""Shared fixtures: config, fake backend transport, fake status channel."""

import json
import os
import sys
from typing import Callable, Optional

import httpx
import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.config import APIConfig, Config, CreditConfig, GenerationConfig, RealtimeConfig
from services.video_generation.client import VideoGenerationClient
from services.video_generation.models import TaskRecord


class FakeSubscription:
    """Stands in for a live status stream."""

    def __init__(self, task_id, on_update, on_error=None):
        self.task_id = task_id
        self.on_update = on_update
        self.on_error = on_error
        self.is_subscribed = bool(task_id)
        self.error = None
        self.closed = False

    def unsubscribe(self):
        self.closed = True
        self.is_subscribed = False

    def get_status(self) -> dict:
        return {
            "task_id": self.task_id or None,
            "is_subscribed": self.is_subscribed,
            "error": str(self.error) if self.error else None,
        }

    def push(self, payload: dict):
        """Deliver a record the way the stream would (nothing after close)."""
        if not self.closed:
            self.on_update(TaskRecord.model_validate(payload))

    def fail(self, error):
        self.error = error
        self.is_subscribed = False
        if self.on_error:
            self.on_error(error)


class FakeChannel:
    def __init__(self):
        self.subscriptions: list[FakeSubscription] = []

    def subscribe(self, task_id, on_update, on_error=None) -> FakeSubscription:
        for sub in self.subscriptions:
            sub.unsubscribe()
        subscription = FakeSubscription(task_id, on_update, on_error)
        self.subscriptions.append(subscription)
        return subscription

    @property
    def last(self) -> Optional[FakeSubscription]:
        return self.subscriptions[-1] if self.subscriptions else None


class FakeBackend:
    """Scripted responses for the backend endpoints, recording every request."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.routes: dict[tuple[str, str], Callable[[httpx.Request], httpx.Response]] = {}

    def on(self, method: str, path: str, status: int = 200, body=None, raw: Optional[bytes] = None):
        def respond(request: httpx.Request) -> httpx.Response:
            if raw is not None:
                return httpx.Response(status, content=raw)
            return httpx.Response(status, json=body)

        self.routes[(method, path)] = respond

    def on_handler(self, method: str, path: str, handler: Callable[[httpx.Request], httpx.Response]):
        self.routes[(method, path)] = handler

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, json={"success": False, "error": "not found"})
        return route(request)

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]

    def json_of(self, request: httpx.Request) -> dict:
        return json.loads(request.content)


TEMPLATE_PATH = "/api/dashscope/emoji-video-generate"
AUDIO_PATH = "/api/dashscope/liveportrait-generate"
BALANCE_PATH = "/api/credits"


def record_path(record_id: str) -> str:
    return f"/api/image-edits/{record_id}"


@pytest.fixture
def config():
    return Config(
        api=APIConfig(base_url="http://backend.test", token="test-token"),
        realtime=RealtimeConfig(base_url="http://realtime.test"),
        credits=CreditConfig(template_driven_cost=3, audio_driven_cost=3),
        generation=GenerationConfig(
            default_template_id="mengwa_kaixin",
            tracking_timeout_seconds=5.0,
            reconcile_interval_seconds=0.05,
        ),
    )


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def client(config, backend):
    http_client = httpx.AsyncClient(
        transport=httpx.MockTransport(backend.handle),
        base_url=config.api.base_url,
    )
    return VideoGenerationClient(config, http_client=http_client)


@pytest.fixture
def channel():
    return FakeChannel()
