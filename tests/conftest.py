"""Pytest configuration and shared fixtures."""

import asyncio
import os
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock

import pytest

# Keep tests independent of any developer .env / shell settings
os.environ["CLUSTER_URL"] = ""
os.environ["CLUSTER_TOKEN"] = ""
os.environ["PREVIEW_MODE"] = "false"

from card_agents.models import (
    AgentPod,
    ClusterContext,
    PodOwnerReference,
    PodPhase,
    WatchEvent,
    WatchEventType,
)
from card_agents.services.interfaces import HostBridge, PodApi
from card_agents.services.kubernetes.context import PodRuntimeContext


def make_raw_pod(
    name: str = "agent-1",
    uid: str | None = None,
    phase: str | None = "Running",
    card_id: str = "card-1",
    namespace: str = "automation",
    **extra,
) -> dict:
    """Build a raw pod resource as the cluster API returns it."""
    metadata = {
        "name": name,
        "namespace": namespace,
        "uid": uid or f"uid-{name}",
        "labels": {"card-agents/card-id": card_id},
        "creationTimestamp": "2024-05-01T10:00:00Z",
    }
    metadata.update(extra.pop("metadata", {}))
    resource = {
        "metadata": metadata,
        "spec": extra.pop("spec", {"containers": [{"name": "agent"}], "nodeName": "node-a"}),
        "status": extra.pop("status", {"phase": phase, "startTime": "2024-05-01T10:00:05Z"}),
    }
    resource.update(extra)
    return resource


def make_pod(
    name: str = "agent-1",
    phase: PodPhase = PodPhase.RUNNING,
    pod_id: str | None = None,
    card_id: str = "card-1",
    namespace: str = "automation",
    **kwargs,
) -> AgentPod:
    """Build a mapped pod."""
    return AgentPod(
        id=pod_id or f"uid-{name}",
        name=name,
        namespace=namespace,
        card_id=card_id,
        phase=phase,
        containers=kwargs.pop("containers", ["agent"]),
        **kwargs,
    )


class FakePodApi(PodApi):
    """In-memory pod API recording every call."""

    def __init__(self, pods=None, namespace="automation"):
        self.namespace = namespace
        self.pods = list(pods or [])
        self.list_error: Exception | None = None
        self.list_calls: list[dict] = []
        self.watches: list[dict] = []
        self.stream_calls: list[dict] = []
        self.log_chunks: list[bytes] = []
        self.log_error: Exception | None = None
        self.stop_pod = AsyncMock()
        self.close = AsyncMock()

    async def list_pods(self, card_id=None, namespace=None, label_selector=None, field_selector=None):
        self.list_calls.append({"card_id": card_id, "namespace": namespace})
        if self.list_error is not None:
            raise self.list_error
        return list(self.pods)

    def watch_pods(self, handler, **kwargs):
        registration = {"handler": handler, "cancelled": False, **kwargs}
        self.watches.append(registration)

        def cancel():
            registration["cancelled"] = True

        return cancel

    @property
    def active_watches(self) -> list[dict]:
        return [watch for watch in self.watches if not watch["cancelled"]]

    def emit(self, event_type: WatchEventType, pod: AgentPod) -> None:
        for watch in self.active_watches:
            watch["handler"](WatchEvent(type=event_type, pod=pod))

    async def stop_pod(self, pod_name, namespace=None, owner=None):
        # Shadowed per instance by an AsyncMock
        raise NotImplementedError

    @asynccontextmanager
    async def stream_logs(self, pod_name, **kwargs):
        self.stream_calls.append({"pod_name": pod_name, **kwargs})
        if self.log_error is not None:
            raise self.log_error

        async def chunks():
            for chunk in self.log_chunks:
                await asyncio.sleep(0)
                yield chunk

        yield chunks()


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeScheduler:
    """Records timers instead of arming them."""

    def __init__(self):
        self.timers: list[tuple[float, object, MagicMock]] = []

    def __call__(self, delay, callback):
        handle = MagicMock()
        self.timers.append((delay, callback, handle))
        return handle

    @property
    def pending(self) -> list:
        return [timer for timer in self.timers if not timer[2].cancel.called]

    def fire(self) -> None:
        """Run the most recent pending timer."""
        timer = self.pending[-1]
        self.timers.remove(timer)
        timer[1]()


class FakeHost(HostBridge):
    """Host bridge with a settable context and recorded notifications."""

    def __init__(self, context: ClusterContext | None = None, confirm: bool = True):
        self.context = context
        self.confirm = confirm
        self.confirm_messages: list[str] = []
        self.notifications: list[tuple[str, str]] = []

    async def resolve_context(self):
        return self.context

    async def confirm_destructive_action(self, message):
        self.confirm_messages.append(message)
        return self.confirm

    def notify(self, message, severity="info"):
        self.notifications.append((message, severity))


@pytest.fixture
def raw_pod():
    """Factory for raw pod resources."""
    return make_raw_pod


@pytest.fixture
def pod_factory():
    """Factory for mapped pods."""
    return make_pod


@pytest.fixture
def fake_api():
    """In-memory pod API."""
    return FakePodApi()


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def fake_scheduler():
    return FakeScheduler()


@pytest.fixture
def cluster_context():
    """Complete cluster settings for one card."""
    return ClusterContext(
        card_id="card-1",
        namespace="automation",
        cluster_url="https://api.cluster.test:6443",
        token="sha256~token",
    )


@pytest.fixture
def runtime_context_factory():
    """Factory building runtime contexts around a given pod API."""

    def factory(api: PodApi, card_id: str = "card-1", fingerprint: str = "fp-1", namespace: str = "automation"):
        return PodRuntimeContext(
            card_id=card_id,
            namespace=namespace,
            fingerprint=fingerprint,
            client_factory=lambda: api,
        )

    return factory


@pytest.fixture
def job_owner():
    return PodOwnerReference(kind="Job", name="job-x", uid="job-uid")


@pytest.fixture
def make_api():
    """Factory for in-memory pod APIs."""
    return FakePodApi


@pytest.fixture
def make_host():
    """Factory for host bridges."""
    return FakeHost
