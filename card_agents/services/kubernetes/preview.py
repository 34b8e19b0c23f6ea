"""In-memory pod API used for previews and demos."""

import asyncio
import random
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from copy import deepcopy
from dataclasses import dataclass, replace
from datetime import UTC, datetime, timedelta

import structlog

from ...models import AgentPod, ConnectionState, PodOwnerReference, PodPhase, WatchEvent, WatchEventType
from ..interfaces import (
    CancelWatch,
    ConnectionStateHandler,
    ErrorHandler,
    PodApi,
    ReconnectHandler,
    WatchHandler,
)

logger = structlog.get_logger(__name__)

JITTER_INTERVAL_SECONDS = 4.0
LOG_LINE_INTERVAL_SECONDS = 0.25
LOG_LINE_COUNT = 40
JITTER_PHASES = (PodPhase.RUNNING, PodPhase.PENDING, PodPhase.SUCCEEDED, PodPhase.FAILED)

# id, name, phase, minutes since start, last event, restarts
_PREVIEW_PODS = (
    ("preview-running-1", "card-agent-running-1", PodPhase.RUNNING, 5, "Probe success", 0),
    ("preview-running-2", "card-agent-running-2", PodPhase.RUNNING, 8, "Streaming logs", 1),
    ("preview-pending-1", "card-agent-pending-1", PodPhase.PENDING, 2, "Pulling image", 0),
    ("preview-succeeded-1", "card-agent-completed-1", PodPhase.SUCCEEDED, 15, "Completed successfully", 0),
    ("preview-succeeded-2", "card-agent-completed-2", PodPhase.SUCCEEDED, 20, "Job finished", 1),
    ("preview-failed-1", "card-agent-failed-1", PodPhase.FAILED, 12, "Error: exit code 1", 2),
    ("preview-failed-2", "card-agent-failed-2", PodPhase.FAILED, 18, "CrashLoopBackOff", 0),
)


def create_preview_pods(card_id: str, namespace: str) -> list[AgentPod]:
    """Sample pods covering every common phase."""
    now = datetime.now(UTC)
    pods = []
    for index, (pod_id, name, phase, minutes, last_event, restarts) in enumerate(_PREVIEW_PODS):
        pods.append(
            AgentPod(
                id=pod_id,
                name=name,
                namespace=namespace,
                card_id=card_id,
                phase=phase,
                started_at=(now - timedelta(minutes=minutes)).isoformat(),
                containers=["agent"],
                last_event=last_event,
                node_name=f"automation-node-{chr(ord('a') + index)}",
                restarts=restarts,
                display_name=name,
            )
        )
    return pods


@dataclass
class _Registration:
    handler: WatchHandler
    card_id: str | None


class PreviewClusterClient(PodApi):
    """Pod API serving a fixed set of sample pods.

    Watches receive the current pods as ADDED events right away, then a
    random phase change every few seconds while any watch is open.
    """

    def __init__(
        self,
        card_id: str = "PREVIEW",
        namespace: str = "automation",
        *,
        pods: list[AgentPod] | None = None,
        jitter_interval: float = JITTER_INTERVAL_SECONDS,
        log_interval: float = LOG_LINE_INTERVAL_SECONDS,
        log_line_count: int = LOG_LINE_COUNT,
        rng: random.Random | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.card_id = card_id
        self.namespace = namespace
        self.jitter_interval = jitter_interval
        self.log_interval = log_interval
        self.log_line_count = log_line_count

        self._pods = list(pods) if pods is not None else create_preview_pods(card_id, namespace)
        self._watchers: list[_Registration] = []
        self._jitter_task: asyncio.Task | None = None
        self._rng = rng or random.Random()
        self._sleep = sleep

    @property
    def pods(self) -> list[AgentPod]:
        return [deepcopy(pod) for pod in self._pods]

    async def list_pods(
        self,
        card_id: str | None = None,
        namespace: str | None = None,
        label_selector: str | None = None,
        field_selector: str | None = None,
    ) -> list[AgentPod]:
        target = card_id or self.card_id
        return [deepcopy(pod) for pod in self._pods if not target or pod.card_id == target]

    def watch_pods(
        self,
        handler: WatchHandler,
        *,
        card_id: str | None = None,
        namespace: str | None = None,
        field_selector: str | None = None,
        signal: asyncio.Event | None = None,
        on_connection_state_change: ConnectionStateHandler | None = None,
        on_reconnect: ReconnectHandler | None = None,
        on_error: ErrorHandler | None = None,
        backoff_ms: int | None = None,
    ) -> CancelWatch:
        registration = _Registration(handler=handler, card_id=card_id or self.card_id)
        self._watchers.append(registration)
        if on_connection_state_change is not None:
            on_connection_state_change(ConnectionState.STREAMING)

        for pod in self._pods:
            if not registration.card_id or pod.card_id == registration.card_id:
                handler(WatchEvent(type=WatchEventType.ADDED, pod=deepcopy(pod)))
        self._start_jitter()

        def cancel() -> None:
            if registration in self._watchers:
                self._watchers.remove(registration)
            self._stop_jitter()

        return cancel

    async def stop_pod(
        self,
        pod_name: str,
        namespace: str | None = None,
        owner: PodOwnerReference | None = None,
    ) -> None:
        for index, pod in enumerate(self._pods):
            if pod.name == pod_name:
                removed = self._pods.pop(index)
                self._emit(WatchEvent(type=WatchEventType.DELETED, pod=deepcopy(removed)))
                return

    @asynccontextmanager
    async def stream_logs(
        self,
        pod_name: str,
        *,
        namespace: str | None = None,
        container: str | None = None,
        signal: asyncio.Event | None = None,
        tail_lines: int | None = None,
        since_seconds: int | None = None,
        limit_bytes: int | None = None,
    ) -> AsyncIterator[AsyncIterator[bytes]]:
        async def lines() -> AsyncIterator[bytes]:
            for count in range(1, self.log_line_count + 1):
                await self._sleep(self.log_interval)
                if signal is not None and signal.is_set():
                    return
                timestamp = datetime.now(UTC).isoformat()
                yield f"[{timestamp}] {pod_name}: preview log line #{count}\n".encode()

        yield lines()

    async def close(self) -> None:
        self._watchers.clear()
        self._stop_jitter()

    def jitter(self) -> None:
        """Move one random pod to a random phase."""
        if not self._pods:
            return
        index = self._rng.randrange(len(self._pods))
        pod = replace(
            self._pods[index],
            phase=self._rng.choice(JITTER_PHASES),
            last_event=f"Heartbeat {datetime.now(UTC).strftime('%H:%M:%S')}",
        )
        self._pods[index] = pod
        self._emit(WatchEvent(type=WatchEventType.MODIFIED, pod=deepcopy(pod)))

    def _emit(self, event: WatchEvent) -> None:
        for registration in list(self._watchers):
            if registration.card_id and event.pod.card_id != registration.card_id:
                continue
            registration.handler(event)

    def _start_jitter(self) -> None:
        if self._jitter_task is not None or not self._watchers:
            return
        try:
            self._jitter_task = asyncio.get_running_loop().create_task(self._jitter_loop())
        except RuntimeError:
            logger.debug("No running event loop, preview jitter disabled")

    def _stop_jitter(self) -> None:
        if self._watchers or self._jitter_task is None:
            return
        self._jitter_task.cancel()
        self._jitter_task = None

    async def _jitter_loop(self) -> None:
        while True:
            await self._sleep(self.jitter_interval)
            self.jitter()
