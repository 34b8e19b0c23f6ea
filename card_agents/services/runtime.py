"""Shared pod watchers, one per card.

Badges, the card-back list and the log modal all want the same live view
of a card's pods. The registry hands each of them the same
``RunningPodWatcher`` so only one list call and one watch connection exist
per card, rebuilds it when the cluster settings change or it failed, and
evicts it once nobody has asked for it for a while.
"""

import asyncio
import time
from collections.abc import Callable
from enum import Enum
from typing import Protocol

import structlog

from ..config import settings
from ..models import ClusterContext, ConnectionState, PodGroup, WatchEvent
from ..utils.logging import bind_card
from .interfaces import CancelWatch, HostBridge, PodApi
from .kubernetes.context import PodRuntimeContext, build_preview_context, build_runtime_context
from .kubernetes.preview import PreviewClusterClient
from .pod_store import PodStore

logger = structlog.get_logger(__name__)

WatcherListener = Callable[["RunningPodWatcher"], None]


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


Scheduler = Callable[[float, Callable[[], None]], TimerHandle]


def _loop_scheduler(delay: float, callback: Callable[[], None]) -> TimerHandle:
    return asyncio.get_running_loop().call_later(delay, callback)


class WatcherStatus(str, Enum):
    """Lifecycle status of a shared watcher."""

    INITIALIZING = "initializing"
    READY = "ready"
    ERROR = "error"


class RunningPodWatcher:
    """Live pod view for one card, shared by every consumer of that card.

    ``ready`` is a task that completes once the initial snapshot is loaded
    and raises the list error when bootstrap fails; every consumer awaiting
    it sees that error.
    """

    def __init__(
        self,
        context: PodRuntimeContext,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.card_id = context.card_id
        self.namespace = context.namespace
        self.fingerprint = context.fingerprint

        self.status = WatcherStatus.INITIALIZING
        self.count = 0
        self.total = 0
        self.error: Exception | None = None
        self.connection_state: ConnectionState | None = None
        self.reconnect_attempts = 0
        self.store = PodStore()

        self._clock = clock
        self.last_access = clock()
        self._client: PodApi = context.client_factory()
        self._owns_client = context.owns_client
        self._stop_watch: CancelWatch | None = None
        self._disposed = False
        self._listeners: list[WatcherListener] = []
        self._close_task: asyncio.Task | None = None

        self.ready: asyncio.Task = asyncio.get_running_loop().create_task(self._bootstrap())
        self.ready.add_done_callback(self._observe_ready)

    @property
    def disposed(self) -> bool:
        return self._disposed

    def touch(self) -> None:
        self.last_access = self._clock()

    def groups(self) -> list[PodGroup]:
        return self.store.groups()

    def subscribe(self, listener: WatcherListener) -> Callable[[], None]:
        """Call ``listener`` after every change; returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def dispose(self) -> None:
        """Stop the watch stream (and any pending reconnect wait)."""
        if self._disposed:
            return
        self._disposed = True
        self._listeners.clear()

        if self._stop_watch is not None:
            self._stop_watch()
            self._stop_watch = None

        if self._owns_client:
            self._close_task = asyncio.get_running_loop().create_task(self._client.close())

        logger.debug("Disposed pod watcher", card_id=self.card_id)

    async def wait_closed(self) -> None:
        """Wait for the client release scheduled by :meth:`dispose`."""
        if self._close_task is not None:
            await asyncio.gather(self._close_task, return_exceptions=True)

    async def _bootstrap(self) -> None:
        bind_card(self.card_id)
        try:
            pods = await self._client.list_pods(card_id=self.card_id, namespace=self.namespace)
        except Exception as e:
            self.status = WatcherStatus.ERROR
            self.error = e
            logger.warning("Pod watcher bootstrap failed", card_id=self.card_id, error=str(e))
            self._notify()
            raise

        if self._disposed:
            return

        self.store.reset(pods)
        # Full count only here; events adjust it incrementally
        self.count = sum(1 for pod in pods if pod.is_running)
        self.total = len(self.store)
        self.status = WatcherStatus.READY
        logger.debug("Pod watcher ready", card_id=self.card_id, running=self.count, total=self.total)
        self._notify()

        self._stop_watch = self._client.watch_pods(
            self._apply,
            card_id=self.card_id,
            namespace=self.namespace,
            on_connection_state_change=self._on_connection_state_change,
            on_reconnect=self._on_reconnect,
            on_error=self._on_watch_error,
        )

    def _observe_ready(self, task: asyncio.Task) -> None:
        # Consumers that never await ``ready`` must not cause
        # "exception was never retrieved" warnings
        if not task.cancelled():
            task.exception()

    def _apply(self, event: WatchEvent) -> None:
        if self._disposed:
            return

        self.reconnect_attempts = 0
        previous = self.store.apply(event)
        was_running = 1 if previous is not None and previous.is_running else 0
        is_running = 0 if event.is_deletion else int(event.pod.is_running)
        self.count = max(0, self.count - was_running + is_running)
        self.total = len(self.store)
        self.status = WatcherStatus.READY
        self._notify()

    def _on_connection_state_change(self, state: ConnectionState) -> None:
        self.connection_state = state
        self._notify()

    def _on_reconnect(self, attempt: int) -> None:
        self.reconnect_attempts = attempt
        self._notify()

    def _on_watch_error(self, error: Exception) -> None:
        logger.warning("Pod watch error", card_id=self.card_id, error=str(error))

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception as e:
                logger.error("Pod watcher listener error", card_id=self.card_id, error=str(e))


class PodWatcherRegistry:
    """One live ``RunningPodWatcher`` per card, with stale entry eviction.

    Only touched from the event loop, so no locking is needed.
    """

    def __init__(
        self,
        stale_after: float | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        scheduler: Scheduler | None = None,
        preview_client: PodApi | None = None,
        preview_mode: bool = False,
    ):
        """Initialize the registry.

        Args:
            stale_after: Seconds without access before a watcher is evicted
            clock: Monotonic time source
            scheduler: ``(delay, callback) -> handle`` used for the sweep timer
            preview_client: Serve every card from this client instead of the cluster
            preview_mode: Give each card its own in-memory sample pods
        """
        self.stale_after = settings.watch.watcher_stale_seconds if stale_after is None else stale_after
        self._clock = clock
        self._scheduler = scheduler or _loop_scheduler
        self._preview_client = preview_client
        self._watchers: dict[str, RunningPodWatcher] = {}
        self._timer: TimerHandle | None = None
        self.preview_mode = preview_mode

    @classmethod
    def from_settings(cls, **kwargs) -> "PodWatcherRegistry":
        """Registry configured from the environment, honoring ``preview_mode``."""
        kwargs.setdefault("preview_mode", settings.preview_mode)
        if kwargs["preview_mode"]:
            logger.info("Preview mode enabled, serving sample pods")
        return cls(**kwargs)

    def get(self, card_id: str) -> RunningPodWatcher | None:
        return self._watchers.get(card_id)

    def __len__(self) -> int:
        return len(self._watchers)

    def __contains__(self, card_id: object) -> bool:
        return card_id in self._watchers

    def ensure(self, context: PodRuntimeContext | None) -> RunningPodWatcher | None:
        """Return the card's watcher, creating or replacing it when needed.

        Returns:
            None when ``context`` is None (not configured yet)
        """
        if context is None:
            return None

        watcher = self._watchers.get(context.card_id)
        if (
            watcher is None
            or watcher.fingerprint != context.fingerprint
            or watcher.status == WatcherStatus.ERROR
        ):
            if watcher is not None:
                logger.info(
                    "Replacing pod watcher",
                    card_id=context.card_id,
                    reason="error" if watcher.status == WatcherStatus.ERROR else "settings changed",
                )
                watcher.dispose()
            watcher = RunningPodWatcher(context, clock=self._clock)
            self._watchers[context.card_id] = watcher

        watcher.touch()
        self._schedule_sweep()
        return watcher

    def resolve(self, cluster_context: ClusterContext | None) -> PodRuntimeContext | None:
        """Runtime context for host-supplied cluster settings."""
        if self._preview_client is None and not self.preview_mode:
            return build_runtime_context(cluster_context)

        if cluster_context is None or not cluster_context.card_id:
            return None
        if self._preview_client is not None:
            return build_preview_context(cluster_context.card_id, self._preview_client, cluster_context.namespace)

        # Preview mode: each card owns its sample pods, closed with its watcher
        card_id = cluster_context.card_id
        namespace = cluster_context.namespace or settings.cluster_namespace
        return PodRuntimeContext(
            card_id=card_id,
            namespace=namespace,
            fingerprint=f"preview:{namespace}",
            client_factory=lambda: PreviewClusterClient(card_id=card_id, namespace=namespace),
        )

    async def ensure_for_host(self, host: HostBridge) -> RunningPodWatcher | None:
        """Resolve the host's current settings and ensure a watcher for them."""
        return self.ensure(self.resolve(await host.resolve_context()))

    async def warm(self, host: HostBridge) -> None:
        """Start loading a card's pods ahead of time; failures are only logged."""
        try:
            watcher = await self.ensure_for_host(host)
            if watcher is not None:
                await watcher.ready
        except Exception as e:
            logger.debug("Warming pod watcher failed", error=str(e))

    def dispose(self, card_id: str) -> bool:
        """Dispose and forget a card's watcher."""
        watcher = self._watchers.pop(card_id, None)
        if watcher is None:
            return False
        watcher.dispose()
        if not self._watchers:
            self._cancel_sweep()
        return True

    def sweep(self) -> list[str]:
        """Evict watchers untouched for longer than the staleness window.

        Returns:
            Card ids that were evicted
        """
        now = self._clock()
        evicted = [
            card_id
            for card_id, watcher in self._watchers.items()
            if now - watcher.last_access > self.stale_after
        ]
        for card_id in evicted:
            self._watchers.pop(card_id).dispose()
        if evicted:
            logger.info("Evicted stale pod watchers", card_ids=evicted, remaining=len(self._watchers))
        return evicted

    async def close(self) -> None:
        """Dispose every watcher and stop the sweep timer."""
        self._cancel_sweep()
        watchers = list(self._watchers.values())
        self._watchers.clear()
        for watcher in watchers:
            watcher.dispose()
        for watcher in watchers:
            await watcher.wait_closed()

    def _schedule_sweep(self) -> None:
        if self._timer is not None:
            return
        self._timer = self._scheduler(self.stale_after, self._on_sweep_timer)

    def _cancel_sweep(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_sweep_timer(self) -> None:
        self._timer = None
        self.sweep()
        if self._watchers:
            self._schedule_sweep()
