"""User-facing pod actions built on the pod API and the host bridge."""

from dataclasses import dataclass

import structlog

from ..config import settings
from ..models import AgentPod
from ..utils.errors import describe_error
from .interfaces import HostBridge, PodApi
from .pod_store import PodStore
from .runtime import PodWatcherRegistry, WatcherStatus

logger = structlog.get_logger(__name__)


def stop_confirmation_message(pod: AgentPod) -> str:
    return (
        f"Stop pod {pod.name} in namespace {pod.namespace}? "
        "This also deletes its backing job when available."
    )


async def stop_pod_with_confirmation(
    api: PodApi,
    host: HostBridge,
    pod: AgentPod,
    store: PodStore | None = None,
) -> bool:
    """Ask the user, then stop the pod and its job.

    When ``store`` is given the pod is removed from it right away and put
    back if stopping fails.

    Returns:
        True if the stop request went through
    """
    if not await host.confirm_destructive_action(stop_confirmation_message(pod)):
        logger.debug("Pod stop declined", pod=pod.name)
        return False

    removed = store.remove(pod.id) if store is not None else None
    try:
        await api.stop_pod(pod.name, namespace=pod.namespace, owner=pod.owner)
    except Exception as e:
        if store is not None and removed is not None:
            store.upsert(removed)
        logger.warning("Failed to stop pod", pod=pod.name, namespace=pod.namespace, error=str(e))
        host.notify(f"Failed to stop {pod.name}: {describe_error(e)}", severity="error")
        return False

    logger.info("Pod stop requested", pod=pod.name, namespace=pod.namespace)
    host.notify(f"Stop requested for {pod.name}", severity="info")
    return True


@dataclass
class RunningBadge:
    """Card badge summarizing running pods."""

    text: str = ""
    color: str | None = None
    title: str | None = None
    refresh: int = 15


async def build_running_badge(registry: PodWatcherRegistry, host: HostBridge) -> RunningBadge:
    """Badge showing how many of the card's pods are running.

    Empty when nothing is configured or running, red when the pods could
    not be loaded.
    """
    refresh = settings.watch.badge_refresh_seconds
    watcher = await registry.ensure_for_host(host)
    if watcher is None:
        return RunningBadge(refresh=refresh)

    try:
        await watcher.ready
    except Exception:
        # Reflected in watcher.status
        pass

    if watcher.status == WatcherStatus.ERROR:
        title = describe_error(watcher.error) if watcher.error else "Unable to reach the cluster pods API"
        return RunningBadge(text="Pods offline", color="red", title=title, refresh=refresh)

    count = watcher.count
    if count <= 0:
        return RunningBadge(refresh=refresh)

    if count == 1:
        return RunningBadge(
            text="1 running pod",
            color="green",
            title="1 pod is Running on this card",
            refresh=refresh,
        )
    return RunningBadge(
        text=f"{count} running pods",
        color="green",
        title=f"{count} pods are Running on this card",
        refresh=refresh,
    )
