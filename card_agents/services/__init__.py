"""Services module for the card agents runtime."""

from .interfaces import HostBridge, PodApi
from .pod_store import PodStore, group_pods
from .kubernetes import ClusterClient, PodRuntimeContext, PodWatchStream, PreviewClusterClient
from .runtime import PodWatcherRegistry, RunningPodWatcher, WatcherStatus
from .logs import FollowState, LogStreamStatus, PodLogStream
from .actions import RunningBadge, build_running_badge, stop_pod_with_confirmation

__all__ = [
    "HostBridge",
    "PodApi",
    "PodStore",
    "group_pods",
    "ClusterClient",
    "PodRuntimeContext",
    "PodWatchStream",
    "PreviewClusterClient",
    "PodWatcherRegistry",
    "RunningPodWatcher",
    "WatcherStatus",
    "FollowState",
    "LogStreamStatus",
    "PodLogStream",
    "RunningBadge",
    "build_running_badge",
    "stop_pod_with_confirmation",
]
