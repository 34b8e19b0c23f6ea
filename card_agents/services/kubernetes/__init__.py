"""Cluster-facing services.

This module provides the REST client, the reconnecting pod watch and the
resource mapper used by everything that talks to the cluster.
"""

from .client import ClusterClient
from .context import (
    PodRuntimeContext,
    build_preview_context,
    build_runtime_context,
    context_from_settings,
    load_kube_context,
)
from .mapper import map_pod
from .preview import PreviewClusterClient
from .watch import PodWatchStream, compute_backoff_delay

__all__ = [
    "ClusterClient",
    "PreviewClusterClient",
    "PodRuntimeContext",
    "PodWatchStream",
    "build_preview_context",
    "build_runtime_context",
    "compute_backoff_delay",
    "context_from_settings",
    "load_kube_context",
    "map_pod",
]
