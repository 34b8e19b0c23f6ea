"""Data models for the card agents runtime."""

from .context import ClusterContext, hash_token
from .errors import (
    CardAgentsException,
    ClusterTransportError,
    ConfigurationError,
    ErrorType,
)
from .pods import (
    AgentPod,
    ConnectionState,
    PodGroup,
    PodOwnerReference,
    PodPhase,
    WatchEvent,
    WatchEventType,
)

__all__ = [
    # Context
    "ClusterContext",
    "hash_token",
    # Pods
    "AgentPod",
    "ConnectionState",
    "PodGroup",
    "PodOwnerReference",
    "PodPhase",
    "WatchEvent",
    "WatchEventType",
    # Errors
    "CardAgentsException",
    "ClusterTransportError",
    "ConfigurationError",
    "ErrorType",
]
