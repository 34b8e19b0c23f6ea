"""Data models for agent pods and the events that change them.

These models represent the pods observed on the cluster after they have
been normalized from raw API resources.
"""

from dataclasses import dataclass, field
from enum import Enum


class PodPhase(str, Enum):
    """Lifecycle phase of an agent pod."""

    RUNNING = "Running"
    PENDING = "Pending"
    FAILED = "Failed"
    SUCCEEDED = "Succeeded"
    UNKNOWN = "Unknown"
    TERMINATING = "Terminating"

    @property
    def can_stream_logs(self) -> bool:
        """Whether a container has started, so the log endpoint has something to serve."""
        return self not in (PodPhase.PENDING, PodPhase.UNKNOWN)


class WatchEventType(str, Enum):
    """Type of a watch notification."""

    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"


class ConnectionState(str, Enum):
    """Observable state of a streaming connection."""

    CONNECTING = "connecting"
    STREAMING = "streaming"
    ERROR = "error"


@dataclass
class PodOwnerReference:
    """Controller owning a pod, usually a batch Job."""

    kind: str
    name: str
    uid: str | None = None


@dataclass
class AgentPod:
    """A pod running (or having run) an agent for a card."""

    id: str
    name: str
    namespace: str
    card_id: str
    phase: PodPhase = PodPhase.UNKNOWN
    started_at: str = ""
    # Container execution window, distinct from scheduling time
    runtime_start: str | None = None
    runtime_end: str | None = None
    containers: list[str] = field(default_factory=list)
    last_event: str | None = None
    node_name: str | None = None
    restarts: int = 0
    owner: PodOwnerReference | None = None

    # From metadata.annotations.jobName
    job_name: str | None = None
    display_name: str | None = None

    # From container environment (AGENT, MODEL, PROMPT, AGENT_RULES)
    agent: str | None = None
    model: str | None = None
    prompt: str | None = None
    agent_rules: str | None = None

    @property
    def is_running(self) -> bool:
        return self.phase == PodPhase.RUNNING

    @property
    def primary_container(self) -> str | None:
        """First declared container, the one logs are tailed from."""
        return self.containers[0] if self.containers else None


@dataclass
class WatchEvent:
    """A single pod change delivered by a watch stream."""

    type: WatchEventType
    pod: AgentPod

    @property
    def is_deletion(self) -> bool:
        return self.type == WatchEventType.DELETED


@dataclass
class PodGroup:
    """Pods sharing one phase, sorted by name."""

    phase: PodPhase
    pods: list[AgentPod] = field(default_factory=list)
