"""Local pod store.

Event-sourced collection of the pods a single watcher has seen, keyed by
pod id. Only the owning watcher writes to it.
"""

from collections.abc import Iterable

from ..models import AgentPod, PodGroup, PodPhase, WatchEvent


def group_pods(pods: Iterable[AgentPod]) -> list[PodGroup]:
    """Group pods by phase, in phase declaration order, sorted by name.

    Phases without pods are left out.
    """
    by_phase: dict[PodPhase, list[AgentPod]] = {}
    for pod in pods:
        by_phase.setdefault(pod.phase, []).append(pod)

    return [
        PodGroup(phase=phase, pods=sorted(by_phase[phase], key=lambda pod: pod.name))
        for phase in PodPhase
        if phase in by_phase
    ]


class PodStore:
    """Pods keyed by id; upsert replaces, remove is a no-op for unknown ids."""

    def __init__(self, pods: Iterable[AgentPod] = ()):
        self._pods: dict[str, AgentPod] = {}
        self.reset(pods)

    def reset(self, pods: Iterable[AgentPod]) -> None:
        self._pods = {pod.id: pod for pod in pods}

    def upsert(self, pod: AgentPod) -> AgentPod | None:
        """Insert or replace a pod, returning the entry it replaced."""
        previous = self._pods.pop(pod.id, None)
        self._pods[pod.id] = pod
        return previous

    def remove(self, pod_id: str) -> AgentPod | None:
        """Remove a pod, returning it if it was present."""
        return self._pods.pop(pod_id, None)

    def apply(self, event: WatchEvent) -> AgentPod | None:
        """Apply a watch event; ADDED and MODIFIED are both upserts.

        Returns:
            The entry the event replaced or removed, if any
        """
        if event.is_deletion:
            return self.remove(event.pod.id)
        return self.upsert(event.pod)

    def get(self, pod_id: str) -> AgentPod | None:
        return self._pods.get(pod_id)

    def pods(self) -> list[AgentPod]:
        return list(self._pods.values())

    def groups(self) -> list[PodGroup]:
        return group_pods(self._pods.values())

    def count(self, phase: PodPhase) -> int:
        return sum(1 for pod in self._pods.values() if pod.phase == phase)

    def __len__(self) -> int:
        return len(self._pods)

    def __contains__(self, pod_id: object) -> bool:
        return pod_id in self._pods
