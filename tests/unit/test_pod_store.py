"""Unit tests for the local pod store."""

import pytest

from card_agents.models import PodPhase, WatchEvent, WatchEventType
from card_agents.services.pod_store import PodStore, group_pods


class TestPodStore:
    """Tests for reset, upsert and remove."""

    def test_reset_replaces_contents(self, pod_factory):
        store = PodStore([pod_factory("old")])

        store.reset([pod_factory("a"), pod_factory("b")])

        assert sorted(p.name for p in store.pods()) == ["a", "b"]
        assert "uid-old" not in store

    def test_upsert_replaces_same_id(self, pod_factory):
        """Test an id never appears twice."""
        store = PodStore()
        first = pod_factory("a", PodPhase.PENDING)
        second = pod_factory("a", PodPhase.RUNNING)

        assert store.upsert(first) is None
        assert store.upsert(second) is first

        assert len(store) == 1
        assert store.get("uid-a") is second

    def test_remove_absent_is_noop(self, pod_factory):
        store = PodStore([pod_factory("a")])

        assert store.remove("missing") is None
        assert len(store) == 1

    def test_remove_returns_entry(self, pod_factory):
        pod = pod_factory("a")
        store = PodStore([pod])

        assert store.remove(pod.id) is pod
        assert len(store) == 0

    @pytest.mark.parametrize(
        "phases",
        [
            [PodPhase.PENDING, PodPhase.RUNNING, PodPhase.SUCCEEDED],
            [PodPhase.RUNNING, PodPhase.RUNNING],
            [PodPhase.FAILED, PodPhase.UNKNOWN, PodPhase.RUNNING, PodPhase.TERMINATING],
        ],
    )
    def test_replay_keeps_last_payload(self, pod_factory, phases):
        """Test ADDED/MODIFIED sequences leave exactly the last payload."""
        store = PodStore()
        events = [
            WatchEvent(
                type=WatchEventType.ADDED if i == 0 else WatchEventType.MODIFIED,
                pod=pod_factory("a", phase),
            )
            for i, phase in enumerate(phases)
        ]

        for event in events:
            store.apply(event)

        assert len(store) == 1
        assert store.get("uid-a") is events[-1].pod

    def test_added_twice_is_idempotent(self, pod_factory):
        pod = pod_factory("a")
        once = PodStore()
        twice = PodStore()

        once.apply(WatchEvent(WatchEventType.ADDED, pod))
        twice.apply(WatchEvent(WatchEventType.ADDED, pod))
        twice.apply(WatchEvent(WatchEventType.ADDED, pod))

        assert once.pods() == twice.pods()

    def test_deleted_removes(self, pod_factory):
        store = PodStore([pod_factory("a"), pod_factory("b")])

        store.apply(WatchEvent(WatchEventType.DELETED, pod_factory("a")))

        assert "uid-a" not in store
        assert [p.name for p in store.pods()] == ["b"]

    def test_count_by_phase(self, pod_factory):
        store = PodStore([pod_factory("a"), pod_factory("b", PodPhase.FAILED), pod_factory("c")])

        assert store.count(PodPhase.RUNNING) == 2
        assert store.count(PodPhase.PENDING) == 0


class TestGrouping:
    """Tests for phase grouping."""

    def test_groups_in_phase_order_sorted_by_name(self, pod_factory):
        pods = [
            pod_factory("zeta", PodPhase.SUCCEEDED),
            pod_factory("beta", PodPhase.RUNNING),
            pod_factory("alpha", PodPhase.RUNNING),
            pod_factory("gamma", PodPhase.PENDING),
        ]

        groups = group_pods(pods)

        assert [g.phase for g in groups] == [PodPhase.RUNNING, PodPhase.PENDING, PodPhase.SUCCEEDED]
        assert [p.name for p in groups[0].pods] == ["alpha", "beta"]

    def test_groups_reflect_current_contents(self, pod_factory):
        """Test groups are never stale after mutations."""
        store = PodStore([pod_factory("a"), pod_factory("b", PodPhase.PENDING)])
        assert [g.phase for g in store.groups()] == [PodPhase.RUNNING, PodPhase.PENDING]

        store.upsert(pod_factory("a", PodPhase.FAILED))
        store.remove("uid-b")

        groups = store.groups()
        assert [g.phase for g in groups] == [PodPhase.FAILED]
        assert [p.name for p in groups[0].pods] == ["a"]

    def test_empty(self):
        assert group_pods([]) == []
