"""Unit tests for log tailing and scroll-follow state."""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import replace
from unittest.mock import AsyncMock

import pytest

from card_agents.models import ClusterTransportError, PodPhase, WatchEvent, WatchEventType
from card_agents.services.kubernetes.preview import PreviewClusterClient
from card_agents.services.logs import FollowState, LogStreamStatus, PodLogStream
from card_agents.utils.log_lines import strip_log_timestamp


@pytest.fixture
def lines():
    return []


@pytest.fixture
def statuses():
    return []


@pytest.fixture
def make_stream(lines, statuses):
    def factory(api, **kwargs):
        return PodLogStream(api, on_lines=lines.extend, on_status_change=statuses.append, **kwargs)

    return factory


class TestStripTimestamp:
    """Tests for RFC3339 prefix removal."""

    @pytest.mark.parametrize(
        "line,expected",
        [
            ("2024-05-01T10:00:00Z hello", "hello"),
            ("2024-05-01T10:00:00.123456789Z  hello", "hello"),
            ("2024-05-01T10:00:00+02:00 hello", "hello"),
            ("2024-05-01T10:00:00-05:30\thello", "hello"),
            ("  2024-05-01T10:00:00Z hello", "hello"),
            ("hello 2024-05-01T10:00:00Z", "hello 2024-05-01T10:00:00Z"),
            ("2024-05-01 10:00:00 hello", "2024-05-01 10:00:00 hello"),
            ("2024-05-01T10:00:00Z", ""),
            ("", ""),
        ],
    )
    def test_strip(self, line, expected):
        assert strip_log_timestamp(line) == expected

    def test_only_first_timestamp_removed(self):
        assert strip_log_timestamp("2024-05-01T10:00:00Z 2024-05-01T10:00:01Z x") == "2024-05-01T10:00:01Z x"


class TestFollowState:
    """Tests for the scroll-follow state machine."""

    def setup_method(self):
        self.now = 0.0
        self.state = FollowState(grace_seconds=0.15, bottom_threshold=8, clock=lambda: self.now)

    def test_follow_initially(self):
        assert self.state.follow is True

    def test_near_bottom_keeps_following(self):
        assert self.state.on_scroll(scroll_top=992, scroll_height=1500, client_height=500) is True

    def test_user_scroll_up_disables(self):
        assert self.state.on_scroll(scroll_top=400, scroll_height=1500, client_height=500) is False
        assert self.state.follow is False

    def test_returning_to_bottom_does_not_resume(self):
        self.state.on_scroll(400, 1500, 500)

        assert self.state.on_scroll(1000, 1500, 500) is False

    def test_resume_scrolls_once(self):
        calls = []
        self.state.on_scroll(400, 1500, 500)

        self.state.resume(lambda: calls.append("bottom"))

        assert self.state.follow is True
        assert calls == ["bottom"]

    def test_scroll_ignored_during_grace(self):
        """Test the programmatic jump does not immediately disable follow."""
        self.state.on_scroll(400, 1500, 500)
        self.state.resume()

        self.now = 0.1
        assert self.state.on_scroll(400, 1500, 500) is True

        self.now = 0.2
        assert self.state.on_scroll(400, 1500, 500) is False

    def test_reset(self):
        self.state.on_scroll(400, 1500, 500)
        self.state.resume()

        self.state.reset()

        assert self.state.follow is True
        assert not self.state.ignoring_scroll


class TestPodLogStream:
    """Tests for connect-or-wait and line delivery."""

    async def test_running_pod_streams_immediately(self, make_api, make_stream, pod_factory, lines, statuses):
        api = make_api()
        api.log_chunks = [
            b"2024-05-01T10:00:00Z first line\n2024-05-01T10:00:01.5Z sec",
            b"ond line\n\n",
            b"2024-05-01T10:00:02+00:00 tail without newline",
        ]
        stream = make_stream(api, tail_lines=500)

        stream.open(pod_factory("agent-1", PodPhase.RUNNING))
        await stream.wait_closed()

        assert lines == ["first line", "second line", "tail without newline"]
        assert stream.line_count == 3
        assert statuses == [LogStreamStatus.CONNECTING, LogStreamStatus.STREAMING, LogStreamStatus.CLOSED]
        call = api.stream_calls[0]
        assert call["pod_name"] == "agent-1"
        assert call["namespace"] == "automation"
        assert call["container"] == "agent"
        assert call["tail_lines"] == 500
        assert api.watches == []

    async def test_pending_pod_waits_for_running(self, make_api, make_stream, pod_factory, lines):
        """Test the log endpoint is untouched until a MODIFIED event reports Running."""
        api = make_api()
        api.log_chunks = [b"hello\n"]
        stream = make_stream(api)

        stream.open(pod_factory("agent-1", PodPhase.PENDING))
        await asyncio.sleep(0)

        assert api.stream_calls == []
        assert stream.status == LogStreamStatus.IDLE
        watch = api.watches[0]
        assert watch["field_selector"] == "metadata.name=agent-1"
        assert watch["namespace"] == "automation"

        api.emit(WatchEventType.MODIFIED, pod_factory("agent-1", PodPhase.PENDING))
        api.emit(WatchEventType.MODIFIED, pod_factory("other", PodPhase.RUNNING))
        await asyncio.sleep(0)
        assert api.stream_calls == []

        api.emit(WatchEventType.MODIFIED, pod_factory("agent-1", PodPhase.RUNNING))

        assert watch["cancelled"] is True
        await stream.wait_closed()
        assert len(api.stream_calls) == 1
        assert lines == ["hello"]

    async def test_unknown_phase_waits(self, make_api, make_stream, pod_factory):
        api = make_api()
        stream = make_stream(api)

        stream.open(pod_factory("agent-1", PodPhase.UNKNOWN))

        assert len(api.watches) == 1
        stream.cancel()

    @pytest.mark.parametrize("phase", [PodPhase.SUCCEEDED, PodPhase.FAILED, PodPhase.TERMINATING])
    async def test_finished_pods_stream_immediately(self, make_api, make_stream, pod_factory, phase):
        api = make_api()
        stream = make_stream(api)

        stream.open(pod_factory("agent-1", phase))
        await stream.wait_closed()

        assert len(api.stream_calls) == 1

    async def test_stream_error_reported(self, make_api, make_stream, pod_factory, statuses):
        api = make_api()
        api.log_error = ClusterTransportError(400, body="container is waiting")
        stream = make_stream(api)

        stream.open(pod_factory("agent-1"))
        await stream.wait_closed()

        assert stream.status == LogStreamStatus.ERROR
        assert stream.error is api.log_error
        assert statuses[-1] == LogStreamStatus.ERROR

    async def test_phase_watch_error_reported(self, make_api, make_stream, pod_factory):
        api = make_api()
        stream = make_stream(api)
        stream.open(pod_factory("agent-1", PodPhase.PENDING))
        error = RuntimeError("watch failed")

        api.watches[0]["on_error"](error)

        assert stream.status == LogStreamStatus.ERROR
        assert stream.error is error
        stream.cancel()

    async def test_cancel_stops_phase_watch(self, make_api, make_stream, pod_factory):
        api = make_api()
        stream = make_stream(api)
        stream.open(pod_factory("agent-1", PodPhase.PENDING))
        signal = api.watches[0]["signal"]

        stream.cancel()

        assert api.active_watches == []
        assert signal.is_set()
        api.emit(WatchEventType.MODIFIED, pod_factory("agent-1", PodPhase.RUNNING))
        assert api.stream_calls == []

    async def test_cancel_aborts_open_stream(self, make_api, make_stream, pod_factory, statuses):
        """Test cancelling a blocked log read is not reported as an error."""
        started = asyncio.Event()

        @asynccontextmanager
        async def blocking_logs(pod_name, **kwargs):
            async def chunks():
                started.set()
                await asyncio.Event().wait()
                yield b""

            yield chunks()

        api = make_api()
        api.stream_logs = blocking_logs
        stream = make_stream(api)
        stream.open(pod_factory("agent-1"))
        await asyncio.wait_for(started.wait(), timeout=5)

        stream.cancel()
        await stream.wait_closed()

        assert stream.error is None
        assert statuses[-1] == LogStreamStatus.CLOSED
        assert LogStreamStatus.ERROR not in statuses

    async def test_reopen_replaces_previous(self, make_api, make_stream, pod_factory, lines):
        """Test opening another pod tears down the previous stream first."""
        api = make_api()
        api.log_chunks = [b"line\n"]
        stream = make_stream(api)

        stream.open(pod_factory("pending", PodPhase.PENDING))
        first_watch = api.watches[0]
        stream.open(pod_factory("running"))
        await stream.wait_closed()

        assert first_watch["cancelled"] is True
        assert [c["pod_name"] for c in api.stream_calls] == ["running"]
        assert stream.key == "automation-running"
        assert lines == ["line"]

    async def test_open_resets_state(self, make_api, make_stream, pod_factory):
        api = make_api()
        api.log_chunks = [b"a\nb\n"]
        stream = make_stream(api)
        stream.open(pod_factory("one"))
        await stream.wait_closed()
        stream.follow.on_scroll(0, 1000, 100)
        assert stream.follow.follow is False

        api.log_chunks = [b"c\n"]
        stream.open(pod_factory("two"))
        await stream.wait_closed()

        assert stream.line_count == 1
        assert stream.follow.follow is True

    def test_key_without_pod(self, make_api, make_stream):
        assert make_stream(make_api()).key == "logs"

    async def test_synchronous_snapshot_starts_single_stream(self, make_api, make_stream, pod_factory):
        """Test a watch reporting Running before it returns is torn down at once."""
        running = pod_factory("agent-1", PodPhase.RUNNING)

        class SnapshotApi(make_api):
            def watch_pods(self, handler, **kwargs):
                cancel = super().watch_pods(handler, **kwargs)
                handler(WatchEvent(type=WatchEventType.ADDED, pod=running))
                return cancel

        api = SnapshotApi()
        stream = make_stream(api)

        stream.open(pod_factory("agent-1", PodPhase.PENDING))

        assert api.active_watches == []
        api.watches[0]["handler"](WatchEvent(type=WatchEventType.MODIFIED, pod=running))
        await stream.wait_closed()
        assert len(api.stream_calls) == 1

    async def test_stale_pending_pod_against_preview(self, make_stream, pod_factory, lines):
        running = pod_factory("agent-1", PodPhase.RUNNING)
        client = PreviewClusterClient(
            card_id="card-1",
            pods=[running],
            jitter_interval=3600,
            log_line_count=1,
            sleep=AsyncMock(),
        )
        stream = make_stream(client)

        stream.open(replace(running, phase=PodPhase.PENDING))

        assert client._watchers == []
        assert client._jitter_task is None
        await stream.wait_closed()
        assert len(lines) == 1
        assert lines[0].endswith("agent-1: preview log line #1")
