"""Per-pod log tailing.

A ``PodLogStream`` backs one open log view. Pods that have not started a
container yet cannot serve logs, so for those it first watches the single
pod until its phase moves on and only then connects to the log endpoint.
"""

import asyncio
import time
from collections.abc import Callable
from enum import Enum

import structlog

from ..config import settings
from ..models import AgentPod, WatchEvent
from ..utils.log_lines import strip_log_timestamp
from ..utils.logging import bind_card
from ..utils.streams import LineDecoder
from .interfaces import CancelWatch, PodApi

logger = structlog.get_logger(__name__)

LinesHandler = Callable[[list[str]], None]
StatusHandler = Callable[["LogStreamStatus"], None]


class LogStreamStatus(str, Enum):
    """Observable state of a log view."""

    IDLE = "idle"
    CONNECTING = "connecting"
    STREAMING = "streaming"
    ERROR = "error"
    CLOSED = "closed"


class FollowState:
    """Whether a log view sticks to the newest line.

    A user scrolling away from the bottom turns following off. Resuming turns
    it back on and scrolls to the bottom programmatically; scroll
    notifications caused by that jump are ignored for a short grace window.
    """

    def __init__(
        self,
        grace_seconds: float | None = None,
        bottom_threshold: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        watch = settings.watch
        self.grace_seconds = watch.log_follow_grace_ms / 1000 if grace_seconds is None else grace_seconds
        self.bottom_threshold = watch.log_follow_bottom_threshold if bottom_threshold is None else bottom_threshold
        self._clock = clock
        self.follow = True
        self._ignore_until: float | None = None

    @property
    def ignoring_scroll(self) -> bool:
        return self._ignore_until is not None and self._clock() < self._ignore_until

    def on_scroll(self, scroll_top: float, scroll_height: float, client_height: float) -> bool:
        """Record a scroll position; returns the resulting follow flag."""
        if self.ignoring_scroll:
            return self.follow

        distance_from_bottom = scroll_height - scroll_top - client_height
        if self.follow and distance_from_bottom > self.bottom_threshold:
            self.follow = False
        return self.follow

    def resume(self, scroll_to_bottom: Callable[[], None] | None = None) -> None:
        self._ignore_until = self._clock() + self.grace_seconds
        self.follow = True
        if scroll_to_bottom is not None:
            scroll_to_bottom()

    def reset(self) -> None:
        self.follow = True
        self._ignore_until = None


class PodLogStream:
    """Log tail for one pod at a time.

    Opening another pod (or cancelling) tears down the current log request
    and phase watch first, so at most one stream is ever active.
    """

    def __init__(
        self,
        client: PodApi,
        *,
        on_lines: LinesHandler,
        on_status_change: StatusHandler | None = None,
        tail_lines: int | None = None,
        follow: FollowState | None = None,
    ):
        """Initialize the log stream.

        Args:
            client: Pod API used for the phase watch and the log request
            on_lines: Receives each batch of complete lines, in order
            on_status_change: Receives every status transition
            tail_lines: Lines of history to request
            follow: Scroll-follow state shared with the view
        """
        self.client = client
        self.tail_lines = settings.watch.log_tail_lines if tail_lines is None else tail_lines
        self.follow = follow or FollowState()

        self._on_lines = on_lines
        self._on_status_change = on_status_change

        self.pod: AgentPod | None = None
        self.status = LogStreamStatus.IDLE
        self.error: Exception | None = None
        self.line_count = 0

        self._signal: asyncio.Event | None = None
        self._stop_watch: CancelWatch | None = None
        self._task: asyncio.Task | None = None

    @property
    def key(self) -> str:
        """Identity of the current view, changes with the pod."""
        return f"{self.pod.namespace}-{self.pod.name}" if self.pod else "logs"

    @property
    def active(self) -> bool:
        return self._stop_watch is not None or (self._task is not None and not self._task.done())

    def open(self, pod: AgentPod) -> "PodLogStream":
        """Start tailing ``pod``, replacing whatever was open before."""
        self.cancel()

        self.pod = pod
        self.line_count = 0
        self.error = None
        self.follow.reset()
        signal = self._signal = asyncio.Event()

        if pod.phase.can_stream_logs:
            self._start_streaming(pod, signal)
            return self

        logger.debug("Waiting for pod to start before tailing logs", pod=pod.name, phase=pod.phase.value)
        self._set_status(LogStreamStatus.IDLE)

        # Set once the tail starts; the watch may report a streamable phase
        # before watch_pods() has even returned
        started = False

        def on_event(event: WatchEvent) -> None:
            nonlocal started
            if started or signal.is_set() or event.pod.name != pod.name:
                return
            if event.pod.phase.can_stream_logs:
                started = True
                self._stop_phase_watch()
                self._start_streaming(pod, signal)

        def on_error(error: Exception) -> None:
            if signal.is_set():
                return
            self.error = error
            self._set_status(LogStreamStatus.ERROR)

        stop_watch = self.client.watch_pods(
            on_event,
            namespace=pod.namespace,
            field_selector=f"metadata.name={pod.name}",
            signal=signal,
            on_error=on_error,
        )
        if started:
            stop_watch()
        else:
            self._stop_watch = stop_watch
        return self

    def cancel(self) -> None:
        """Abort the log request and the phase watch, if any."""
        was_active = self.active
        if self._signal is not None:
            self._signal.set()
        self._stop_phase_watch()
        if self._task is not None and not self._task.done():
            self._task.cancel()
        if was_active:
            self._set_status(LogStreamStatus.CLOSED)

    async def wait_closed(self) -> None:
        """Wait for the current log request to finish."""
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)

    def _stop_phase_watch(self) -> None:
        if self._stop_watch is not None:
            self._stop_watch()
            self._stop_watch = None

    def _start_streaming(self, pod: AgentPod, signal: asyncio.Event) -> None:
        self._task = asyncio.get_running_loop().create_task(self._stream(pod, signal))

    async def _stream(self, pod: AgentPod, signal: asyncio.Event) -> None:
        bind_card(pod.card_id, pod=pod.name)
        self._set_status(LogStreamStatus.CONNECTING)
        decoder = LineDecoder()
        try:
            async with self.client.stream_logs(
                pod.name,
                namespace=pod.namespace,
                container=pod.primary_container,
                signal=signal,
                tail_lines=self.tail_lines,
            ) as chunks:
                self._set_status(LogStreamStatus.STREAMING)
                async for chunk in chunks:
                    if signal.is_set():
                        return
                    self._deliver(decoder.feed(chunk))
            self._deliver(decoder.flush())
        except Exception as e:
            if signal.is_set():
                return
            self.error = e
            self._set_status(LogStreamStatus.ERROR)
            logger.warning("Log stream failed", pod=pod.name, namespace=pod.namespace, error=str(e))
            return

        if not signal.is_set():
            logger.debug("Log stream ended", pod=pod.name, lines=self.line_count)
            self._set_status(LogStreamStatus.CLOSED)

    def _deliver(self, lines: list[str]) -> None:
        lines = [strip_log_timestamp(line) for line in lines if line]
        if not lines:
            return
        self.line_count += len(lines)
        self._on_lines(lines)

    def _set_status(self, status: LogStreamStatus) -> None:
        if status == self.status:
            return
        self.status = status
        if self._on_status_change is not None:
            self._on_status_change(status)
