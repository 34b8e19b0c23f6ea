"""Resilient pod watch stream.

Owns one long-lived chunked watch connection at a time, decodes the
newline-delimited JSON events it carries and reconnects with exponential
backoff whenever the connection fails or ends. Only cancellation stops it.
"""

import asyncio
import json
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import AbstractAsyncContextManager

import structlog

from ...models import ConnectionState, WatchEvent, WatchEventType
from ...utils.streams import iter_lines, iter_until_signal, wait_or_signal
from ..interfaces import (
    CancelWatch,
    ConnectionStateHandler,
    ErrorHandler,
    ReconnectHandler,
    WatchHandler,
)
from .mapper import map_pod

logger = structlog.get_logger(__name__)

DEFAULT_BACKOFF_MS = 750
MAX_BACKOFF_MS = 30000

WatchConnector = Callable[[], AbstractAsyncContextManager[AsyncIterator[bytes]]]


def compute_backoff_delay(
    attempt: int,
    base_ms: int = DEFAULT_BACKOFF_MS,
    max_ms: int = MAX_BACKOFF_MS,
) -> int:
    """Delay in milliseconds before reconnect ``attempt`` (1-based)."""
    if attempt < 1:
        return 0
    return min(max_ms, base_ms * 2 ** (attempt - 1))


class PodWatchStream:
    """Reconnecting consumer of a pod watch endpoint.

    Use :meth:`events` as an async iterator, or :meth:`start` to feed a
    handler from a background task and get a cancel function back.
    """

    def __init__(
        self,
        connector: WatchConnector,
        *,
        namespace: str = "",
        card_id: str | None = None,
        card_label_key: str | None = None,
        signal: asyncio.Event | None = None,
        on_connection_state_change: ConnectionStateHandler | None = None,
        on_reconnect: ReconnectHandler | None = None,
        on_error: ErrorHandler | None = None,
        backoff_ms: int = DEFAULT_BACKOFF_MS,
        max_backoff_ms: int = MAX_BACKOFF_MS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize the watch stream.

        Args:
            connector: Opens one watch connection yielding raw body chunks
            namespace: Namespace assumed for decoded pods
            card_id: Card id assumed for decoded pods
            card_label_key: Label holding the card id
            signal: External abort signal; setting it stops the stream
            on_connection_state_change: Called with connecting/streaming/error
            on_reconnect: Called with the attempt number before each retry wait
            on_error: Called once per failed connection attempt
            backoff_ms: Base reconnect delay
            max_backoff_ms: Reconnect delay ceiling
            sleep: Awaitable sleep, replaceable in tests
        """
        self._connector = connector
        self.namespace = namespace
        self.card_id = card_id
        self.card_label_key = card_label_key
        self.backoff_ms = backoff_ms
        self.max_backoff_ms = max_backoff_ms

        self._signal = signal
        self._on_connection_state_change = on_connection_state_change
        self._on_reconnect = on_reconnect
        self._on_error = on_error
        self._sleep = sleep

        self.state: ConnectionState | None = None
        self.reconnect_attempts = 0
        self._cancelled = False
        self._task: asyncio.Task | None = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled or (self._signal is not None and self._signal.is_set())

    def start(self, handler: WatchHandler) -> CancelWatch:
        """Deliver events to ``handler`` from a background task.

        Returns:
            Function that cancels the stream; safe to call more than once.
        """
        if self._task is not None:
            raise RuntimeError("Pod watch stream already started")
        self._task = asyncio.create_task(self._run(handler))
        return self.cancel

    def cancel(self) -> None:
        """Stop the stream, its open connection and any pending retry wait."""
        if self._cancelled:
            return
        self._cancelled = True
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def wait_closed(self) -> None:
        """Wait for the background task started by :meth:`start` to finish."""
        if self._task is None:
            return
        await asyncio.gather(self._task, return_exceptions=True)

    async def _run(self, handler: WatchHandler) -> None:
        async for event in self.events():
            try:
                handler(event)
            except Exception as e:
                logger.error(
                    "Pod watch handler error",
                    event_type=event.type.value,
                    pod=event.pod.name,
                    error=str(e),
                )

    async def events(self) -> AsyncIterator[WatchEvent]:
        """Yield pod events in wire order, reconnecting until cancelled."""
        attempt = 0
        while not self.cancelled:
            self._set_state(ConnectionState.CONNECTING)
            try:
                async with self._connector() as chunks:
                    self._set_state(ConnectionState.STREAMING)
                    async for line in iter_lines(iter_until_signal(chunks, self._signal)):
                        if self.cancelled:
                            return
                        event = self._decode(line)
                        if event is None:
                            continue
                        # Backoff restarts only once the connection delivered something
                        attempt = 0
                        self.reconnect_attempts = 0
                        yield event
                logger.debug("Pod watch stream ended", namespace=self.namespace, card_id=self.card_id)
            except Exception as e:
                if self.cancelled:
                    return
                self._set_state(ConnectionState.ERROR)
                logger.warning(
                    "Pod watch connection failed",
                    namespace=self.namespace,
                    card_id=self.card_id,
                    error=str(e),
                )
                self._call(self._on_error, e)

            if self.cancelled:
                return

            attempt += 1
            self.reconnect_attempts = attempt
            self._call(self._on_reconnect, attempt)
            delay_ms = compute_backoff_delay(attempt, self.backoff_ms, self.max_backoff_ms)
            logger.debug("Reconnecting pod watch", attempt=attempt, delay_ms=delay_ms)
            if await wait_or_signal(delay_ms / 1000, self._signal, self._sleep):
                return

    def _decode(self, line: str) -> WatchEvent | None:
        line = line.strip()
        if not line:
            return None

        try:
            envelope = json.loads(line)
        except ValueError as e:
            logger.warning("Skipping malformed watch line", error=str(e), line=line[:200])
            return None

        if not isinstance(envelope, dict):
            logger.warning("Skipping malformed watch line", line=line[:200])
            return None

        raw_type = envelope.get("type")
        if raw_type == "ERROR":
            status = envelope.get("object") if isinstance(envelope.get("object"), dict) else {}
            logger.warning(
                "Pod watch reported an error",
                code=status.get("code"),
                reason=status.get("reason"),
                message=status.get("message"),
            )
            return None

        try:
            event_type = WatchEventType(raw_type)
        except ValueError:
            logger.debug("Ignoring watch event", event_type=raw_type)
            return None

        resource = envelope.get("object")
        if not isinstance(resource, dict):
            logger.warning("Skipping watch event without object", event_type=raw_type)
            return None

        pod = map_pod(
            resource,
            namespace=self.namespace,
            card_id=self.card_id or "",
            card_label_key=self.card_label_key,
        )
        return WatchEvent(type=event_type, pod=pod)

    def _set_state(self, state: ConnectionState) -> None:
        self.state = state
        self._call(self._on_connection_state_change, state)

    def _call(self, callback, *args) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as e:
            logger.error(
                "Pod watch callback error",
                callback=getattr(callback, "__name__", repr(callback)),
                error=str(e),
            )
