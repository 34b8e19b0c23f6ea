"""Service interfaces for the card agents runtime."""

# Standard library imports
import asyncio
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager

# Local application imports
from ..models import AgentPod, ClusterContext, ConnectionState, PodOwnerReference, WatchEvent

WatchHandler = Callable[[WatchEvent], None]
CancelWatch = Callable[[], None]
ConnectionStateHandler = Callable[[ConnectionState], None]
ReconnectHandler = Callable[[int], None]
ErrorHandler = Callable[[Exception], None]


class PodApi(ABC):
    """Interface for listing, watching, stopping and tailing agent pods."""

    namespace: str

    @abstractmethod
    async def list_pods(
        self,
        card_id: str | None = None,
        namespace: str | None = None,
        label_selector: str | None = None,
        field_selector: str | None = None,
    ) -> list[AgentPod]:
        """List the pods of a card (or matching the given selectors)."""
        pass

    @abstractmethod
    def watch_pods(
        self,
        handler: WatchHandler,
        *,
        card_id: str | None = None,
        namespace: str | None = None,
        field_selector: str | None = None,
        signal: asyncio.Event | None = None,
        on_connection_state_change: ConnectionStateHandler | None = None,
        on_reconnect: ReconnectHandler | None = None,
        on_error: ErrorHandler | None = None,
        backoff_ms: int | None = None,
    ) -> CancelWatch:
        """Start delivering pod changes to ``handler``; returns a cancel function."""
        pass

    @abstractmethod
    async def stop_pod(
        self,
        pod_name: str,
        namespace: str | None = None,
        owner: PodOwnerReference | None = None,
    ) -> None:
        """Stop a pod together with the job controlling it."""
        pass

    @abstractmethod
    def stream_logs(
        self,
        pod_name: str,
        *,
        namespace: str | None = None,
        container: str | None = None,
        signal: asyncio.Event | None = None,
        tail_lines: int | None = None,
        since_seconds: int | None = None,
        limit_bytes: int | None = None,
    ) -> AbstractAsyncContextManager[AsyncIterator[bytes]]:
        """Open a follow-mode log tail yielding raw byte chunks."""
        pass

    async def close(self) -> None:
        """Release connections held by the client."""
        return None


class HostBridge(ABC):
    """Interface to the embedding UI (Trello Power-Up host)."""

    @abstractmethod
    async def resolve_context(self) -> ClusterContext | None:
        """Current card and cluster connection settings, or None when unset."""
        pass

    @abstractmethod
    async def confirm_destructive_action(self, message: str) -> bool:
        """Ask the user to confirm an irreversible action."""
        pass

    @abstractmethod
    def notify(self, message: str, severity: str = "info") -> None:
        """Show a fire-and-forget notification."""
        pass
