"""Cluster API client.

Thin HTTP layer over the Kubernetes/OpenShift REST API: builds the pod,
log and job URLs, injects the bearer token, and turns every failure into a
ClusterTransportError. Watch streams and log tails are built on top of it.
"""

import asyncio
import ssl
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from urllib.parse import quote, urlencode

import httpx
import structlog

from ...config import settings
from ...models import AgentPod, ClusterContext, ClusterTransportError, PodOwnerReference
from ...utils.streams import iter_until_signal
from ..interfaces import (
    CancelWatch,
    ConnectionStateHandler,
    ErrorHandler,
    PodApi,
    ReconnectHandler,
    WatchHandler,
)
from .mapper import map_pod
from .watch import PodWatchStream

logger = structlog.get_logger(__name__)

JSON_ACCEPT = "application/json"
# Some clusters reject the log endpoint with 406 when asked for text/plain only
LOG_ACCEPT = "*/*"

JOB_NAME_LABELS = ("job-name", "batch.kubernetes.io/job-name")


class ClusterClient(PodApi):
    """Pod API backed by a real cluster.

    Stateless across calls apart from the fixed base URL, namespace, token
    and TLS trust configuration.
    """

    def __init__(
        self,
        base_url: str,
        namespace: str,
        token: str | None = None,
        ca_bundle: str | None = None,
        ignore_ssl: bool = False,
        *,
        card_label_key: str | None = None,
        backoff_ms: int | None = None,
        max_backoff_ms: int | None = None,
        stop_pod_delay: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize the client.

        Args:
            base_url: API server URL
            namespace: Default namespace for all calls
            token: Bearer token
            ca_bundle: PEM CA bundle to trust instead of the system store
            ignore_ssl: Disable TLS verification
            card_label_key: Label tying pods to cards
            backoff_ms: Base reconnect delay for watches
            max_backoff_ms: Reconnect delay ceiling for watches
            stop_pod_delay: Seconds between deleting a job and its pod
            transport: Custom httpx transport (tests, proxies)
            sleep: Awaitable sleep, replaceable in tests
        """
        self.base_url = base_url.rstrip("/")
        self.namespace = namespace
        self.token = token
        self.ca_bundle = ca_bundle
        self.ignore_ssl = ignore_ssl
        self.card_label_key = card_label_key or settings.card_label_key
        watch = settings.watch
        self.backoff_ms = backoff_ms or watch.backoff_ms
        self.max_backoff_ms = max_backoff_ms or watch.backoff_max_ms
        self.stop_pod_delay = watch.stop_pod_delay_seconds if stop_pod_delay is None else stop_pod_delay

        self._transport = transport
        self._sleep = sleep
        self._http_client: httpx.AsyncClient | None = None

    @classmethod
    def from_context(cls, context: ClusterContext, **kwargs) -> "ClusterClient":
        """Create a client for a resolved card context."""
        return cls(
            base_url=context.cluster_url,
            namespace=context.namespace,
            token=context.token,
            ca_bundle=context.ca_bundle,
            ignore_ssl=context.ignore_ssl,
            **kwargs,
        )

    def _verify(self) -> ssl.SSLContext | bool:
        if self.ignore_ssl:
            return False
        if self.ca_bundle:
            return ssl.create_default_context(cadata=self.ca_bundle)
        return True

    def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                verify=self._verify(),
                # Watches and log tails stay open indefinitely
                timeout=httpx.Timeout(10.0, read=None),
                transport=self._transport,
            )
        return self._http_client

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    def _headers(self, accept: str = JSON_ACCEPT) -> dict[str, str]:
        headers = {"Accept": accept}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    # ------------------------------------------------------------------
    # URL building
    # ------------------------------------------------------------------

    def _namespace_path(self, namespace: str | None, api: str = "/api/v1") -> str:
        return f"{self.base_url}{api}/namespaces/{quote(namespace or self.namespace, safe='')}"

    def _label_selector(self, card_id: str | None, label_selector: str | None) -> str | None:
        parts = []
        if card_id:
            parts.append(f"{self.card_label_key}={card_id}")
        if label_selector:
            parts.append(label_selector)
        return ",".join(parts) or None

    def build_list_url(
        self,
        card_id: str | None = None,
        namespace: str | None = None,
        label_selector: str | None = None,
        field_selector: str | None = None,
        watch: bool = False,
    ) -> str:
        """URL listing (or watching) the pods of a card."""
        params = {}
        selector = self._label_selector(card_id, label_selector)
        if selector:
            params["labelSelector"] = selector
        if field_selector:
            params["fieldSelector"] = field_selector
        if watch:
            params["watch"] = "true"
        url = f"{self._namespace_path(namespace)}/pods"
        return f"{url}?{urlencode(params)}" if params else url

    def build_watch_url(
        self,
        card_id: str | None = None,
        namespace: str | None = None,
        label_selector: str | None = None,
        field_selector: str | None = None,
    ) -> str:
        """URL of the pod watch stream."""
        return self.build_list_url(card_id, namespace, label_selector, field_selector, watch=True)

    def build_log_url(
        self,
        pod_name: str,
        namespace: str | None = None,
        container: str | None = None,
        tail_lines: int | None = None,
        since_seconds: int | None = None,
        limit_bytes: int | None = None,
    ) -> str:
        """URL of a follow-mode, timestamped log tail."""
        params = {"follow": "true", "timestamps": "true"}
        if container:
            params["container"] = container
        if tail_lines is not None:
            params["tailLines"] = str(tail_lines)
        if since_seconds is not None:
            params["sinceSeconds"] = str(since_seconds)
        if limit_bytes is not None:
            params["limitBytes"] = str(limit_bytes)
        return f"{self.build_pod_url(pod_name, namespace)}/log?{urlencode(params)}"

    def build_pod_url(self, pod_name: str, namespace: str | None = None) -> str:
        """URL of a single pod."""
        return f"{self._namespace_path(namespace)}/pods/{quote(pod_name, safe='')}"

    def build_job_url(self, job_name: str, namespace: str | None = None) -> str:
        """URL of a single batch job."""
        return f"{self._namespace_path(namespace, api='/apis/batch/v1')}/jobs/{quote(job_name, safe='')}"

    # ------------------------------------------------------------------
    # Request execution
    # ------------------------------------------------------------------

    async def _request(self, method: str, url: str, params: dict | None = None) -> httpx.Response:
        client = self._get_http_client()
        try:
            response = await client.request(method, url, params=params, headers=self._headers())
        except httpx.TransportError as e:
            logger.warning("Cluster request failed", method=method, url=url, error=str(e))
            raise ClusterTransportError(0, body=str(e)) from e

        if not response.is_success:
            raise ClusterTransportError(response.status_code, body=response.text)
        return response

    @asynccontextmanager
    async def _open_stream(self, url: str, accept: str = JSON_ACCEPT) -> AsyncIterator[httpx.Response]:
        client = self._get_http_client()
        try:
            async with client.stream("GET", url, headers=self._headers(accept)) as response:
                if not response.is_success:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    raise ClusterTransportError(response.status_code, body=body)
                yield response
        except httpx.TransportError as e:
            raise ClusterTransportError(0, body=str(e)) from e

    @staticmethod
    def _json(response: httpx.Response) -> dict:
        try:
            payload = response.json()
        except ValueError as e:
            raise ClusterTransportError(
                response.status_code,
                body=response.text,
                message="Cluster API returned invalid JSON",
            ) from e
        return payload if isinstance(payload, dict) else {}

    # ------------------------------------------------------------------
    # Pod API
    # ------------------------------------------------------------------

    async def list_pods(
        self,
        card_id: str | None = None,
        namespace: str | None = None,
        label_selector: str | None = None,
        field_selector: str | None = None,
    ) -> list[AgentPod]:
        """List pods for a card."""
        url = self.build_list_url(card_id, namespace, label_selector, field_selector)
        response = await self._request("GET", url)
        items = self._json(response).get("items")
        pods = [
            map_pod(
                item,
                namespace=namespace or self.namespace,
                card_id=card_id or "",
                card_label_key=self.card_label_key,
            )
            for item in (items if isinstance(items, list) else [])
        ]
        logger.debug("Listed pods", card_id=card_id, namespace=namespace or self.namespace, count=len(pods))
        return pods

    def open_watch(
        self,
        *,
        card_id: str | None = None,
        namespace: str | None = None,
        field_selector: str | None = None,
        signal: asyncio.Event | None = None,
        on_connection_state_change: ConnectionStateHandler | None = None,
        on_reconnect: ReconnectHandler | None = None,
        on_error: ErrorHandler | None = None,
        backoff_ms: int | None = None,
    ) -> PodWatchStream:
        """Create a reconnecting watch stream without starting it."""
        url = self.build_watch_url(card_id, namespace, field_selector=field_selector)

        @asynccontextmanager
        async def connect() -> AsyncIterator[AsyncIterator[bytes]]:
            async with self._open_stream(url) as response:
                yield response.aiter_bytes()

        return PodWatchStream(
            connect,
            namespace=namespace or self.namespace,
            card_id=card_id,
            card_label_key=self.card_label_key,
            signal=signal,
            on_connection_state_change=on_connection_state_change,
            on_reconnect=on_reconnect,
            on_error=on_error,
            backoff_ms=backoff_ms or self.backoff_ms,
            max_backoff_ms=self.max_backoff_ms,
            sleep=self._sleep,
        )

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
        """Watch pods and feed events to ``handler`` until cancelled."""
        stream = self.open_watch(
            card_id=card_id,
            namespace=namespace,
            field_selector=field_selector,
            signal=signal,
            on_connection_state_change=on_connection_state_change,
            on_reconnect=on_reconnect,
            on_error=on_error,
            backoff_ms=backoff_ms,
        )
        return stream.start(handler)

    @asynccontextmanager
    async def stream_logs(
        self,
        pod_name: str,
        *,
        namespace: str | None = None,
        container: str | None = None,
        signal: asyncio.Event | None = None,
        tail_lines: int | None = None,
        since_seconds: int | None = None,
        limit_bytes: int | None = None,
    ) -> AsyncIterator[AsyncIterator[bytes]]:
        """Open a log tail; the context yields raw byte chunks."""
        url = self.build_log_url(pod_name, namespace, container, tail_lines, since_seconds, limit_bytes)
        async with self._open_stream(url, accept=LOG_ACCEPT) as response:
            logger.debug("Log stream opened", pod=pod_name, container=container)
            yield iter_until_signal(response.aiter_bytes(), signal)

    async def read_pod(self, pod_name: str, namespace: str | None = None) -> dict:
        """Fetch the raw pod resource."""
        response = await self._request("GET", self.build_pod_url(pod_name, namespace))
        return self._json(response)

    async def _resolve_job_name(
        self,
        pod_name: str,
        namespace: str,
        owner: PodOwnerReference | None,
    ) -> str | None:
        if owner is not None and owner.kind == "Job" and owner.name:
            return owner.name

        try:
            resource = await self.read_pod(pod_name, namespace)
        except ClusterTransportError as e:
            if e.is_gone:
                return None
            raise

        metadata = resource.get("metadata") if isinstance(resource.get("metadata"), dict) else {}
        for ref in metadata.get("ownerReferences") or []:
            if isinstance(ref, dict) and ref.get("kind") == "Job" and ref.get("name"):
                return ref["name"]

        labels = metadata.get("labels") if isinstance(metadata.get("labels"), dict) else {}
        for key in JOB_NAME_LABELS:
            if labels.get(key):
                return labels[key]
        return None

    async def stop_pod(
        self,
        pod_name: str,
        namespace: str | None = None,
        owner: PodOwnerReference | None = None,
    ) -> None:
        """Delete the controlling job (if any), then the pod.

        The job goes first so its controller cannot replace the pod. Missing
        jobs and pods count as already stopped.
        """
        namespace = namespace or self.namespace
        job_name = await self._resolve_job_name(pod_name, namespace, owner)

        if job_name:
            try:
                await self._request(
                    "DELETE",
                    self.build_job_url(job_name, namespace),
                    params={"propagationPolicy": "Background"},
                )
                logger.info("Deleted job", job_name=job_name, namespace=namespace)
            except ClusterTransportError as e:
                if not e.is_gone:
                    raise
                logger.debug("Job already gone", job_name=job_name, status=e.status_code)
            await self._sleep(self.stop_pod_delay)

        try:
            await self._request("DELETE", self.build_pod_url(pod_name, namespace))
            logger.info("Deleted pod", pod_name=pod_name, namespace=namespace)
        except ClusterTransportError as e:
            if e.status_code != 404:
                raise
            logger.debug("Pod already gone", pod_name=pod_name)

