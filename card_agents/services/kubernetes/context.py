"""Runtime contexts: which client a card's watcher should use.

A context pairs a card with a client factory and the fingerprint of the
settings the client was built from. Contexts come either from the host's
stored cluster settings or, for hosts without any, from kubeconfig /
in-cluster service account configuration.
"""

import os
from collections.abc import Callable
from dataclasses import dataclass

import structlog
from kubernetes import config
from kubernetes.client import Configuration

from ...config import settings
from ...models import ClusterContext, ConfigurationError
from ..interfaces import PodApi
from .client import ClusterClient

logger = structlog.get_logger(__name__)

SERVICE_ACCOUNT_NAMESPACE_FILE = "/var/run/secrets/kubernetes.io/serviceaccount/namespace"


@dataclass
class PodRuntimeContext:
    """Everything the registry needs to build a watcher for one card."""

    card_id: str
    namespace: str
    fingerprint: str
    client_factory: Callable[[], PodApi]
    # Close the client when the watcher using it is disposed
    owns_client: bool = True


def build_runtime_context(context: ClusterContext | None, **client_kwargs) -> PodRuntimeContext | None:
    """Turn resolved cluster settings into a runtime context.

    Returns None when the card, cluster URL or token is missing, meaning
    "not configured yet".
    """
    if context is None:
        return None
    if not context.is_complete:
        logger.debug("Cluster settings incomplete", card_id=context.card_id or None)
        return None

    return PodRuntimeContext(
        card_id=context.card_id,
        namespace=context.namespace,
        fingerprint=context.fingerprint,
        client_factory=lambda: ClusterClient.from_context(context, **client_kwargs),
    )


def build_preview_context(card_id: str, client: PodApi, namespace: str | None = None) -> PodRuntimeContext:
    """Context backed by a fixed in-memory client."""
    namespace = namespace or settings.cluster_namespace
    return PodRuntimeContext(
        card_id=card_id,
        namespace=namespace,
        fingerprint=f"preview:{namespace}",
        client_factory=lambda: client,
        owns_client=False,
    )


def _read_service_account_namespace() -> str | None:
    try:
        with open(SERVICE_ACCOUNT_NAMESPACE_FILE, encoding="utf-8") as f:
            return f.read().strip() or None
    except OSError:
        return None


def _read_ca_bundle(path: str | None) -> str | None:
    if not path:
        return None
    try:
        with open(path, encoding="utf-8") as f:
            return f.read()
    except OSError as e:
        logger.warning("Failed to read cluster CA bundle", path=path, error=str(e))
        return None


def _load_configuration(config_file: str | None) -> tuple[Configuration, bool]:
    """Load cluster configuration.

    Tries in-cluster config first, falls back to kubeconfig.

    Returns:
        The populated configuration and whether it came from the cluster.
    """
    configuration = Configuration()

    if config_file is None:
        try:
            config.load_incluster_config(client_configuration=configuration)
            logger.info("Loaded in-cluster Kubernetes configuration")
            return configuration, True
        except config.ConfigException:
            pass

    kubeconfig_path = config_file or os.getenv("KUBECONFIG", os.path.expanduser("~/.kube/config"))
    try:
        config.load_kube_config(config_file=kubeconfig_path, client_configuration=configuration)
    except Exception as e:
        raise ConfigurationError(f"Failed to load Kubernetes config: {e}") from e
    logger.info("Loaded kubeconfig", path=kubeconfig_path)
    return configuration, False


def load_kube_context(
    card_id: str,
    namespace: str | None = None,
    config_file: str | None = None,
) -> ClusterContext:
    """Build cluster settings for a card from kubeconfig or the pod's service account.

    Raises:
        ConfigurationError: If no usable configuration could be loaded
    """
    configuration, in_cluster = _load_configuration(config_file)

    authorization = (configuration.api_key or {}).get("authorization") or ""
    prefix = "Bearer "
    token = authorization[len(prefix):] if authorization.startswith(prefix) else authorization or None

    if namespace is None and in_cluster:
        namespace = _read_service_account_namespace()

    return ClusterContext(
        card_id=card_id,
        namespace=namespace or settings.cluster_namespace,
        cluster_url=(configuration.host or "").rstrip("/"),
        token=token,
        ca_bundle=_read_ca_bundle(configuration.ssl_ca_cert),
        ignore_ssl=not configuration.verify_ssl,
    )


def context_from_settings(card_id: str) -> ClusterContext | None:
    """Cluster settings for a card from environment configuration.

    Returns None when the environment names no cluster URL and token.
    """
    cluster = settings.cluster
    if not cluster.is_configured:
        return None
    return ClusterContext(
        card_id=card_id,
        namespace=cluster.namespace,
        cluster_url=cluster.url,
        token=cluster.token,
        ca_bundle=cluster.ca_bundle,
        ignore_ssl=cluster.ignore_ssl,
    )
