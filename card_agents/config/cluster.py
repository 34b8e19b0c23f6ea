"""Cluster connection configuration.

This module provides the connection parameters used to reach the
Kubernetes/OpenShift API that hosts the card agent pods.
"""

from dataclasses import dataclass


@dataclass
class ClusterConfig:
    """Cluster API connection configuration."""

    # Base URL of the API server, e.g. https://api.cluster.example:6443
    url: str = ""

    # Namespace holding the agent pods
    namespace: str = "automation"

    # Service account bearer token
    token: str | None = None

    # PEM encoded CA bundle used instead of the system trust store
    ca_bundle: str | None = None
    ignore_ssl: bool = False

    @property
    def is_configured(self) -> bool:
        """Whether enough is known to talk to the cluster."""
        return bool(self.url and self.token)
