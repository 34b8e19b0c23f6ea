"""Cluster context supplied by the host for one card."""

import hashlib
from dataclasses import dataclass


def hash_token(token: str) -> str:
    """Short, non-reversible digest of a token for change detection."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()[:16]


@dataclass
class ClusterContext:
    """Where and as whom to reach the cluster for a given card."""

    card_id: str
    namespace: str
    cluster_url: str
    token: str | None = None
    ca_bundle: str | None = None
    ignore_ssl: bool = False

    @property
    def is_complete(self) -> bool:
        """Card, cluster URL and token are all known."""
        return bool(self.card_id and self.cluster_url and self.token)

    @property
    def fingerprint(self) -> str:
        """Identity of the connection settings.

        Changes whenever the cluster URL, namespace or token change, which
        is what forces shared watchers to be rebuilt.
        """
        token_part = hash_token(self.token) if self.token else ""
        return f"{self.cluster_url}|{self.namespace}|{token_part}"
