"""Registry mapping cluster ids to their capability handles."""

import threading

import structlog

from kubemend.exceptions import ClusterClientNotFoundError
from kubemend.k8s.base import ClusterClient

logger = structlog.get_logger()


class ClusterClientRegistry:
    """Lock-guarded map of cluster id -> ``ClusterClient``."""

    def __init__(self) -> None:
        self._clients: dict[str, ClusterClient] = {}
        self._lock = threading.RLock()

    def register(self, cluster_id: str, client: ClusterClient) -> None:
        with self._lock:
            self._clients[cluster_id] = client
        logger.info("k8s_client_registered", cluster_id=cluster_id)

    def unregister(self, cluster_id: str) -> ClusterClient | None:
        with self._lock:
            client = self._clients.pop(cluster_id, None)
        if client is not None:
            logger.info("k8s_client_unregistered", cluster_id=cluster_id)
        return client

    def get(self, cluster_id: str) -> ClusterClient:
        """Return the client for a cluster or raise ``ClusterClientNotFoundError``."""
        with self._lock:
            client = self._clients.get(cluster_id)
        if client is None:
            raise ClusterClientNotFoundError(cluster_id)
        return client

    def items(self) -> list[tuple[str, ClusterClient]]:
        with self._lock:
            return list(self._clients.items())

    def __contains__(self, cluster_id: str) -> bool:
        with self._lock:
            return cluster_id in self._clients
