"""Capability contract for a single cluster's control plane."""

from abc import ABC, abstractmethod
from typing import Any

_KIND_ALIASES = {
    "pods": "pod",
    "po": "pod",
    "deployments": "deployment",
    "deploy": "deployment",
    "nodes": "node",
    "no": "node",
    "pvc": "persistentvolumeclaim",
    "persistentvolumeclaims": "persistentvolumeclaim",
}


def normalize_kind(resource_type: str) -> str:
    """Map ``Pod``, ``pods``, ``pvc`` and friends onto one lower-case kind name."""
    kind = (resource_type or "").strip().lower()
    return _KIND_ALIASES.get(kind, kind)


class ClusterClient(ABC):
    """
    Operations the remediation executor and watchloop need from a cluster.

    Resources are exchanged as plain dicts in Kubernetes API JSON shape
    (``{"metadata": ..., "spec": ...}``) for nodes, and as flattened
    summaries for pods and events.
    """

    @abstractmethod
    async def delete_pod(self, namespace: str, name: str, grace_period: int | None = None) -> None:
        pass

    @abstractmethod
    async def get_scale(self, namespace: str, name: str) -> int:
        """Return the current replica count of a deployment."""
        pass

    @abstractmethod
    async def set_scale(self, namespace: str, name: str, replicas: int) -> None:
        pass

    @abstractmethod
    async def json_patch(self, resource_type: str, namespace: str, name: str, path: str, value: Any) -> None:
        """Apply a single JSON-patch ``replace`` operation."""
        pass

    @abstractmethod
    async def get_node(self, name: str) -> dict[str, Any]:
        pass

    @abstractmethod
    async def update_node(self, name: str, node: dict[str, Any]) -> None:
        pass

    @abstractmethod
    async def list_pods_on_node(self, node_name: str) -> list[dict[str, Any]]:
        """Pods scheduled on a node, each with ``name``, ``namespace`` and ``owner_kinds``."""
        pass

    @abstractmethod
    async def list_pods(self, namespace: str = "", field_selector: str | None = None) -> list[dict[str, Any]]:
        pass

    @abstractmethod
    async def exec_in_pod(
        self, namespace: str, name: str, command: list[str], container: str | None = None
    ) -> str:
        pass

    @abstractmethod
    async def list_warning_events(self) -> list[dict[str, Any]]:
        """Warning events across all namespaces, newest first."""
        pass

    async def close(self) -> None:
        """Release connections held by the client."""
        return None
