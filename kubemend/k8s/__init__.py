"""Kubernetes cluster capability layer for remediation operations."""

from kubemend.k8s.base import ClusterClient, normalize_kind
from kubemend.k8s.client import KubernetesClient
from kubemend.k8s.registry import ClusterClientRegistry

__all__ = ["ClusterClient", "ClusterClientRegistry", "KubernetesClient", "normalize_kind"]
