"""
Async Kubernetes client wrapping kubernetes-asyncio.

One instance per cluster, built either from in-cluster service account
credentials (production) or a kubeconfig context (local/dev).
"""

import asyncio
import os
from typing import Any

import structlog
from kubernetes_asyncio import client as k8s_client
from kubernetes_asyncio import config as k8s_config

from kubemend.exceptions import ExecutionError, UnsupportedResourceError
from kubemend.k8s.base import ClusterClient, normalize_kind

logger = structlog.get_logger()

SERVICE_ACCOUNT_TOKEN = "/var/run/secrets/kubernetes.io/serviceaccount/token"

ALLOWED_EXEC_COMMANDS = {
    "ls", "cat", "echo", "env", "ps", "df", "free", "date", "hostname", "uptime", "curl", "wget", "kill",
}


class KubernetesClient(ClusterClient):
    """
    Cluster capability handle backed by CoreV1Api and AppsV1Api.

    Usage:
        client = await KubernetesClient.from_kubeconfig(context="prod-admin")
        engine.register_k8s_client("prod", client)
    """

    def __init__(self, api_client: k8s_client.ApiClient, context: str | None = None) -> None:
        self._api = api_client
        self._core_v1 = k8s_client.CoreV1Api(api_client)
        self._apps_v1 = k8s_client.AppsV1Api(api_client)
        self._context = context

    @classmethod
    async def from_kubeconfig(cls, context: str | None = None, config_file: str | None = None) -> "KubernetesClient":
        """Build a client for one kubeconfig context."""
        config_file = config_file or os.environ.get("KUBECONFIG", os.path.expanduser("~/.kube/config"))
        api_client = await k8s_config.new_client_from_config(config_file=config_file, context=context)
        logger.info("k8s_client_initialized", mode="kubeconfig", path=config_file, context=context)
        return cls(api_client, context=context)

    @classmethod
    def in_cluster(cls) -> "KubernetesClient":
        """Build a client from the pod's service account."""
        configuration = k8s_client.Configuration()
        k8s_config.load_incluster_config(client_configuration=configuration)
        logger.info("k8s_client_initialized", mode="in-cluster")
        return cls(k8s_client.ApiClient(configuration=configuration))

    @staticmethod
    def is_in_cluster() -> bool:
        """Detect if running inside a Kubernetes pod."""
        return os.path.exists(SERVICE_ACCOUNT_TOKEN)

    async def close(self) -> None:
        await self._api.close()

    # ── Pod Operations ─────────────────────────────────────────────────────────

    async def delete_pod(self, namespace: str, name: str, grace_period: int | None = None) -> None:
        """Delete a pod (the owning controller recreates it)."""
        body = k8s_client.V1DeleteOptions(grace_period_seconds=grace_period)
        await self._core_v1.delete_namespaced_pod(name=name, namespace=namespace, body=body)

    async def list_pods(self, namespace: str = "", field_selector: str | None = None) -> list[dict[str, Any]]:
        if namespace:
            resp = await self._core_v1.list_namespaced_pod(namespace=namespace, field_selector=field_selector or "")
        else:
            resp = await self._core_v1.list_pod_for_all_namespaces(field_selector=field_selector or "")
        return [self._pod_to_dict(p) for p in resp.items]

    async def list_pods_on_node(self, node_name: str) -> list[dict[str, Any]]:
        return await self.list_pods(field_selector=f"spec.nodeName={node_name}")

    async def exec_in_pod(
        self, namespace: str, name: str, command: list[str], container: str | None = None
    ) -> str:
        """
        Execute an allowlisted command in a pod via kubectl.
        Returns stdout output.
        """
        if command and command[0] not in ALLOWED_EXEC_COMMANDS:
            raise ExecutionError(
                f"command '{command[0]}' is not allowlisted for exec",
                {"command": command[0], "allowed": sorted(ALLOWED_EXEC_COMMANDS)},
            )

        cmd = ["kubectl"]
        if self._context:
            cmd += ["--context", self._context]
        cmd += ["exec", name, "-n", namespace]
        if container:
            cmd += ["-c", container]
        cmd += ["--"] + command
        proc = await asyncio.create_subprocess_exec(
            *cmd, stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await proc.communicate()
        if proc.returncode != 0:
            raise ExecutionError(f"exec in {namespace}/{name} failed: {stderr.decode().strip()}")
        return stdout.decode()

    # ── Deployment Operations ──────────────────────────────────────────────────

    async def get_scale(self, namespace: str, name: str) -> int:
        scale = await self._apps_v1.read_namespaced_deployment_scale(name=name, namespace=namespace)
        return scale.spec.replicas or 0

    async def set_scale(self, namespace: str, name: str, replicas: int) -> None:
        """Read the scale subresource, overwrite replicas, write it back."""
        scale = await self._apps_v1.read_namespaced_deployment_scale(name=name, namespace=namespace)
        scale.spec.replicas = replicas
        await self._apps_v1.replace_namespaced_deployment_scale(name=name, namespace=namespace, body=scale)

    async def json_patch(self, resource_type: str, namespace: str, name: str, path: str, value: Any) -> None:
        patch = [{"op": "replace", "path": path, "value": value}]
        kind = normalize_kind(resource_type)
        if kind == "deployment":
            await self._apps_v1.patch_namespaced_deployment(name=name, namespace=namespace, body=patch)
        elif kind == "persistentvolumeclaim":
            await self._core_v1.patch_namespaced_persistent_volume_claim(name=name, namespace=namespace, body=patch)
        else:
            raise UnsupportedResourceError("patch", resource_type)

    # ── Node Operations ───────────────────────────────────────────────────────

    async def get_node(self, name: str) -> dict[str, Any]:
        node = await self._core_v1.read_node(name=name)
        return self._api.sanitize_for_serialization(node)

    async def update_node(self, name: str, node: dict[str, Any]) -> None:
        await self._core_v1.replace_node(name=name, body=node)

    # ── Events ────────────────────────────────────────────────────────────────

    async def list_warning_events(self) -> list[dict[str, Any]]:
        resp = await self._core_v1.list_event_for_all_namespaces(field_selector="type=Warning")
        events = sorted(
            resp.items,
            key=lambda e: str(e.last_timestamp or e.event_time or ""),
            reverse=True,
        )
        return [self._event_to_dict(e) for e in events]

    # ── Serializers ───────────────────────────────────────────────────────────

    @staticmethod
    def _pod_to_dict(pod) -> dict[str, Any]:
        container_statuses = (pod.status.container_statuses or []) if pod.status else []
        phase = (pod.status.phase if pod.status else None) or "Unknown"
        waiting_reason = None
        for cs in container_statuses:
            if cs.state and cs.state.waiting:
                waiting_reason = cs.state.waiting.reason
                break

        return {
            "name": pod.metadata.name,
            "namespace": pod.metadata.namespace,
            "phase": phase,
            "status": waiting_reason or (pod.status.reason if pod.status else None) or phase,
            "restarts": sum(cs.restart_count or 0 for cs in container_statuses),
            "node": pod.spec.node_name if pod.spec else None,
            "labels": pod.metadata.labels or {},
            "owner_kinds": [ref.kind for ref in (pod.metadata.owner_references or [])],
        }

    @staticmethod
    def _event_to_dict(e) -> dict[str, Any]:
        obj = e.involved_object
        return {
            "uid": e.metadata.uid,
            "namespace": e.metadata.namespace,
            "name": e.metadata.name,
            "reason": e.reason or "",
            "message": e.message or "",
            "type": e.type or "",
            "count": e.count or 1,
            "source": (e.source.component if e.source else None) or "kubernetes",
            "involved_kind": obj.kind if obj else "",
            "involved_name": obj.name if obj else "",
            "involved_namespace": (obj.namespace if obj else None) or "",
            "last_timestamp": str(e.last_timestamp or e.event_time or ""),
        }
