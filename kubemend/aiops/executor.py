"""
Action executor - runs a rule's ordered steps against a cluster.

Each action moves running -> completed | completed_with_errors | failed.
Steps dispatch through a table keyed by ``ActionType``; a step error is
handled by the step's own ``on_failure`` policy:

  abort    → the action fails immediately, remaining steps are skipped
  retry    → re-attempt up to ``max_retries`` times, waiting delay × attempt;
             still failing → the action fails
  continue → record the error and move on; the action ends
             completed_with_errors
"""

import asyncio
from typing import Any, Awaitable, Callable

import structlog

from kubemend.aiops.models import (
    ActionStatus,
    ActionType,
    CordonParams,
    DeleteParams,
    DrainParams,
    ExecParams,
    FailurePolicy,
    NotifyParams,
    PatchParams,
    RemediationAction,
    RemediationRule,
    RestartPodParams,
    RuleAction,
    ScaleParams,
    WebhookParams,
    params_to_dict,
    utcnow,
)
from kubemend.aiops.store import RemediationStore
from kubemend.channels.router import NotificationRouter
from kubemend.channels.webhook import WebhookClient
from kubemend.config import Settings
from kubemend.exceptions import UnsupportedResourceError
from kubemend.k8s.base import normalize_kind
from kubemend.k8s.registry import ClusterClientRegistry
from kubemend.utils import render_template

logger = structlog.get_logger()

PATCHABLE_KINDS = {"deployment", "persistentvolumeclaim"}

StepHandler = Callable[[RemediationAction, RuleAction, Any, dict[str, Any]], Awaitable[dict[str, Any] | None]]


def is_daemonset_pod(pod: dict[str, Any]) -> bool:
    return "DaemonSet" in (pod.get("owner_kinds") or [])


class ActionExecutor:
    """Executes queued remediation actions; one call per action."""

    def __init__(
        self,
        store: RemediationStore,
        clients: ClusterClientRegistry,
        notifications: NotificationRouter,
        webhooks: WebhookClient,
        settings: Settings,
        on_rule_executed: Callable[[str, Any], None] | None = None,
    ) -> None:
        self._store = store
        self._clients = clients
        self._notifications = notifications
        self._webhooks = webhooks
        self._settings = settings
        self._retry_delay = settings.remediation_retry_delay_seconds
        self._on_rule_executed = on_rule_executed
        self._handlers: dict[ActionType, StepHandler] = {
            ActionType.RESTART_POD: self._restart_pod,
            ActionType.DELETE: self._delete,
            ActionType.SCALE: self._scale,
            ActionType.PATCH: self._patch,
            ActionType.CORDON: self._cordon,
            ActionType.DRAIN: self._drain,
            ActionType.EXEC: self._exec,
            ActionType.NOTIFY: self._notify,
            ActionType.WEBHOOK: self._webhook,
        }
        missing = set(ActionType) - set(self._handlers)
        if missing:
            raise RuntimeError(f"no step handler for: {sorted(m.value for m in missing)}")

    async def execute(self, action: RemediationAction) -> RemediationAction:
        """Run every step of the action's rule and persist the outcome."""
        logger.info(
            "action_executing",
            action_id=action.id,
            type=action.action_type.value,
            resource=action.resource_name,
            cluster_id=action.cluster_id,
        )
        action.status = ActionStatus.RUNNING
        action.started_at = utcnow()
        await self._persist(action)

        try:
            rule = await self._store.get_rule(action.rule_id)
        except Exception as e:
            logger.error("action_rule_lookup_failed", action_id=action.id, rule_id=action.rule_id, error=str(e))
            rule = None
        if rule is None:
            await self._finish(action, ActionStatus.FAILED, None, f"rule not found: {action.rule_id}", [])
            return action

        context = self._template_context(action)
        steps: list[dict[str, Any]] = []
        last_error: str | None = None

        for step in rule.ordered_actions():
            if action.dry_run:
                logger.info(
                    "dry_run_step",
                    action_id=action.id,
                    type=step.type.value,
                    parameters=params_to_dict(step.parameters),
                )
                steps.append(self._step_record(step, "dry_run", 0))
                continue

            record, fatal = await self._run_step(action, step, context)
            steps.append(record)
            if record["error"]:
                last_error = record["error"]
            if fatal:
                await self._finish(action, ActionStatus.FAILED, rule, last_error, steps)
                return action

        status = ActionStatus.COMPLETED_WITH_ERRORS if last_error else ActionStatus.COMPLETED
        await self._finish(action, status, rule, last_error, steps)
        return action

    async def _run_step(
        self, action: RemediationAction, step: RuleAction, context: dict[str, Any]
    ) -> tuple[dict[str, Any], bool]:
        """Run one step under its failure policy; returns (record, fatal)."""
        attempts = 1
        try:
            detail = await self._dispatch(action, step, context)
            return self._step_record(step, "succeeded", attempts, detail=detail), False
        except Exception as e:
            error = e
            logger.error(
                "step_failed",
                action_id=action.id,
                type=step.type.value,
                order=step.order,
                on_failure=step.on_failure.value,
                error=str(e),
            )

        if step.on_failure == FailurePolicy.RETRY:
            for attempt in range(1, step.max_retries + 1):
                await asyncio.sleep(self._retry_delay * attempt)
                attempts += 1
                try:
                    detail = await self._dispatch(action, step, context)
                    logger.info("step_recovered", action_id=action.id, type=step.type.value, attempts=attempts)
                    return self._step_record(step, "succeeded", attempts, detail=detail), False
                except Exception as e:
                    error = e
                    logger.warning(
                        "step_retry_failed", action_id=action.id, type=step.type.value, attempt=attempt, error=str(e)
                    )
            return self._step_record(step, "failed", attempts, error=str(error)), True

        fatal = step.on_failure == FailurePolicy.ABORT
        return self._step_record(step, "failed", attempts, error=str(error)), fatal

    async def _dispatch(
        self, action: RemediationAction, step: RuleAction, context: dict[str, Any]
    ) -> dict[str, Any] | None:
        handler = self._handlers[step.type]
        return await handler(action, step, step.parameters, context)

    @staticmethod
    def _step_record(
        step: RuleAction,
        status: str,
        attempts: int,
        error: str | None = None,
        detail: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        record: dict[str, Any] = {
            "order": step.order,
            "type": step.type.value,
            "target": step.target,
            "status": status,
            "attempts": attempts,
            "error": error,
        }
        if detail:
            record["detail"] = detail
        return record

    @staticmethod
    def _template_context(action: RemediationAction) -> dict[str, Any]:
        return {
            "resource_name": action.resource_name,
            "resource_type": action.resource_type,
            "namespace": action.namespace,
            "cluster_id": action.cluster_id,
            "rule_name": action.rule_name,
            "action_id": action.id,
        }

    # ── Completion ────────────────────────────────────────────────────────────

    async def _finish(
        self,
        action: RemediationAction,
        status: ActionStatus,
        rule: RemediationRule | None,
        error: str | None,
        steps: list[dict[str, Any]],
    ) -> None:
        now = utcnow()
        action.status = status
        action.completed_at = now
        if action.started_at:
            action.duration = now - action.started_at
        if error:
            action.error = error
        action.result = {"success": status == ActionStatus.COMPLETED, "steps": steps}
        if action.dry_run:
            action.result["dry_run"] = True
        await self._persist(action)

        logger.info(
            "action_completed",
            action_id=action.id,
            status=status.value,
            duration=action.duration.total_seconds() if action.duration else None,
            error=action.error or None,
        )

        if rule is None:
            return
        try:
            await self._store.record_rule_trigger(rule.id, now, executed=True)
        except Exception as e:
            logger.warning("rule_bookkeeping_failed", rule_id=rule.id, error=str(e))
        if self._on_rule_executed:
            self._on_rule_executed(rule.id, now)

    async def _persist(self, action: RemediationAction) -> None:
        try:
            await self._store.save_action(action)
        except Exception as e:
            # In-memory and persisted state diverge until the next successful write
            logger.warning("action_persist_failed", action_id=action.id, status=action.status.value, error=str(e))

    # ── Step handlers ─────────────────────────────────────────────────────────

    async def _restart_pod(self, action, step, params: RestartPodParams, context):
        client = self._clients.get(action.cluster_id)
        await client.delete_pod(action.namespace, action.resource_name, params.grace_period)
        logger.info("pod_restarted", pod=action.resource_name, namespace=action.namespace)
        return {"grace_period": params.grace_period}

    async def _delete(self, action, step, params: DeleteParams, context):
        if normalize_kind(action.resource_type) != "pod":
            raise UnsupportedResourceError("delete", action.resource_type)
        client = self._clients.get(action.cluster_id)
        await client.delete_pod(action.namespace, action.resource_name, params.grace_period)
        logger.info("pod_deleted", pod=action.resource_name, namespace=action.namespace)
        return {"grace_period": params.grace_period}

    async def _scale(self, action, step, params: ScaleParams, context):
        client = self._clients.get(action.cluster_id)
        previous = await client.get_scale(action.namespace, action.resource_name)
        await client.set_scale(action.namespace, action.resource_name, params.replicas)
        logger.info("resource_scaled", resource=action.resource_name, replicas=params.replicas, previous=previous)
        return {"previous_replicas": previous, "replicas": params.replicas}

    async def _patch(self, action, step, params: PatchParams, context):
        resource_type = params.resource_type
        if not resource_type and normalize_kind(step.target) in PATCHABLE_KINDS:
            resource_type = step.target
        resource_type = resource_type or action.resource_type
        if normalize_kind(resource_type) not in PATCHABLE_KINDS:
            raise UnsupportedResourceError("patch", resource_type)
        name = render_template(params.resource_name, context) if params.resource_name else action.resource_name

        client = self._clients.get(action.cluster_id)
        await client.json_patch(resource_type, action.namespace, name, params.path, params.value)
        logger.info("resource_patched", resource_type=resource_type, resource=name, path=params.path)
        return {"resource_type": normalize_kind(resource_type), "resource_name": name, "path": params.path}

    async def _cordon(self, action, step, params: CordonParams, context):
        client = self._clients.get(action.cluster_id)
        node = await client.get_node(action.resource_name)
        node.setdefault("spec", {})["unschedulable"] = True
        await client.update_node(action.resource_name, node)
        logger.info("node_cordoned", node=action.resource_name)
        return {"node": action.resource_name}

    async def _drain(self, action, step, params: DrainParams, context):
        await self._cordon(action, step, CordonParams(), context)
        client = self._clients.get(action.cluster_id)
        pods = await client.list_pods_on_node(action.resource_name)

        evicted: list[str] = []
        failed: list[dict[str, str]] = []
        skipped = 0
        for pod in pods:
            if is_daemonset_pod(pod):
                skipped += 1
                continue
            pod_ref = f"{pod['namespace']}/{pod['name']}"
            try:
                await client.delete_pod(pod["namespace"], pod["name"], params.grace_period)
                evicted.append(pod_ref)
            except Exception as e:
                logger.warning("pod_eviction_failed", pod=pod_ref, node=action.resource_name, error=str(e))
                failed.append({"pod": pod_ref, "error": str(e)})

        logger.info("node_drained", node=action.resource_name, evicted=len(evicted), failed=len(failed))
        return {"evicted": evicted, "failed": failed, "skipped_daemonset": skipped}

    async def _exec(self, action, step, params: ExecParams, context):
        client = self._clients.get(action.cluster_id)
        output = await client.exec_in_pod(action.namespace, action.resource_name, params.command, params.container)
        logger.info("pod_exec_completed", pod=action.resource_name, command=params.command[0])
        return {"output": output[:1000]}

    async def _notify(self, action, step, params: NotifyParams, context):
        target = params.target or step.target or None
        template = params.message or "Remediation rule {rule_name} acted on {resource_type} {resource_name} in {namespace}"
        message = render_template(template, context)
        used = await self._notifications.notify(target, message, channel=params.channel, severity=params.severity)
        return {"notifier": used}

    async def _webhook(self, action, step, params: WebhookParams, context):
        if not self._settings.enable_webhooks:
            logger.debug("webhook_step_skipped", action_id=action.id, reason="webhooks disabled")
            return {"skipped": "webhooks disabled"}
        url = params.url or self._settings.webhook_url
        if not url:
            logger.debug("webhook_step_skipped", action_id=action.id, reason="no url")
            return {"skipped": "no url"}

        payload = {
            "action_id": action.id,
            "rule_name": action.rule_name,
            "resource_type": action.resource_type,
            "resource_name": action.resource_name,
            "namespace": action.namespace,
            "cluster_id": action.cluster_id,
            "parameters": params_to_dict(params),
            "timestamp": utcnow().isoformat(),
        }
        status_code = await self._webhooks.post(url, payload)
        return {"url": url, "status_code": status_code}
