"""Monitoring package: event sources feeding the remediation engine."""

from kubemend.monitoring.metric_triggers import MetricTriggerLoop
from kubemend.monitoring.prometheus import PrometheusClient
from kubemend.monitoring.watchloop import K8sEventWatchLoop

__all__ = ["K8sEventWatchLoop", "MetricTriggerLoop", "PrometheusClient"]
