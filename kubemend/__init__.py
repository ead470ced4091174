"""Kubemend: rule-driven auto-remediation for Kubernetes clusters."""
