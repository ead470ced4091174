"""In-memory registry of enabled remediation rules."""

import threading
from datetime import datetime, timedelta

import structlog

from kubemend.aiops.models import RemediationRule
from kubemend.aiops.rule_engine import check_cooldown

logger = structlog.get_logger()


class RuleRegistry:
    """
    Holds the enabled rules the matcher evaluates against.

    The registry is kept consistent with the store by the engine: rules are
    registered on load/create/update and dropped on disable/delete. Readers
    get snapshots so matching never iterates a dict being mutated.
    """

    def __init__(self) -> None:
        self._rules: dict[str, RemediationRule] = {}
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._rules)

    def __contains__(self, rule_id: str) -> bool:
        with self._lock:
            return rule_id in self._rules

    def add(self, rule: RemediationRule) -> None:
        """Register (or replace) a rule; disabled rules are removed instead."""
        with self._lock:
            if not rule.enabled:
                self._rules.pop(rule.id, None)
                return
            self._rules[rule.id] = rule
        logger.info("rule_registered", rule_id=rule.id, name=rule.name)

    def replace_all(self, rules: list[RemediationRule]) -> None:
        with self._lock:
            self._rules = {r.id: r for r in rules if r.enabled}
        logger.info("rules_loaded", count=len(self._rules))

    def remove(self, rule_id: str) -> bool:
        """Drop a rule by ID."""
        with self._lock:
            removed = self._rules.pop(rule_id, None) is not None
        if removed:
            logger.info("rule_unregistered", rule_id=rule_id)
        return removed

    def get(self, rule_id: str) -> RemediationRule | None:
        with self._lock:
            return self._rules.get(rule_id)

    def snapshot(self) -> list[RemediationRule]:
        with self._lock:
            return list(self._rules.values())

    def mark_triggered(self, rule_id: str, when: datetime, executed: bool = False) -> None:
        """Update cooldown bookkeeping on the registered copy, if any."""
        with self._lock:
            rule = self._rules.get(rule_id)
            if rule is None:
                return
            rule.last_triggered = when
            if executed:
                rule.execution_count += 1

    def try_claim(
        self, rule_id: str, now: datetime, default_cooldown: timedelta
    ) -> tuple[bool, datetime | None]:
        """
        Check the cooldown and stamp ``last_triggered`` in one step.

        Returns:
            Tuple of (claimed, previous last_triggered) so a failed submission
            can hand the claim back with ``release_claim``
        """
        with self._lock:
            rule = self._rules.get(rule_id)
            if rule is None:
                return False, None
            previous = rule.last_triggered
            if not check_cooldown(rule, default_cooldown, now):
                return False, previous
            rule.last_triggered = now
            return True, previous

    def release_claim(self, rule_id: str, claimed_at: datetime, previous: datetime | None) -> None:
        """Undo ``try_claim`` unless the rule has fired again since."""
        with self._lock:
            rule = self._rules.get(rule_id)
            if rule is not None and rule.last_triggered == claimed_at:
                rule.last_triggered = previous
