"""Database repositories."""

from kubemend.database.repositories.action_repository import ActionRepository
from kubemend.database.repositories.rule_repository import RuleRepository

__all__ = [
    "RuleRepository",
    "ActionRepository",
]
