"""Database package."""

from kubemend.database.models import Base, RemediationActionRecord, RemediationRuleRecord
from kubemend.database.postgres import (
    close_db,
    get_db_session,
    init_db,
    make_engine,
    make_session_factory,
)
from kubemend.database.store import SQLRemediationStore

__all__ = [
    # Models
    "Base",
    "RemediationRuleRecord",
    "RemediationActionRecord",
    # Engine / sessions
    "make_engine",
    "make_session_factory",
    "init_db",
    "close_db",
    "get_db_session",
    # Store
    "SQLRemediationStore",
]
