#!/usr/bin/env python3
"""Initialize database with migrations and seed the built-in remediation rules."""

import asyncio

import structlog
from alembic import command
from alembic.config import Config

from kubemend.aiops.defaults import default_rules
from kubemend.aiops.models import utcnow
from kubemend.config import get_settings
from kubemend.database import SQLRemediationStore, close_db, make_engine, make_session_factory
from kubemend.utils import configure_logging

logger = structlog.get_logger()
settings = get_settings()


async def init_database():
    """Initialize database with Alembic migrations."""
    configure_logging(settings.log_level)

    logger.info("initializing_database")

    # Get alembic config
    alembic_cfg = Config("alembic.ini")

    try:
        # Run migrations; env.py drives its own event loop
        logger.info("running_migrations")
        await asyncio.to_thread(command.upgrade, alembic_cfg, "head")
        logger.info("migrations_completed")

        await seed_default_rules()

        logger.info("database_initialization_complete")

    except Exception as e:
        logger.error("database_initialization_failed", error=str(e))
        raise


async def seed_default_rules():
    """Insert the built-in rules that are not stored yet."""
    logger.info("seeding_default_rules")

    engine = make_engine(settings.database_url)
    store = SQLRemediationStore(make_session_factory(engine))
    try:
        for rule in default_rules():
            if await store.get_rule(rule.id) or await store.get_rule_by_name(rule.name):
                continue
            rule.created_at = rule.updated_at = utcnow()
            rule.created_by = "system"
            await store.save_rule(rule)
            logger.info("default_rule_created", rule_id=rule.id, name=rule.name)
    finally:
        await close_db(engine)

    logger.info("default_rules_seeded")


if __name__ == "__main__":
    asyncio.run(init_database())
