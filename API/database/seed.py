"""
Database seed: creates the default plan catalog on first run.
"""
from loguru import logger
from sqlalchemy.orm import Session


def seed_plans(session: Session) -> int:
    """Create the default plans if the catalog is empty."""
    from services.plan_catalog import PlanCatalogService

    created = PlanCatalogService(session).seed_defaults()
    if created:
        logger.info(f"✅ {created} default plans created")
    else:
        logger.info("ℹ️  Plan catalog already exists")
    return created
