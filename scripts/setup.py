#!/usr/bin/env python3
"""Setup script for the availability engine: migrations plus a demo listing."""

import asyncio
import logging
import sys
from pathlib import Path

# Add the server directory to the Python path
server_dir = Path(__file__).parent.parent / "server"
sys.path.insert(0, str(server_dir))

from alembic import command  # noqa: E402
from alembic.config import Config  # noqa: E402
from sqlalchemy import func, select  # noqa: E402

from availability_engine.core.database import async_session_factory, close_db  # noqa: E402
from availability_engine.core.dependencies import Caller  # noqa: E402
from availability_engine.models import AvailabilityRule  # noqa: E402
from availability_engine.schemas.rule import CreateRuleRequest  # noqa: E402
from availability_engine.services.rule_service import RuleService  # noqa: E402
from availability_engine.services.slot_generator import SlotGenerator  # noqa: E402

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

DEMO_VENDOR = Caller(user_id="demo-vendor", roles=("vendor",))
DEMO_LISTING = "demo-kayak-tour"


def run_migrations() -> None:
    """Bring the database schema up to date."""
    logger.info("Running database migrations...")
    alembic_cfg = Config(str(server_dir / "db" / "alembic.ini"))
    command.upgrade(alembic_cfg, "head")
    logger.info("Database migrations completed")


async def create_sample_data() -> None:
    """Create a weekly demo rule and its first slots."""
    logger.info("Creating sample data...")

    async with async_session_factory() as db:
        try:
            existing = await db.execute(
                select(func.count()).select_from(AvailabilityRule).where(AvailabilityRule.listing_id == DEMO_LISTING)
            )
            if existing.scalar_one() > 0:
                logger.info("Sample data already exists, skipping...")
                return

            rule = await RuleService(db).create_rule(
                CreateRuleRequest(
                    listing_id=DEMO_LISTING,
                    name="Sunrise kayak tour",
                    rule_type="recurring",
                    pattern={
                        "frequency": "weekly",
                        "days_of_week": [2, 4, 6],
                        "start_time": "06:30",
                        "duration_minutes": 150,
                    },
                    capacity=8,
                    booking_deadline_hours=12,
                    generate_days_in_advance=28,
                ),
                DEMO_VENDOR,
            )
            slot_ids = await SlotGenerator(db).regenerate_for_rule(rule.id, DEMO_VENDOR)
            logger.info(f"Sample data created: rule {rule.id} with {len(slot_ids)} slots")

        except Exception as e:
            await db.rollback()
            logger.error(f"Failed to create sample data: {e}")
            raise

    await close_db()


def main() -> None:
    """Main setup function."""
    logger.info("Starting availability engine setup...")

    run_migrations()
    asyncio.run(create_sample_data())

    logger.info("Setup completed successfully!")
    logger.info("You can now start the API server with: cd server && uvicorn availability_engine.main:app --reload")


if __name__ == "__main__":
    main()
