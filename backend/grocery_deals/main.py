"""Grocery deals engine process entry point.

Builds the aggregator and the price comparison service from settings, makes
sure the tables exist and runs the aggregation schedule until interrupted.

Usage:
    python -m grocery_deals.main
"""

import asyncio
import signal
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from grocery_deals.config import settings
from grocery_deals.core.logging_config import configure_logging
from grocery_deals.scrapers.adapters.kroger import KrogerAdapter
from grocery_deals.scrapers.adapters.publix import PublixAdapter
from grocery_deals.services.aggregator import DealAggregator
from grocery_deals.services.persistence import SQLAlchemyPersistenceGateway
from grocery_deals.services.price_comparison import PriceComparisonService

logger = structlog.get_logger(__name__)


def build_aggregator(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> DealAggregator:
    """Wire a DealAggregator with the configured sources and database."""
    if session_factory is None:
        from grocery_deals.db.session import async_session_factory

        session_factory = async_session_factory

    return DealAggregator(
        gateway=SQLAlchemyPersistenceGateway(session_factory),
        kroger_client=KrogerAdapter(),
        publix_scraper=PublixAdapter(),
        success_threshold=settings.AGGREGATION_SUCCESS_THRESHOLD,
    )


def build_price_comparison(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> PriceComparisonService:
    """Wire a PriceComparisonService against the configured database."""
    if session_factory is None:
        from grocery_deals.db.session import async_session_factory

        session_factory = async_session_factory

    return PriceComparisonService(
        SQLAlchemyPersistenceGateway(session_factory),
        price_tie_band=settings.PRICE_TIE_BAND,
        list_tie_band=settings.LIST_TIE_BAND,
        default_radius_miles=settings.DEFAULT_SEARCH_RADIUS_MILES,
    )


async def run() -> None:
    """Start the schedule and block until SIGINT or SIGTERM."""
    from grocery_deals.db.session import create_tables

    configure_logging()
    logger.info(
        "grocery_deals_starting",
        environment=settings.ENVIRONMENT,
        debug=settings.DEBUG,
        timezone=settings.SCHEDULER_TIMEZONE,
    )

    await create_tables()
    aggregator = build_aggregator()

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows event loops have no signal handlers; Ctrl+C still raises
            pass

    aggregator.start_scheduled_jobs()
    logger.info("grocery_deals_started", jobs=aggregator.scheduler.get_jobs_status())

    try:
        await stop_event.wait()
    finally:
        await aggregator.cleanup()
        await aggregator.kroger_client.aclose()
        logger.info("grocery_deals_stopped")


def main() -> None:
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
