"""Deal aggregation service.

Pulls deals from each source, validates and normalizes them, reconciles them
against persisted deals and keeps run statistics. It also owns the schedule
that drives periodic refresh and expiry cleanup.
"""

import asyncio
import dataclasses
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Sequence

import structlog

from grocery_deals.config import settings
from grocery_deals.core.exceptions import ConcurrencyError, DealValidationError
from grocery_deals.models.enums import StoreChain
from grocery_deals.scrapers.adapters.kroger import KrogerAdapter
from grocery_deals.scrapers.adapters.publix import PublixAdapter
from grocery_deals.scrapers.base import CanonicalDeal
from grocery_deals.scrapers.scheduler import AggregationScheduler
from grocery_deals.scrapers.utils.normalizer import DealNormalizer, DealValidator, ensure_utc
from grocery_deals.services.persistence import PersistenceGateway

logger = structlog.get_logger(__name__)

PRICE_CHANGE_TOLERANCE = Decimal("0.01")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class AggregationResult:
    """Outcome of aggregating one source."""

    source: StoreChain
    success: bool = False
    total_processed: int = 0
    new_deals: int = 0
    updated_deals: int = 0
    errors: List[str] = field(default_factory=list)
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass
class CleanupResult:
    """Outcome of one expiry cleanup pass."""

    deleted_count: int = 0
    errors: List[str] = field(default_factory=list)


@dataclass
class AggregationStats:
    """Cumulative statistics over every aggregation run of one aggregator."""

    last_run: Optional[datetime] = None
    total_runs: int = 0
    successful_runs: int = 0
    failed_runs: int = 0
    total_deals_processed: int = 0
    average_processing_time_ms: float = 0.0


def has_significant_changes(existing: Any, deal: CanonicalDeal) -> bool:
    """Whether a fresh deal differs materially from its persisted match.

    Material means a price moved by more than a cent, a validity date
    changed, or the title, description or restrictions changed.
    """
    price_changed = (
        abs(Decimal(existing.original_price) - deal.original_price) > PRICE_CHANGE_TOLERANCE
        or abs(Decimal(existing.sale_price) - deal.sale_price) > PRICE_CHANGE_TOLERANCE
    )
    date_changed = (
        ensure_utc(existing.valid_from) != ensure_utc(deal.valid_from)
        or ensure_utc(existing.valid_until) != ensure_utc(deal.valid_until)
    )
    content_changed = (
        existing.title != deal.title
        or existing.description != deal.description
        or existing.restrictions != deal.restrictions
    )
    return price_changed or date_changed or content_changed


class DealAggregator:
    """Runs the per-source ingestion pipeline and tracks run statistics.

    A full run (aggregate_all_deals) is exclusive: a second call while one is
    in flight raises ConcurrencyError. Per-deal failures are collected in the
    result and never abort a batch.
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        kroger_client: Optional[KrogerAdapter] = None,
        publix_scraper: Optional[PublixAdapter] = None,
        success_threshold: Optional[float] = None,
        scheduler: Optional[AggregationScheduler] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """Initialize the aggregator.

        Args:
            gateway: Persistence gateway for deals and store locations
            kroger_client: Kroger API adapter, built from settings if omitted
            publix_scraper: Publix scraper, built from settings if omitted
            success_threshold: A source run succeeds while the share of
                failed deals stays below this fraction
            scheduler: Scheduler driving periodic runs, built on first start
            clock: Returns the current aware UTC datetime
        """
        self.gateway = gateway
        self.kroger_client = kroger_client or KrogerAdapter()
        self.publix_scraper = publix_scraper or PublixAdapter()
        self.success_threshold = (
            settings.AGGREGATION_SUCCESS_THRESHOLD if success_threshold is None else success_threshold
        )
        self._scheduler = scheduler
        self._clock = clock
        self._is_running = False
        self._stats = AggregationStats()
        self.logger = logger.bind(service="deal_aggregator")

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def start_scheduled_jobs(self) -> None:
        """Start the Kroger, Publix and cleanup jobs."""
        if self._scheduler is None:
            self._scheduler = AggregationScheduler(self)
        self._scheduler.start()

    def stop_scheduled_jobs(self) -> None:
        """Stop every scheduled job. Safe to call repeatedly."""
        if self._scheduler is not None:
            self._scheduler.stop()

    @property
    def scheduler(self) -> Optional[AggregationScheduler]:
        return self._scheduler

    # ------------------------------------------------------------------
    # Aggregation
    # ------------------------------------------------------------------

    async def aggregate_all_deals(self) -> List[AggregationResult]:
        """Aggregate every source concurrently as one run.

        Returns:
            One result per source, Kroger first

        Raises:
            ConcurrencyError: If a full run is already in progress
        """
        if self._is_running:
            raise ConcurrencyError()
        self._is_running = True

        started = time.perf_counter()
        try:
            self.logger.info("full_aggregation_started")

            sources = (StoreChain.KROGER, StoreChain.PUBLIX)
            outcomes = await asyncio.gather(
                self._aggregate_kroger(),
                self._aggregate_publix(),
                return_exceptions=True,
            )

            results = []
            for source, outcome in zip(sources, outcomes):
                if isinstance(outcome, BaseException):
                    self.logger.error(
                        "source_aggregation_crashed",
                        source=source.value,
                        error=str(outcome),
                    )
                    results.append(
                        AggregationResult(
                            source=source,
                            success=False,
                            errors=[str(outcome) or type(outcome).__name__],
                        )
                    )
                else:
                    results.append(outcome)

            elapsed_ms = (time.perf_counter() - started) * 1000
            self._update_stats(results, elapsed_ms)

            self.logger.info(
                "full_aggregation_completed",
                results=len(results),
                processing_time_ms=round(elapsed_ms, 1),
            )
            return results
        finally:
            self._is_running = False

    async def aggregate_kroger_deals(self) -> AggregationResult:
        """Aggregate Kroger coupons and promotions as a standalone run."""
        return await self._timed_run(self._aggregate_kroger)

    async def aggregate_publix_deals(self) -> AggregationResult:
        """Aggregate the Publix weekly ad as a standalone run."""
        return await self._timed_run(self._aggregate_publix)

    async def _timed_run(self, runner) -> AggregationResult:
        started = time.perf_counter()
        result = await runner()
        self._update_stats([result], (time.perf_counter() - started) * 1000)
        return result

    async def _aggregate_kroger(self) -> AggregationResult:
        result = AggregationResult(source=StoreChain.KROGER, timestamp=self._clock())
        self.logger.info("kroger_aggregation_started")

        try:
            deals = await self.kroger_client.fetch_deals()
            scraped_at = self._clock()
            for deal in deals:
                deal.scraped_at = deal.scraped_at or scraped_at
            await self._process_batch(result, deals)
        except Exception as e:
            self.logger.error("kroger_aggregation_failed", error=str(e), exc_info=True)
            result.success = False
            result.errors.append(str(e) or type(e).__name__)

        return result

    async def _aggregate_publix(self) -> AggregationResult:
        result = AggregationResult(source=StoreChain.PUBLIX, timestamp=self._clock())
        self.logger.info("publix_aggregation_started")

        try:
            scraping_result = await self.publix_scraper.scrape_deals()
            if not scraping_result.success:
                result.errors.append(scraping_result.error or "Scraping failed")
                self.logger.warning("publix_scrape_unsuccessful", error=scraping_result.error)
                return result

            deals = [
                DealNormalizer.from_scraped(
                    scraped,
                    StoreChain.PUBLIX,
                    source_url=self.publix_scraper.source_url,
                    scraped_at=scraping_result.scraped_at,
                )
                for scraped in scraping_result.deals
            ]
            await self._process_batch(result, deals)
        except Exception as e:
            self.logger.error("publix_aggregation_failed", error=str(e), exc_info=True)
            result.success = False
            result.errors.append(str(e) or type(e).__name__)

        return result

    async def _process_batch(self, result: AggregationResult, deals: Sequence[CanonicalDeal]) -> None:
        """Validate, normalize and reconcile a fetched batch into ``result``."""
        result.total_processed = len(deals)
        if not deals:
            self.logger.warning("no_deals_fetched", source=result.source.value)
            result.success = True
            return

        store_locations = await self.gateway.find_stores_by_chain(result.source)

        for deal in deals:
            try:
                await self._process_deal(result, deal, store_locations)
            except Exception as e:
                label = deal.external_id or deal.title
                self.logger.error(
                    "deal_processing_failed",
                    source=result.source.value,
                    deal=label,
                    error=str(e),
                )
                result.errors.append(f'Deal "{label}": {e}')

        result.success = len(result.errors) < len(deals) * self.success_threshold

        self.logger.info(
            "source_aggregation_completed",
            source=result.source.value,
            total_processed=result.total_processed,
            new_deals=result.new_deals,
            updated_deals=result.updated_deals,
            errors=len(result.errors),
            success=result.success,
        )

    async def _process_deal(
        self,
        result: AggregationResult,
        deal: CanonicalDeal,
        store_locations: Sequence[Any],
    ) -> None:
        reasons = DealValidator.validate(deal)
        if reasons:
            raise DealValidationError(reasons)

        normalized = DealNormalizer.normalize(deal, store_locations)

        existing = await self.gateway.find_matching_deal(normalized)
        if existing is not None:
            if has_significant_changes(existing, normalized):
                await self.gateway.update_deal(
                    existing.id,
                    {
                        "title": normalized.title,
                        "description": normalized.description,
                        "original_price": normalized.original_price,
                        "sale_price": normalized.sale_price,
                        "discount_percentage": normalized.discount_percentage,
                        "valid_from": normalized.valid_from,
                        "valid_until": normalized.valid_until,
                        "restrictions": normalized.restrictions,
                        "image_url": normalized.image_url,
                        "scraped_at": normalized.scraped_at,
                    },
                )
                result.updated_deals += 1
            return

        created = await self.gateway.create_deal(normalized)
        location_ids = [location.id for location in normalized.store_locations]
        if location_ids:
            await self.gateway.associate_deal_with_stores(created.id, location_ids)
        result.new_deals += 1

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    async def cleanup_expired_deals(self) -> CleanupResult:
        """Soft-delete every active deal whose validity has ended.

        Each deal is removed independently; failures are collected.
        """
        result = CleanupResult()
        self.logger.info("expired_deals_cleanup_started")

        try:
            expired = await self.gateway.find_expired_deals()
        except Exception as e:
            self.logger.error("expired_deals_lookup_failed", error=str(e), exc_info=True)
            result.errors.append(str(e))
            return result

        for deal in expired:
            try:
                if await self.gateway.delete_deal(deal.id):
                    result.deleted_count += 1
            except Exception as e:
                self.logger.error("expired_deal_delete_failed", deal_id=str(deal.id), error=str(e))
                result.errors.append(f"Deal {deal.id}: {e}")

        self.logger.info(
            "expired_deals_cleanup_completed",
            deleted_count=result.deleted_count,
            errors=len(result.errors),
        )
        return result

    # ------------------------------------------------------------------
    # Stats and lifecycle
    # ------------------------------------------------------------------

    def _update_stats(self, results: Sequence[AggregationResult], processing_time_ms: float) -> None:
        stats = self._stats
        stats.last_run = self._clock()
        stats.total_runs += 1

        if all(r.success for r in results):
            stats.successful_runs += 1
        else:
            stats.failed_runs += 1

        stats.total_deals_processed += sum(r.total_processed for r in results)
        n = stats.total_runs
        stats.average_processing_time_ms = (
            stats.average_processing_time_ms * (n - 1) + processing_time_ms
        ) / n

    def get_stats(self) -> AggregationStats:
        """Snapshot of the run statistics."""
        return dataclasses.replace(self._stats)

    def is_aggregation_running(self) -> bool:
        """True while a full aggregation run is in flight."""
        return self._is_running

    def get_source_status(self) -> Dict[str, Any]:
        """Kroger rate-limit window and scheduled job status, for diagnostics."""
        return {
            "kroger_rate_limit": self.kroger_client.get_rate_limit_status(),
            "jobs": self._scheduler.get_jobs_status() if self._scheduler else {},
        }

    async def cleanup(self) -> None:
        """Stop scheduled jobs and release the scraper's browser."""
        self.stop_scheduled_jobs()
        await self.publix_scraper.cleanup()
        self.logger.info("aggregator_cleanup_complete")
