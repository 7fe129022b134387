"""
Ingestion and dedup pipeline

One platform's scan cycle:

    fetch-monitors -> prefetch-plans -> per monitor:
        gate -> fetch-candidates (fetch + match) -> persist (dedup + insert
        + usage) -> dispatch-analysis -> update-stats

Every stage goes through the StageRunner, keyed by (cycle id, stage,
platform:monitor), so resuming a cycle after a crash skips work that
already finished. Persist is also idempotent on its own because dedup
filters out source URLs that are already stored.

Failures stay inside one monitor. A connector timeout or upstream error
marks that monitor failed and the cycle moves on; a persist failure rolls
back and stops that monitor before analysis is dispatched.
"""
import asyncio
import logging
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import httpx
from celery.exceptions import SoftTimeLimitExceeded
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from mentionradar.core.cache import TTLCache
from mentionradar.core.clock import utc_now
from mentionradar.core.config import get_settings
from mentionradar.core.exceptions import (
    ConnectorConfigurationError,
    DataIntegrityError,
    MentionRadarError,
    TransientUpstreamError,
)
from mentionradar.core.http_client import HTTPClient
from mentionradar.core.monitoring import get_metrics
from mentionradar.core.stage_runner import StageRunner
from mentionradar.db.models import Monitor, Result
from mentionradar.services import plan_service
from mentionradar.services.analysis_dispatcher import AnalysisDispatcher
from mentionradar.services.connectors.base import BaseConnector, CandidateItem
from mentionradar.services.connectors.registry import ConnectorRegistry
from mentionradar.services.content_matcher import MonitorMatchConfig, content_matches_monitor
from mentionradar.services.monitor_schedule import MonitorSchedule, is_monitor_schedule_active
from mentionradar.services.scan_state import claim_scan, release_scan
from mentionradar.services.stagger import get_stagger_delay, format_stagger_duration
from mentionradar.services.usage_tracking_service import UsageTrackingService

logger = logging.getLogger(__name__)

PROCESSED = "processed"
SKIPPED = "skipped"
FAILED = "failed"


@dataclass
class MonitorOutcome:
    monitor_id: str
    platform: str
    status: str
    reason: str = ""
    fetched: int = 0
    matched: int = 0
    inserted: int = 0
    events: int = 0


@dataclass
class CycleReport:
    cycle_id: str
    platform: str
    status: str = "completed"
    reason: str = ""
    monitors: List[MonitorOutcome] = field(default_factory=list)

    def count(self, status: str) -> int:
        return sum(1 for m in self.monitors if m.status == status)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cycle_id": self.cycle_id,
            "platform": self.platform,
            "status": self.status,
            "reason": self.reason,
            "monitors": len(self.monitors),
            "processed": self.count(PROCESSED),
            "skipped": self.count(SKIPPED),
            "failed": self.count(FAILED),
            "inserted": sum(m.inserted for m in self.monitors),
        }


class IngestionService:
    def __init__(
        self,
        db: Session,
        connectors: ConnectorRegistry,
        dispatcher: AnalysisDispatcher,
        stage_runner: StageRunner,
        http_client: HTTPClient,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], datetime] = utc_now,
        rng: Optional[Callable[[], float]] = None,
        fetch_timeout: Optional[float] = None,
    ):
        self.db = db
        self.connectors = connectors
        self.dispatcher = dispatcher
        self.runner = stage_runner
        self.http_client = http_client
        self.sleep = sleep
        self.clock = clock
        self.rng = rng
        self.cycle_started: Optional[datetime] = None
        self.fetch_timeout = fetch_timeout if fetch_timeout is not None else get_settings().connector_timeout_seconds
        self.plans = plan_service.PlanService(db, tier_cache=TTLCache(plan_service.TIER_CACHE_TTL_SECONDS))
        self.usage = UsageTrackingService(db)
        self.metrics = get_metrics()

    # ------------------------------------------------------------------
    # Cycles
    # ------------------------------------------------------------------

    async def run_platform_cycle(self, platform: str) -> CycleReport:
        """Scan every due monitor for one platform"""
        report = CycleReport(cycle_id=self.runner.cycle_id, platform=platform)

        try:
            connector = self.connectors.get(platform)
        except ConnectorConfigurationError as e:
            logger.warning(f"Skipping {platform} scan cycle: {e}", extra={"platform": platform})
            self.metrics.scan_cycles_total.labels(platform=platform, outcome="unconfigured").inc()
            report.status = SKIPPED
            report.reason = str(e)
            return report

        pairs = await self.runner.run("fetch-monitors", lambda: self._active_monitors(platform), platform)
        tenant_ids = [tenant_id for _, tenant_id in pairs]
        tiers = await self.runner.run("prefetch-plans", lambda: self.plans.prefetch_tiers(tenant_ids), platform)

        self.cycle_started = self.clock()
        total = len(pairs)
        logger.info(f"Starting {platform} cycle {self.runner.cycle_id} with {total} active monitors")

        for index, (monitor_id, _) in enumerate(pairs):
            outcome = await self._run_monitor(connector, platform, monitor_id, tiers, index, total, manual=False)
            report.monitors.append(outcome)

        self.metrics.scan_cycles_total.labels(platform=platform, outcome="completed").inc()
        logger.info(f"Finished {platform} cycle {self.runner.cycle_id}: {report.to_dict()}")
        return report

    async def run_manual_scan(self, monitor_id: str) -> List[MonitorOutcome]:
        """
        Scan one monitor on all of its platforms now.

        The caller has already claimed the in-progress flag; it is released
        here whatever happens.
        """
        outcomes: List[MonitorOutcome] = []
        try:
            monitor = self.db.get(Monitor, monitor_id)
            if monitor is None:
                logger.warning(f"Manual scan requested for missing monitor {monitor_id}")
                return outcomes

            tiers = {monitor.tenant_id: self.plans.get_tenant_tier(monitor.tenant_id)}
            for platform in list(monitor.platforms or []):
                try:
                    connector = self.connectors.get(platform)
                except ConnectorConfigurationError as e:
                    logger.warning(f"Manual scan skipping {platform}: {e}", extra={"monitor_id": monitor_id})
                    outcomes.append(MonitorOutcome(monitor_id, platform, SKIPPED, "connector_not_configured"))
                    continue
                outcomes.append(await self._run_monitor(connector, platform, monitor_id, tiers, 0, 1, manual=True))
        finally:
            release_scan(self.db, monitor_id)
        return outcomes

    # ------------------------------------------------------------------
    # Per monitor
    # ------------------------------------------------------------------

    async def _run_monitor(
        self,
        connector: BaseConnector,
        platform: str,
        monitor_id: str,
        tiers: Dict[str, str],
        index: int,
        total: int,
        manual: bool,
    ) -> MonitorOutcome:
        entity = f"{platform}:{monitor_id}"
        completed, stored = self.runner.lookup("monitor-complete", entity)
        if completed:
            return MonitorOutcome(**stored)

        try:
            outcome = await self._process_monitor(connector, platform, monitor_id, tiers, index, total, manual)
        except (TransientUpstreamError, DataIntegrityError) as e:
            self.db.rollback()
            logger.warning(f"Monitor {monitor_id} failed on {platform}: {e}", extra={"monitor_id": monitor_id, "platform": platform})
            outcome = MonitorOutcome(monitor_id, platform, FAILED, str(e))
        except MentionRadarError as e:
            self.db.rollback()
            logger.error(f"Monitor {monitor_id} failed on {platform}: {e}", extra={"monitor_id": monitor_id, "platform": platform})
            outcome = MonitorOutcome(monitor_id, platform, FAILED, str(e))
        except SoftTimeLimitExceeded:
            self.db.rollback()
            logger.warning(f"Soft time limit reached while processing monitor {monitor_id} on {platform}")
            raise
        except Exception as e:
            # Unexpected errors must not stop the other tenants' monitors
            self.db.rollback()
            logger.exception(f"Unexpected error processing monitor {monitor_id} on {platform}")
            outcome = MonitorOutcome(monitor_id, platform, FAILED, f"unexpected_error: {e}")

        self.metrics.monitors_processed_total.labels(platform=platform, outcome=outcome.status).inc()
        if outcome.status != FAILED:
            await self.runner.run("monitor-complete", lambda: asdict(outcome), entity)
        return outcome

    async def _process_monitor(
        self,
        connector: BaseConnector,
        platform: str,
        monitor_id: str,
        tiers: Dict[str, str],
        index: int,
        total: int,
        manual: bool,
    ) -> MonitorOutcome:
        monitor = self.db.get(Monitor, monitor_id)
        if monitor is None or not monitor.is_active:
            return MonitorOutcome(monitor_id, platform, SKIPPED, "inactive")

        tier = tiers.get(monitor.tenant_id, plan_service.DEFAULT_TIER)
        reason = self.gate(monitor, platform, tier, manual)
        if reason:
            logger.debug(f"Gate skipped monitor {monitor_id} on {platform}: {reason}")
            return MonitorOutcome(monitor_id, platform, SKIPPED, reason)

        if manual:
            return await self._scan(connector, platform, monitor, index, total, manual)

        if not claim_scan(self.db, monitor_id, self.clock()):
            return MonitorOutcome(monitor_id, platform, SKIPPED, "scan_in_progress")
        try:
            return await self._scan(connector, platform, self.db.get(Monitor, monitor_id), index, total, manual)
        except Exception:
            self.db.rollback()
            raise
        finally:
            release_scan(self.db, monitor_id)

    def _seconds_into_cycle(self) -> float:
        if self.cycle_started is None:
            return 0.0
        return max(0.0, (self.clock() - self.cycle_started).total_seconds())

    def gate(self, monitor: Monitor, platform: str, tier: str, manual: bool = False) -> Optional[str]:
        """Reason to skip the monitor without fetching, or None"""
        if not plan_service.can_access_platform(tier, platform):
            return "platform_not_allowed"
        if manual:
            return None
        if not is_monitor_schedule_active(MonitorSchedule.from_monitor(monitor), self.clock()):
            return "outside_active_hours"
        if not plan_service.should_process_monitor(tier, monitor.last_checked_at, self.clock()):
            return "refresh_delay"
        return None

    async def _scan(
        self,
        connector: BaseConnector,
        platform: str,
        monitor: Monitor,
        index: int,
        total: int,
        manual: bool,
    ) -> MonitorOutcome:
        entity = f"{platform}:{monitor.id}"
        monitor_id = monitor.id
        tenant_id = monitor.tenant_id

        if not manual and not self.runner.is_completed("fetch-candidates", entity):
            delay_ms = get_stagger_delay(platform, index, total, rng=self.rng)
            # Offsets are measured from the cycle start, not from the previous fetch
            wait = delay_ms / 1000 - self._seconds_into_cycle()
            if wait > 0:
                logger.debug(f"Staggering monitor {monitor_id} by {format_stagger_duration(int(wait * 1000))}")
                await self.sleep(wait)

        fetched = await self.runner.run("fetch-candidates", lambda: self._fetch_and_match(connector, platform, monitor), entity)
        candidates = [CandidateItem.from_dict(item) for item in fetched["matched"]]

        result_ids = await self.runner.run(
            "persist", lambda: self._persist_new_results(monitor_id, tenant_id, platform, candidates), entity
        )

        # Only reached once the new rows are committed
        events = await self.runner.run(
            "dispatch-analysis",
            lambda: len(self.dispatcher.dispatch(monitor_id, tenant_id, platform, result_ids)),
            entity,
        )

        await self.runner.run("update-stats", lambda: self._update_stats(monitor_id, len(result_ids)), entity)

        return MonitorOutcome(
            monitor_id=monitor_id,
            platform=platform,
            status=PROCESSED,
            fetched=fetched["fetched"],
            matched=len(candidates),
            inserted=len(result_ids),
            events=events,
        )

    async def _fetch_and_match(self, connector: BaseConnector, platform: str, monitor: Monitor) -> Dict[str, Any]:
        try:
            with self.metrics.time_fetch(platform):
                items = await asyncio.wait_for(connector.fetch(monitor, self.http_client), timeout=self.fetch_timeout)
        except asyncio.TimeoutError as e:
            raise TransientUpstreamError(platform, f"Connector fetch timed out after {self.fetch_timeout}s") from e
        except httpx.HTTPError as e:
            raise TransientUpstreamError(platform, f"Connector fetch failed: {e}") from e

        config = MonitorMatchConfig.from_monitor(monitor)
        matched = []
        for item in items:
            decision = content_matches_monitor(item.to_matchable(platform), config)
            if decision.matches:
                item.metadata.setdefault("match_type", decision.match_type)
                item.metadata.setdefault("matched_terms", decision.matched_terms)
                matched.append(item.to_dict())

        logger.debug(f"Monitor {monitor.id} on {platform}: {len(items)} fetched, {len(matched)} matched")
        return {"fetched": len(items), "matched": matched}

    def _persist_new_results(self, monitor_id: str, tenant_id: str, platform: str, candidates: List[CandidateItem]) -> List[str]:
        """
        Insert candidates whose source URL is not stored yet for this monitor.

        One existence query for the whole batch. The inserts and the usage
        increment commit together or not at all.
        """
        unique: Dict[str, CandidateItem] = {}
        for item in candidates:
            if item.source_url:
                unique.setdefault(item.source_url, item)
        if not unique:
            return []

        try:
            existing = {
                url
                for (url,) in self.db.query(Result.source_url).filter(
                    Result.monitor_id == monitor_id,
                    Result.source_url.in_(list(unique)),
                )
            }
            new_items = [item for url, item in unique.items() if url not in existing]
            if not new_items:
                return []

            rows = [
                Result(
                    monitor_id=monitor_id,
                    platform=platform,
                    source_url=item.source_url,
                    title=item.title,
                    content=item.body,
                    author=item.author,
                    posted_at=item.posted_at,
                    engagement=item.engagement,
                    platform_metadata=item.metadata,
                )
                for item in new_items
            ]
            self.db.add_all(rows)
            self.usage.increment_results_count(tenant_id, len(rows), self.clock())
            self.db.flush()
            result_ids = [row.id for row in rows]
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise DataIntegrityError(monitor_id, f"Failed to persist results: {e}") from e

        self.metrics.results_inserted_total.labels(platform=platform).inc(len(result_ids))
        logger.info(
            f"Persisted {len(result_ids)} new results ({len(existing)} already stored)",
            extra={"monitor_id": monitor_id, "tenant_id": tenant_id, "platform": platform},
        )
        return result_ids

    def _update_stats(self, monitor_id: str, inserted: int) -> Dict[str, int]:
        monitor = self.db.get(Monitor, monitor_id)
        monitor.last_checked_at = self.clock()
        monitor.new_match_count = (monitor.new_match_count or 0) + inserted
        self.db.commit()
        return {"inserted": inserted}

    def _active_monitors(self, platform: str) -> List[Tuple[str, str]]:
        rows = (
            self.db.query(Monitor.id, Monitor.tenant_id, Monitor.platforms)
            .filter(Monitor.is_active.is_(True))
            .order_by(Monitor.created_at, Monitor.id)
            .all()
        )
        return [[monitor_id, tenant_id] for monitor_id, tenant_id, platforms in rows if platform in (platforms or [])]
