"""
Plan Service - subscription tiers and entitlement gating

Every gate is a pure function of a tier string (plus timestamps or counts
where needed), so it can run against plans prefetched once per scan cycle.
An unknown or missing tier is treated as the free tier.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, FrozenSet, Iterable, List, Optional
import logging

from sqlalchemy.orm import Session

from mentionradar.core.cache import TTLCache
from mentionradar.core.clock import utc_now, ensure_utc
from mentionradar.db.models import Tenant

logger = logging.getLogger(__name__)

DEFAULT_TIER = "free"
TIER_CACHE_TTL_SECONDS = 300

ALL_PLATFORMS = (
    "reddit", "hackernews", "indiehackers", "producthunt", "googlereviews",
    "youtube", "github", "trustpilot", "x", "devto", "hashnode",
    "appstore", "playstore", "quora", "g2", "yelp", "amazonreviews",
)

PRO_PLATFORMS = (
    "reddit", "hackernews", "producthunt", "googlereviews", "trustpilot",
    "appstore", "playstore", "quora", "youtube",
)


@dataclass(frozen=True)
class PlanLimits:
    name: str
    display_name: str
    monitors: int
    keywords_per_monitor: int
    platforms: FrozenSet[str]
    refresh_delay_hours: int
    manual_scan_cooldown_hours: int
    manual_scan_daily_limit: int
    features: FrozenSet[str] = field(default_factory=frozenset)


FREE_FEATURES = frozenset({"ai.sentiment"})
PRO_FEATURES = FREE_FEATURES | {
    "ai.pain_point_categories",
    "ai.unlimited_analysis",
    "alerts.email",
    "alerts.slack",
    "exports.csv",
}
ENTERPRISE_FEATURES = PRO_FEATURES | {
    "ai.ask",
    "ai.comprehensive_analysis",
    "alerts.webhooks",
    "exports.api",
}

PLANS: Dict[str, PlanLimits] = {
    "free": PlanLimits(
        name="free",
        display_name="Free",
        monitors=1,
        keywords_per_monitor=3,
        platforms=frozenset({"reddit"}),
        refresh_delay_hours=24,
        manual_scan_cooldown_hours=24,
        manual_scan_daily_limit=1,
        features=FREE_FEATURES,
    ),
    "pro": PlanLimits(
        name="pro",
        display_name="Pro",
        monitors=10,
        keywords_per_monitor=10,
        platforms=frozenset(PRO_PLATFORMS),
        refresh_delay_hours=4,
        manual_scan_cooldown_hours=4,
        manual_scan_daily_limit=3,
        features=PRO_FEATURES,
    ),
    "enterprise": PlanLimits(
        name="enterprise",
        display_name="Team",
        monitors=30,
        keywords_per_monitor=20,
        platforms=frozenset(ALL_PLATFORMS),
        refresh_delay_hours=2,
        manual_scan_cooldown_hours=1,
        manual_scan_daily_limit=12,
        features=ENTERPRISE_FEATURES,
    ),
}

TIER_ORDER = ["free", "pro", "enterprise"]


@dataclass
class LimitCheckResult:
    allowed: bool
    current: int
    limit: int
    message: str


@dataclass
class ManualScanCheck:
    can_scan: bool
    cooldown_remaining: Optional[timedelta]
    reason: str
    next_scan_at: Optional[datetime]


def normalize_tier(tier: Optional[str]) -> str:
    if not tier:
        return DEFAULT_TIER
    tier = tier.strip().lower()
    return tier if tier in PLANS else DEFAULT_TIER


def get_plan_limits(tier: Optional[str]) -> PlanLimits:
    return PLANS[normalize_tier(tier)]


def can_access_platform(tier: Optional[str], platform: str) -> bool:
    return platform in get_plan_limits(tier).platforms


def get_allowed_platforms(tier: Optional[str]) -> List[str]:
    allowed = get_plan_limits(tier).platforms
    return [p for p in ALL_PLATFORMS if p in allowed]


def can_access_feature(tier: Optional[str], feature: str) -> bool:
    return feature in get_plan_limits(tier).features


def has_unlimited_ai_analysis(tier: Optional[str]) -> bool:
    return can_access_feature(tier, "ai.unlimited_analysis")


def can_use_webhooks(tier: Optional[str]) -> bool:
    return can_access_feature(tier, "alerts.webhooks")


def minimum_tier_for_platform(platform: str) -> Optional[str]:
    for tier in TIER_ORDER:
        if platform in PLANS[tier].platforms:
            return tier
    return None


def check_keywords_limit(keywords: Iterable[str], tier: Optional[str]) -> LimitCheckResult:
    plan = get_plan_limits(tier)
    current = len([k for k in keywords if k and k.strip()])
    limit = plan.keywords_per_monitor

    if current > limit:
        return LimitCheckResult(
            allowed=False,
            current=current,
            limit=limit,
            message=f"Maximum {limit} keywords allowed on {plan.display_name} plan",
        )
    return LimitCheckResult(
        allowed=True,
        current=current,
        limit=limit,
        message=f"{limit - current} keywords remaining",
    )


def can_create_monitor(tier: Optional[str], current_count: int) -> LimitCheckResult:
    plan = get_plan_limits(tier)
    if current_count >= plan.monitors:
        return LimitCheckResult(
            allowed=False,
            current=current_count,
            limit=plan.monitors,
            message=f"Monitor limit reached ({plan.monitors} on {plan.display_name} plan)",
        )
    return LimitCheckResult(
        allowed=True,
        current=current_count,
        limit=plan.monitors,
        message=f"{plan.monitors - current_count} monitors remaining",
    )


def should_process_monitor(tier: Optional[str], last_checked_at: Optional[datetime], now: Optional[datetime] = None) -> bool:
    """True when the monitor was never checked or the tier's refresh delay has elapsed"""
    if last_checked_at is None:
        return True
    now = ensure_utc(now) if now else utc_now()
    elapsed = now - ensure_utc(last_checked_at)
    return elapsed >= timedelta(hours=get_plan_limits(tier).refresh_delay_hours)


def format_cooldown(remaining: timedelta) -> str:
    total_minutes = int(remaining.total_seconds() // 60)
    hours, minutes = divmod(total_minutes, 60)
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


def can_trigger_manual_scan(tier: Optional[str], last_manual_scan_at: Optional[datetime], now: Optional[datetime] = None) -> ManualScanCheck:
    plan = get_plan_limits(tier)
    if last_manual_scan_at is not None:
        now = ensure_utc(now) if now else utc_now()
        last = ensure_utc(last_manual_scan_at)
        cooldown = timedelta(hours=plan.manual_scan_cooldown_hours)
        elapsed = now - last
        if elapsed < cooldown:
            remaining = cooldown - elapsed
            return ManualScanCheck(
                can_scan=False,
                cooldown_remaining=remaining,
                reason=f"Please wait {format_cooldown(remaining)} before scanning again",
                next_scan_at=last + cooldown,
            )
    return ManualScanCheck(can_scan=True, cooldown_remaining=None, reason="Ready to scan", next_scan_at=None)


class PlanService:
    """Database-facing side of the gate: resolves tier strings for tenants"""

    def __init__(self, db: Session, tier_cache: Optional[TTLCache[str]] = None):
        self.db = db
        # Owned by the caller; a long-lived worker passes one so repeated lookups skip the query
        self.tier_cache = tier_cache

    def get_tenant_tier(self, tenant_id: str) -> str:
        if self.tier_cache is not None:
            return self.tier_cache.get_or_set(tenant_id, lambda: self._load_tier(tenant_id))
        return self._load_tier(tenant_id)

    def _load_tier(self, tenant_id: str) -> str:
        tenant = self.db.query(Tenant).filter(Tenant.id == tenant_id).first()
        if tenant is None:
            logger.warning(f"Tenant {tenant_id} not found, using {DEFAULT_TIER} tier")
            return DEFAULT_TIER
        return normalize_tier(tenant.subscription_tier)

    def prefetch_tiers(self, tenant_ids: Iterable[str]) -> Dict[str, str]:
        """One query for every tenant in a scan cycle"""
        ids = list(set(tenant_ids))
        if not ids:
            return {}
        rows = self.db.query(Tenant.id, Tenant.subscription_tier).filter(Tenant.id.in_(ids)).all()
        tiers = {tenant_id: normalize_tier(tier) for tenant_id, tier in rows}
        for tenant_id in ids:
            tiers.setdefault(tenant_id, DEFAULT_TIER)
        if self.tier_cache is not None:
            for tenant_id, tier in tiers.items():
                self.tier_cache.set(tenant_id, tier)
        return tiers
