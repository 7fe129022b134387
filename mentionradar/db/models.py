from sqlalchemy import Column, Integer, String, DateTime, Float, Boolean, Text, JSON, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from mentionradar.db.database import Base
from mentionradar.core.clock import utc_now
import uuid


def _uuid() -> str:
    return str(uuid.uuid4())


class Tenant(Base):
    """Account boundary; owns monitors, webhooks and usage"""
    __tablename__ = "tenants"

    id = Column(String(36), primary_key=True, default=_uuid)
    email = Column(String(255), unique=True, index=True, nullable=False)
    subscription_tier = Column(String(20), default="free", nullable=False)  # free, pro, enterprise
    created_at = Column(DateTime(timezone=True), default=utc_now, server_default=func.now())

    monitors = relationship("Monitor", back_populates="tenant")
    webhooks = relationship("Webhook", back_populates="tenant")


class Monitor(Base):
    __tablename__ = "monitors"

    id = Column(String(36), primary_key=True, default=_uuid)
    tenant_id = Column(String(36), ForeignKey("tenants.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)

    # Matching configuration
    keywords = Column(JSON, default=list, nullable=False)
    search_query = Column(Text, nullable=True)  # Boolean expression, overrides keywords when set
    company_name = Column(String(255), nullable=True)

    # Platforms
    platforms = Column(JSON, default=list, nullable=False)
    platform_urls = Column(JSON, default=dict)  # e.g. {"trustpilot": "https://..."}

    is_active = Column(Boolean, default=True, nullable=False)

    # Scan bookkeeping
    last_checked_at = Column(DateTime(timezone=True), nullable=True)
    last_manual_scan_at = Column(DateTime(timezone=True), nullable=True)
    new_match_count = Column(Integer, default=0, nullable=False)
    is_scan_in_progress = Column(Boolean, default=False, nullable=False)
    scan_started_at = Column(DateTime(timezone=True), nullable=True)

    # Active hours (days: 0 = Sunday)
    schedule_enabled = Column(Boolean, default=False, nullable=False)
    schedule_start_hour = Column(Integer, default=9)
    schedule_end_hour = Column(Integer, default=17)
    schedule_days = Column(JSON, nullable=True)
    schedule_timezone = Column(String(64), default="America/New_York")

    # Batch analysis output for high-volume scans
    batch_analysis = Column(JSON, nullable=True)
    last_batch_analyzed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utc_now, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    tenant = relationship("Tenant", back_populates="monitors")
    results = relationship("Result", back_populates="monitor")

    __table_args__ = (
        Index('idx_monitors_active', 'is_active'),
        Index('idx_monitors_scan_in_progress', 'is_scan_in_progress'),
    )


class Result(Base):
    """One discovered content item, unique per monitor by source URL"""
    __tablename__ = "results"

    id = Column(String(36), primary_key=True, default=_uuid)
    monitor_id = Column(String(36), ForeignKey("monitors.id"), nullable=False, index=True)
    platform = Column(String(32), nullable=False, index=True)
    source_url = Column(String(2048), nullable=False)

    title = Column(Text, nullable=False)
    content = Column(Text, nullable=True)
    author = Column(String(255), nullable=True)
    posted_at = Column(DateTime(timezone=True), nullable=True)
    engagement = Column(Integer, nullable=True)
    platform_metadata = Column("metadata", JSON, nullable=True)

    # Enrichment, written back by the analysis workers
    sentiment = Column(String(16), nullable=True)  # positive, negative, neutral
    sentiment_score = Column(Float, nullable=True)
    conversation_category = Column(String(32), nullable=True)
    ai_summary = Column(Text, nullable=True)
    ai_analysis = Column(JSON, nullable=True)
    lead_score = Column(Integer, nullable=True)
    lead_score_factors = Column(JSON, nullable=True)
    batch_analyzed = Column(Boolean, default=False, nullable=False)
    analyzed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utc_now, server_default=func.now(), index=True)

    monitor = relationship("Monitor", back_populates="results")

    __table_args__ = (
        UniqueConstraint('monitor_id', 'source_url', name='uq_results_monitor_source_url'),
    )


class UsageRecord(Base):
    """Per-tenant monthly usage counters"""
    __tablename__ = "usage_records"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(String(36), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    billing_period = Column(String(7), nullable=False)  # YYYY-MM
    results_count = Column(Integer, default=0, nullable=False)
    ai_calls_count = Column(Integer, default=0, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    __table_args__ = (
        UniqueConstraint('tenant_id', 'billing_period', name='uq_usage_tenant_period'),
    )


class Webhook(Base):
    __tablename__ = "webhooks"

    id = Column(String(36), primary_key=True, default=_uuid)
    tenant_id = Column(String(36), ForeignKey("tenants.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    url = Column(String(2048), nullable=False)
    secret = Column(String(128), nullable=False)
    events = Column(JSON, default=lambda: ["*"], nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utc_now, server_default=func.now())

    tenant = relationship("Tenant", back_populates="webhooks")
    deliveries = relationship("WebhookDelivery", back_populates="webhook")


class WebhookDelivery(Base):
    """One push of an event payload to one webhook endpoint"""
    __tablename__ = "webhook_deliveries"

    id = Column(String(36), primary_key=True, default=_uuid)
    webhook_id = Column(String(36), ForeignKey("webhooks.id", ondelete="CASCADE"), nullable=False, index=True)
    event_type = Column(String(64), nullable=False)
    payload = Column(JSON, nullable=False)

    status = Column(String(16), default="pending", nullable=False)  # pending, success, retrying, failed
    attempt_count = Column(Integer, default=0, nullable=False)
    max_attempts = Column(Integer, default=5, nullable=False)
    next_retry_at = Column(DateTime(timezone=True), nullable=True)
    status_code = Column(Integer, nullable=True)
    error_message = Column(Text, nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, server_default=func.now(), index=True)

    webhook = relationship("Webhook", back_populates="deliveries")

    __table_args__ = (
        Index('idx_webhook_deliveries_retry', 'status', 'next_retry_at'),
    )
