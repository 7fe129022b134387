"""
Prometheus metrics and Sentry error tracking for the ingestion and
notification pipeline
"""
import logging
import time
from contextlib import contextmanager

from prometheus_client import Counter, Histogram, Gauge, CollectorRegistry, generate_latest, CONTENT_TYPE_LATEST
import sentry_sdk
from sentry_sdk.integrations.celery import CeleryIntegration
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

logger = logging.getLogger(__name__)


class PipelineMetrics:
    """Prometheus metrics collector for scans, analysis and webhooks"""

    def __init__(self):
        self.registry = CollectorRegistry()

        # Scan metrics
        self.scan_cycles_total = Counter(
            'scan_cycles_total',
            'Total platform scan cycles',
            ['platform', 'outcome'],
            registry=self.registry
        )

        self.monitors_processed_total = Counter(
            'monitors_processed_total',
            'Monitors processed per platform cycle',
            ['platform', 'outcome'],
            registry=self.registry
        )

        self.results_inserted_total = Counter(
            'results_inserted_total',
            'New results persisted after dedup',
            ['platform'],
            registry=self.registry
        )

        self.connector_fetch_duration_seconds = Histogram(
            'connector_fetch_duration_seconds',
            'Connector fetch duration in seconds',
            ['platform'],
            registry=self.registry
        )

        # Analysis metrics
        self.analysis_events_total = Counter(
            'analysis_events_total',
            'Enrichment events emitted',
            ['mode'],
            registry=self.registry
        )

        # Webhook metrics
        self.webhook_deliveries_total = Counter(
            'webhook_deliveries_total',
            'Webhook delivery attempts by resulting status',
            ['status', 'target'],
            registry=self.registry
        )

        self.webhook_retry_backlog = Gauge(
            'webhook_retry_backlog',
            'Deliveries picked up by the last retry sweep',
            registry=self.registry
        )

        self.manual_scans_total = Counter(
            'manual_scans_total',
            'Manual scan requests by outcome',
            ['outcome'],
            registry=self.registry
        )

    @contextmanager
    def time_fetch(self, platform: str):
        """Time a connector fetch for the given platform"""
        start = time.perf_counter()
        try:
            yield
        finally:
            self.connector_fetch_duration_seconds.labels(platform=platform).observe(time.perf_counter() - start)

    def export(self) -> bytes:
        return generate_latest(self.registry)

    @property
    def content_type(self) -> str:
        return CONTENT_TYPE_LATEST


_metrics = None


def get_metrics() -> PipelineMetrics:
    """Get the process-wide metrics collector"""
    global _metrics
    if _metrics is None:
        _metrics = PipelineMetrics()
    return _metrics


def _filter_sentry_events(event, hint):
    """Drop health probes and strip credentials before events leave the process"""
    if event.get("transaction") in ("/health", "/metrics"):
        return None
    headers = event.get("request", {}).get("headers")
    if headers:
        for header in ("authorization", "cookie", "x-tenant-id"):
            if header in headers:
                headers[header] = "[Filtered]"
    return event


def init_error_tracking(component: str) -> bool:
    """
    Initialize Sentry when SENTRY_DSN is configured.

    Args:
        component: "api" or "worker", set as a tag on every event

    Returns:
        True when error tracking is active
    """
    from mentionradar.core.config import get_settings

    settings = get_settings()
    if not settings.sentry_dsn:
        logger.info("Sentry DSN not configured, error tracking disabled")
        return False

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.environment,
        traces_sample_rate=settings.sentry_traces_sample_rate,
        send_default_pii=False,
        attach_stacktrace=True,
        integrations=[
            FastApiIntegration(),
            SqlalchemyIntegration(),
            CeleryIntegration(),
            LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
        ],
        before_send=_filter_sentry_events,
    )
    sentry_sdk.set_tag("service", "mentionradar")
    sentry_sdk.set_tag("component", component)
    logger.info(f"Sentry initialized for {settings.environment} ({component})")
    return True
