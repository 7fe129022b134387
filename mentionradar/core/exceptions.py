"""
Pipeline error taxonomy

Each class maps to one recovery policy:
- ConnectorConfigurationError: skip the platform cycle, other platforms proceed
- TransientUpstreamError: fail the single monitor, retry on the next cycle
- DataIntegrityError: abort the monitor before analysis dispatch
- WebhookDeliveryError: recovered through the delivery retry ladder
"""
from typing import Optional


class MentionRadarError(Exception):
    """Base class for pipeline errors"""
    pass


class ConnectorConfigurationError(MentionRadarError):
    """Raised when a platform connector is missing credentials or settings"""

    def __init__(self, platform: str, message: Optional[str] = None):
        self.platform = platform
        super().__init__(message or f"Connector for {platform} is not configured")


class TransientUpstreamError(MentionRadarError):
    """Raised for timeouts, rate limits and 5xx responses from a platform"""

    def __init__(self, platform: str, message: str, status_code: Optional[int] = None):
        self.platform = platform
        self.status_code = status_code
        super().__init__(message)


class DataIntegrityError(MentionRadarError):
    """Raised when dedup or persist fails for a monitor"""

    def __init__(self, monitor_id: str, message: str):
        self.monitor_id = monitor_id
        super().__init__(message)


class WebhookDeliveryError(MentionRadarError):
    """Raised when a webhook endpoint rejects or cannot receive a payload"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)
