"""
Connector registry

Maps platform identifiers to connector instances. Platforms without a
registered connector, or whose connector lacks credentials, are reported
as configuration errors and their scan cycle is skipped.
"""
import logging
from typing import Dict, List, Optional

from mentionradar.core.config import Settings, get_settings
from mentionradar.core.exceptions import ConnectorConfigurationError
from mentionradar.services.connectors.base import BaseConnector
from mentionradar.services.connectors.hackernews import HackerNewsConnector
from mentionradar.services.connectors.reddit import RedditConnector

logger = logging.getLogger(__name__)


class ConnectorRegistry:
    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self._connectors: Dict[str, BaseConnector] = {}

    def register(self, connector: BaseConnector) -> None:
        self._connectors[connector.platform] = connector

    def platforms(self) -> List[str]:
        return sorted(self._connectors)

    def get(self, platform: str) -> BaseConnector:
        """
        Return the connector for a platform.

        Raises:
            ConnectorConfigurationError: no connector, or missing credentials
        """
        connector = self._connectors.get(platform)
        if connector is None:
            raise ConnectorConfigurationError(platform, f"No connector registered for {platform}")
        missing = connector.missing_settings(self.settings)
        if missing:
            raise ConnectorConfigurationError(
                platform, f"Connector for {platform} is missing settings: {', '.join(missing)}"
            )
        return connector

    def is_available(self, platform: str) -> bool:
        try:
            self.get(platform)
        except ConnectorConfigurationError:
            return False
        return True


def build_default_registry(settings: Optional[Settings] = None) -> ConnectorRegistry:
    registry = ConnectorRegistry(settings)
    registry.register(HackerNewsConnector())
    registry.register(RedditConnector(registry.settings))
    return registry
