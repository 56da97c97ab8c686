"""
ConnectorRegistry — provides access to the connectors of all providers.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from connectors import eventbrite, facebook, github, google, meetup, outlook, todoist, trello, wunderlist
from connectors.base import Connector
from utils.ids import provider_of

logger = logging.getLogger(__name__)

# ── All known connectors, add new ones here ──────────────────────────────

_ALL_CONNECTORS: List[Connector] = [
    google.CONNECTOR,
    facebook.CONNECTOR,
    outlook.CONNECTOR,
    meetup.CONNECTOR,
    trello.CONNECTOR,
    todoist.CONNECTOR,
    wunderlist.CONNECTOR,
    eventbrite.CONNECTOR,
    github.CONNECTOR,
]


class ConnectorRegistry:
    """Singleton registry of the provider connectors."""

    _instance: Optional["ConnectorRegistry"] = None

    def __new__(cls) -> "ConnectorRegistry":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._connectors = {conn.name: conn for conn in _ALL_CONNECTORS}
            cls._instance._configured = []
            cls._instance._discovered = False
        return cls._instance

    def discover(self) -> None:
        """Log which providers have their secrets set."""
        if self._discovered:
            return
        for conn in _ALL_CONNECTORS:
            if conn.is_configured():
                self._configured.append(conn.name)
                logger.info("Connector registered: %s (%s)", conn.display_name, conn.name)
            else:
                logger.warning("Connector %s skipped, not configured (missing secrets)", conn.name)
        self._discovered = True

    def get(self, provider: str) -> Optional[Connector]:
        """Get a connector by provider name."""
        return self._connectors.get(provider)

    def get_for_source(self, source_id: str) -> Optional[Connector]:
        """Connector of the provider a ``{provider}-{account}`` id belongs to."""
        provider = provider_of(source_id)
        return self._connectors.get(provider) if provider else None

    def list_providers(self) -> List[Dict[str, object]]:
        """Return info about all known connectors."""
        return [
            {
                "provider": c.name,
                "display_name": c.display_name,
                "configured": c.is_configured(),
                "actions": [
                    action
                    for action in (
                        "load_layers", "load_events", "create_event", "patch_event",
                        "delete_event", "load_places", "load_contacts",
                    )
                    if c.supports(action)
                ],
            }
            for c in _ALL_CONNECTORS
        ]

    def list_configured(self) -> List[str]:
        """Return names of configured connectors."""
        return list(self._configured)
