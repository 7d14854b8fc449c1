"""
Client for the composite / closing odds feed.

The feed serves upcoming match snapshots (``GET /market``) and, per time
window, the best-available entry price and the composite "closing" price
for each 1X2 selection of upcoming matches:

    GET {ODDS_FEED_URL}/clv/opportunities?window=T-24to2
    Authorization: Bearer {ODDS_FEED_API_KEY}

    {"items": [{"match_id": ..., "league": ..., "selection": "H",
                "entry_odds": 2.10, "close_odds": 1.95, ...}, ...]}

Older deployments return the list under ``opportunities`` instead of
``items``; both are accepted.
"""

import logging
import os
from typing import Any, Dict, List, Optional

import requests

from edge_engine.services.clv import WINDOW_ALL, validate_window

logger = logging.getLogger(__name__)

FEED_URL = os.getenv("ODDS_FEED_URL", "http://localhost:8001")
FEED_API_KEY = os.getenv("ODDS_FEED_API_KEY")
FEED_TIMEOUT = float(os.getenv("ODDS_FEED_TIMEOUT", "10"))


class OddsFeedError(RuntimeError):
    """The odds feed was unreachable or returned a non-2xx response."""


class OddsFeedClient:
    """Client for the closing-odds feed"""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: float = FEED_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = (base_url or FEED_URL).rstrip("/")
        self.api_key = api_key or FEED_API_KEY
        if not self.api_key:
            raise ValueError("ODDS_FEED_API_KEY not set in environment")
        self.timeout = timeout
        self.session = session or requests.Session()

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Accept": "application/json",
        }

    def get_clv_items(self, window: str = WINDOW_ALL) -> List[Dict[str, Any]]:
        """
        Fetch raw CLV feed items for a time window.

        Raises:
            ValueError: Unknown window label.
            OddsFeedError: Transport failure or non-2xx status.
        """
        window = validate_window(window)
        url = f"{self.base_url}/clv/opportunities"
        params = {"window": window}

        try:
            response = self.session.get(
                url, params=params, headers=self._headers(), timeout=self.timeout
            )
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            logger.error("Odds feed error (window=%s): %s", window, e)
            raise OddsFeedError(f"Odds feed request failed: {e}") from e

        data = response.json()
        if isinstance(data, list):
            items = data
        else:
            items = data.get("items")
            if items is None:
                items = data.get("opportunities") or []

        logger.info("Odds feed: %d items fetched (window=%s)", len(items), window)
        return items

    def get_upcoming_matches(self, limit: int = 100) -> List[Dict[str, Any]]:
        """
        Fetch upcoming matches with their model and secondary-market snapshots.

        Raises:
            OddsFeedError: Transport failure or non-2xx status.
        """
        url = f"{self.base_url}/market"
        params = {"status": "upcoming", "limit": limit}

        try:
            response = self.session.get(
                url, params=params, headers=self._headers(), timeout=self.timeout
            )
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            logger.error("Odds feed error fetching matches: %s", e)
            raise OddsFeedError(f"Odds feed request failed: {e}") from e

        matches = response.json().get("matches") or []
        logger.info("Odds feed: %d upcoming matches fetched", len(matches))
        return matches
