"""Market insights lookups with a bounded, per-service cache."""

import logging

from loadscout.core.cache import TTLCache
from loadscout.core.config import InsightsCacheConfig
from loadscout.core.schemas import MarketInsights
from loadscout.platforms.base import LoadBoardClient
from loadscout.vault.credentials import CredentialVault

logger = logging.getLogger(__name__)


class MarketInsightsService:
    """Fetches market conditions as a user and caches them per
    (user, equipment, distance type).

    A ``None`` result (provider exposes no insights endpoint) is not cached,
    so the lookup is retried on the next call.
    """

    def __init__(
        self,
        vault: CredentialVault,
        client: LoadBoardClient,
        cache: TTLCache[MarketInsights] | None = None,
        config: InsightsCacheConfig | None = None,
    ) -> None:
        config = config or InsightsCacheConfig()
        self._vault = vault
        self._client = client
        self._cache: TTLCache[MarketInsights] = cache or TTLCache(
            config.max_entries, config.ttl_seconds,
        )

    async def get(
        self,
        user_id: str,
        equipment_type: str = "DRY_VAN",
        distance_type: str = "Long",
    ) -> MarketInsights | None:
        key = (user_id, equipment_type, distance_type)
        cached = self._cache.get(key)
        if cached is not None:
            logger.debug("Market insights cache hit for user %s", user_id)
            return cached

        credentials = self._vault.load(user_id)
        insights = await self._client.fetch_market_insights(
            credentials.session_cookie.get_secret_value(),
            credentials.csrf_token.get_secret_value(),
            equipment_type,
            distance_type,
        )
        if insights is not None:
            self._cache.set(key, insights)
        return insights

    def invalidate(
        self, user_id: str, equipment_type: str = "DRY_VAN", distance_type: str = "Long",
    ) -> None:
        self._cache.evict((user_id, equipment_type, distance_type))
