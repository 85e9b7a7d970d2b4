"""Abstract base class for load-board clients."""

from abc import ABC, abstractmethod

from loadscout.core.schemas import ConnectionCheck, LoadRecord, MarketInsights, SearchCriteria


class LoadBoardClient(ABC):
    """Base class that every load-board client must implement.

    Implementations are stateless with respect to users: every call carries
    the decrypted session it should act as.
    """

    @property
    @abstractmethod
    def provider_id(self) -> str:
        """Unique identifier for this provider (e.g. 'cloudtrucks')."""

    @abstractmethod
    async def fetch_loads(
        self,
        session_cookie: str,
        csrf_token: str,
        criteria: SearchCriteria,
        timeout_ms: int,
    ) -> list[LoadRecord]:
        """Run one authenticated query and return normalized loads."""

    @abstractmethod
    async def test_connection(self, session_cookie: str, csrf_token: str) -> ConnectionCheck:
        """Validate a session without fetching load data."""

    @abstractmethod
    async def fetch_market_insights(
        self,
        session_cookie: str,
        csrf_token: str,
        equipment_type: str = "DRY_VAN",
        distance_type: str = "Long",
    ) -> MarketInsights | None:
        """Return market conditions, or None when the provider does not expose them."""
