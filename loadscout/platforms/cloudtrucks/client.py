"""CloudTrucks client: authenticated load queries over the provider's private API.

Flow for ``fetch_loads``:
  1. POST the query payload to ``/api/v2/query_loads_async``
  2. If the response embeds loads, normalize them directly
  3. Otherwise read ``channel_name`` and collect pushed loads from the feed
Every step shares one deadline derived from ``timeout_ms``.
"""

import asyncio
import logging
from types import TracebackType
from typing import Any

import httpx

from loadscout.core.config import ProviderConfig
from loadscout.core.errors import ApiAuthError, ApiRequestError, ApiTimeoutError
from loadscout.core.schemas import ConnectionCheck, LoadRecord, MarketInsights, SearchCriteria
from loadscout.platforms.base import LoadBoardClient
from loadscout.platforms.cloudtrucks.feed import LoadFeed, PusherFeed
from loadscout.platforms.cloudtrucks.parser import (
    extract_inline_loads,
    normalize_market_insights,
    parse_loads,
)
from loadscout.platforms.cloudtrucks.payload import build_auth_headers, build_query_payload

logger = logging.getLogger(__name__)

QUERY_PATH = "/api/v2/query_loads_async"
CONNECTION_CHECK_PATH = "/api/v1/saved-searches/"
MARKET_INSIGHTS_PATHS = (
    "/api/v1/market-conditions/",
    "/api/v2/market-conditions/",
    "/api/v1/market-insights/",
    "/api/v2/market-insights/",
    "/api/v1/heat-map/",
    "/api/v1/market/",
)
AUTH_STATUSES = frozenset({401, 403})
# Raised while httpx builds the request, before anything is sent.
REQUEST_BUILD_ERRORS = (httpx.InvalidURL, UnicodeEncodeError)
# Extra time the feed gets past its own deadline to close the socket.
FEED_GRACE_S = 5.0


class CloudTrucksClient(LoadBoardClient):
    """Stateless provider client. Owns one httpx.AsyncClient for connection reuse.

    ``transport`` and ``feed`` are injectable so tests can run without a network.
    """

    def __init__(
        self,
        config: ProviderConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        feed: LoadFeed | None = None,
    ) -> None:
        self._config = config
        self._http = httpx.AsyncClient(
            base_url=config.base_url,
            transport=transport,
            timeout=config.request_timeout_ms / 1000,
        )
        self._feed = feed or PusherFeed(config.pusher_app_key, config.pusher_cluster)

    @property
    def provider_id(self) -> str:
        return "cloudtrucks"

    async def __aenter__(self) -> "CloudTrucksClient":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    def _headers(self, session_cookie: str, csrf_token: str) -> dict[str, str]:
        return build_auth_headers(
            session_cookie,
            csrf_token,
            user_agent=self._config.user_agent,
            origin=self._config.base_url,
        )

    # --- Load queries ---

    async def fetch_loads(
        self,
        session_cookie: str,
        csrf_token: str,
        criteria: SearchCriteria,
        timeout_ms: int,
    ) -> list[LoadRecord]:
        loop = asyncio.get_running_loop()
        timeout_s = timeout_ms / 1000
        deadline = loop.time() + timeout_s

        body = await self._start_query(session_cookie, csrf_token, criteria, timeout_s)

        inline = extract_inline_loads(body)
        if inline is not None:
            loads = parse_loads(inline)
            logger.debug("Query returned %d inline loads", len(loads))
            return loads

        channel_name = body.get("channel_name")
        if not channel_name:
            msg = "No channel name returned from query endpoint"
            raise ApiRequestError(msg)

        remaining = deadline - loop.time()
        if remaining <= 0:
            msg = f"Query exceeded {timeout_ms} ms before results were streamed"
            raise ApiTimeoutError(msg)
        try:
            loads = await asyncio.wait_for(
                self._feed.collect(channel_name, remaining), remaining + FEED_GRACE_S,
            )
        except asyncio.TimeoutError as e:
            msg = f"Load feed did not finish within {timeout_ms} ms"
            raise ApiTimeoutError(msg) from e
        logger.debug("Collected %d loads from feed", len(loads))
        return loads

    async def _start_query(
        self,
        session_cookie: str,
        csrf_token: str,
        criteria: SearchCriteria,
        timeout_s: float,
    ) -> dict[str, Any]:
        headers = self._headers(session_cookie, csrf_token)
        headers["content-type"] = "application/json"
        try:
            response = await self._http.post(
                QUERY_PATH,
                json=build_query_payload(criteria),
                headers=headers,
                timeout=timeout_s,
            )
        except httpx.TimeoutException as e:
            msg = f"Query request timed out after {timeout_s:.1f}s"
            raise ApiTimeoutError(msg) from e
        except (httpx.HTTPError, *REQUEST_BUILD_ERRORS) as e:
            msg = f"Query request failed: {e}"
            raise ApiRequestError(msg) from e

        _raise_for_status(response)
        try:
            body = response.json()
        except ValueError as e:
            msg = "Query response is not JSON"
            raise ApiRequestError(msg, response.status_code) from e
        if not isinstance(body, dict):
            msg = "Query response has an unexpected shape"
            raise ApiRequestError(msg, response.status_code)
        return body

    # --- Session check ---

    async def test_connection(self, session_cookie: str, csrf_token: str) -> ConnectionCheck:
        try:
            response = await self._http.get(
                CONNECTION_CHECK_PATH,
                headers=self._headers(session_cookie, csrf_token),
                timeout=self._config.connection_check_timeout_ms / 1000,
            )
        except (httpx.HTTPError, *REQUEST_BUILD_ERRORS) as e:
            return ConnectionCheck(success=False, error=str(e) or type(e).__name__)
        if response.is_success:
            return ConnectionCheck(success=True)
        return ConnectionCheck(success=False, error=f"Status {response.status_code}")

    # --- Market insights ---

    async def fetch_market_insights(
        self,
        session_cookie: str,
        csrf_token: str,
        equipment_type: str = "DRY_VAN",
        distance_type: str = "Long",
    ) -> MarketInsights | None:
        """Try each known endpoint; None means the provider exposes none of them.

        Each request is capped at ``connection_check_timeout_ms`` and all of
        them together at ``request_timeout_ms``.
        """
        headers = self._headers(session_cookie, csrf_token)
        headers["referer"] = f"{self._config.base_url}/market-conditions/"
        params = {"equipment": equipment_type, "distance_type": distance_type}
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._config.request_timeout_ms / 1000
        per_request_s = self._config.connection_check_timeout_ms / 1000

        for path in MARKET_INSIGHTS_PATHS:
            remaining = deadline - loop.time()
            if remaining <= 0:
                logger.info("Market insights lookup ran out of time before %s", path)
                return None
            try:
                response = await self._http.get(
                    path,
                    params=params,
                    headers=headers,
                    timeout=min(per_request_s, remaining),
                )
            except (httpx.HTTPError, *REQUEST_BUILD_ERRORS) as e:
                logger.debug("Market insights %s failed: %s", path, e)
                continue
            if response.status_code != 200:
                logger.debug("Market insights %s returned %d", path, response.status_code)
                continue
            try:
                data = response.json()
            except ValueError:
                logger.debug("Market insights %s returned non-JSON", path)
                continue
            logger.info("Market insights found at %s", path)
            return normalize_market_insights(data, equipment_type, distance_type)

        logger.info("No market insights endpoint available")
        return None


def _raise_for_status(response: httpx.Response) -> None:
    """Map non-2xx statuses onto the API error taxonomy."""
    if response.is_success:
        return
    status = response.status_code
    if status in AUTH_STATUSES:
        msg = f"Session rejected by provider (HTTP {status})"
        raise ApiAuthError(msg, status)
    msg = f"Provider returned HTTP {status}"
    raise ApiRequestError(msg, status)
