"""Tests for browser session token extraction and the login wait loop."""

from unittest.mock import AsyncMock, patch

from loadscout.browser.session import BrowserSession, extract_session_tokens
from loadscout.platforms.cloudtrucks.payload import CSRF_COOKIE_NAME, SESSION_COOKIE_NAME


def _cookie(name: str, value: str) -> dict[str, str]:
    return {"name": name, "value": value, "domain": "app.cloudtrucks.com"}


class TestExtractSessionTokens:
    def test_both_present(self) -> None:
        cookies = [
            _cookie("other", "x"),
            _cookie(SESSION_COOKIE_NAME, "sess"),
            _cookie(CSRF_COOKIE_NAME, "tok"),
        ]
        assert extract_session_tokens(cookies) == ("sess", "tok")

    def test_missing_csrf(self) -> None:
        assert extract_session_tokens([_cookie(SESSION_COOKIE_NAME, "sess")]) is None

    def test_empty_value_ignored(self) -> None:
        cookies = [_cookie(SESSION_COOKIE_NAME, ""), _cookie(CSRF_COOKIE_NAME, "tok")]
        assert extract_session_tokens(cookies) is None


class TestWaitForLogin:
    async def test_returns_tokens_once_cookies_appear(self) -> None:
        session = BrowserSession("https://app.cloudtrucks.com/")
        context = AsyncMock()
        context.cookies.side_effect = [
            [],
            [_cookie(SESSION_COOKIE_NAME, "sess"), _cookie(CSRF_COOKIE_NAME, "tok")],
        ]
        session._context = context

        with patch("loadscout.browser.session.asyncio.sleep", new=AsyncMock()):
            tokens = await session.wait_for_login(timeout_s=60)

        assert tokens == ("sess", "tok")
        context.cookies.assert_awaited_with("https://app.cloudtrucks.com")

    async def test_times_out(self) -> None:
        session = BrowserSession("https://app.cloudtrucks.com")
        context = AsyncMock()
        context.cookies.return_value = []
        session._context = context

        assert await session.wait_for_login(timeout_s=0) is None
