"""SharedHttpClient 유닛 테스트 (curl_cffi 세션 모의)"""
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from facility_crawler.core.exceptions import CrawlerException, NetworkTimeoutException
from facility_crawler.crawlers.http_client import SharedHttpClient


@pytest.fixture
def session():
    sess = MagicMock()
    sess.get = AsyncMock(return_value=MagicMock(status_code=200, text="<html>ok</html>"))
    sess.close = AsyncMock()
    return sess


@pytest.mark.asyncio
async def test_fetch_reuses_session(session):
    with patch("facility_crawler.crawlers.http_client.AsyncSession", return_value=session) as factory:
        client = SharedHttpClient(impersonate="chrome110", max_clients=4)

        first = await client.fetch("https://a.example", {"User-Agent": "x"}, 5.0)
        await client.fetch("https://b.example", {}, 5.0)
        await client.close()

    assert first.status == 200
    assert first.body == "<html>ok</html>"
    factory.assert_called_once()
    assert factory.call_args.kwargs["impersonate"] == "chrome110"
    session.get.assert_any_await("https://a.example", headers={"User-Agent": "x"}, timeout=5.0, allow_redirects=True)
    session.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_timeout_is_mapped(session):
    class Timeout(Exception):
        pass

    session.get = AsyncMock(side_effect=Timeout("Operation timed out"))
    with patch("facility_crawler.crawlers.http_client.AsyncSession", return_value=session):
        client = SharedHttpClient()
        with pytest.raises(NetworkTimeoutException):
            await client.fetch("https://a.example", {}, 2.0)


@pytest.mark.asyncio
async def test_transport_error_is_mapped(session):
    session.get = AsyncMock(side_effect=OSError("connection reset"))
    with patch("facility_crawler.crawlers.http_client.AsyncSession", return_value=session):
        client = SharedHttpClient()
        with pytest.raises(CrawlerException) as exc_info:
            await client.fetch("https://a.example", {}, 2.0)

    assert exc_info.value.error_code == "HTTP_ERROR"
