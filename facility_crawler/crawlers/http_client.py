"""공유 HTTP 클라이언트 (curl_cffi)

- 요청마다 AsyncSession을 만들지 않고 프로세스 단위로 세션을 재사용합니다.
- 종료 시 close()로 정리합니다.
"""

from __future__ import annotations

import asyncio
from typing import Optional

from curl_cffi.requests import AsyncSession

from facility_crawler.core.config import settings
from facility_crawler.core.exceptions import CrawlerException, NetworkTimeoutException
from facility_crawler.core.logging import logger

from .base import FetchResponse


class SharedHttpClient:
    """PageFetcher 구현"""

    def __init__(self, impersonate: Optional[str] = None, max_clients: Optional[int] = None) -> None:
        self._lock = asyncio.Lock()
        self._session: Optional[AsyncSession] = None
        self.impersonate = impersonate or settings.crawler_http_impersonate
        self.max_clients = max_clients or settings.crawler_http_max_clients

    async def _ensure_session(self) -> AsyncSession:
        async with self._lock:
            if self._session is not None:
                return self._session
            self._session = AsyncSession(
                impersonate=self.impersonate,
                allow_redirects=True,
                max_clients=self.max_clients,
                trust_env=False,
            )
            return self._session

    async def fetch(self, url: str, headers: dict[str, str], timeout_s: float) -> FetchResponse:
        """GET 요청

        Raises:
            NetworkTimeoutException: 타임아웃
            CrawlerException: 그 외 전송 오류
        """
        sess = await self._ensure_session()
        try:
            resp = await sess.get(url, headers=headers, timeout=timeout_s, allow_redirects=True)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.info(f"[HTTP_CLIENT] GET failed: {type(e).__name__}: {repr(e)}")
            if "timeout" in type(e).__name__.lower() or "timed out" in str(e).lower():
                raise NetworkTimeoutException("http_get", int(timeout_s * 1000)) from e
            raise CrawlerException(f"HTTP request failed: {type(e).__name__}", "HTTP_ERROR", {"url": url}) from e

        status = getattr(resp, "status_code", 0) or 0
        text = getattr(resp, "text", "") or ""
        return FetchResponse(status, text)

    async def close(self) -> None:
        async with self._lock:
            if self._session is None:
                return
            try:
                await self._session.close()
            except Exception as e:
                logger.debug(f"[HTTP_CLIENT] close failed: {e}")
            self._session = None
