"""요청 헤더 제공자 (User-Agent 순환)"""

from __future__ import annotations

import itertools
import threading
from typing import Optional, Sequence

from facility_crawler.core.config import settings


DEFAULT_USER_AGENTS: tuple[str, ...] = (
    settings.crawler_user_agent,
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.2 Safari/605.1.15",
)


class RotatingHeaderProvider:
    """요청마다 User-Agent를 순서대로 바꿔 끼우는 HeaderProvider"""

    def __init__(self, user_agents: Optional[Sequence[str]] = None, referer: Optional[str] = None):
        agents = list(dict.fromkeys(user_agents or DEFAULT_USER_AGENTS))
        if not agents:
            raise ValueError("user_agents must not be empty")
        self.user_agents = agents
        self.referer = referer
        self._cycle = itertools.cycle(agents)
        self._lock = threading.Lock()

    def get_headers(self) -> dict[str, str]:
        with self._lock:
            user_agent = next(self._cycle)
        headers = {
            "User-Agent": user_agent,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "ko-KR,ko;q=0.9,en-US;q=0.8,en;q=0.7",
        }
        if self.referer:
            headers["Referer"] = self.referer
        return headers
