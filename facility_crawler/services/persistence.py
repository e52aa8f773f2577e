"""레코드 저장소 (RecordSink)"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Protocol, Sequence

from facility_crawler.schemas.facility_schema import CanonicalRecord


class RecordSink(Protocol):
    async def save_records(self, records: Sequence[CanonicalRecord]) -> None:
        ...


class JsonFileSink:
    """레코드를 JSON 배열 파일로 저장 (UTF-8, 한글 그대로)"""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    async def save_records(self, records: Sequence[CanonicalRecord]) -> None:
        payload = [record.to_dict() for record in records]
        await asyncio.to_thread(self._write, payload)

    def _write(self, payload: list[dict]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
