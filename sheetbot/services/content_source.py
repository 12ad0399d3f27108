"""Externally managed bot content: keyword flows, the AI prompt and scheduled broadcasts.

Two sources are supported. ``GoogleSheetSource`` reads the CSV export of a
spreadsheet with the tabs ``flows``, ``prompts`` and ``scheduled``;
``YamlContentSource`` reads the same sections from a local file.
"""

import csv
import io
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import httpx
import yaml

from sheetbot.logging_config import get_logger
from sheetbot.services.errors import ServiceError

logger = get_logger("content_source")

SHEET_CSV_URL = "https://docs.google.com/spreadsheets/d/{sheet_id}/gviz/tq?tqx=out:csv&sheet={tab}"
DATE_FORMATS = ("%d/%m/%Y %H:%M", "%d/%m/%Y %H:%M:%S", "%Y-%m-%d %H:%M")


@dataclass(frozen=True)
class Flow:
    keyword: str
    answer: str
    media: Optional[str] = None


@dataclass(frozen=True)
class ScheduledMessage:
    id: str
    number: str
    message: str
    send_at: datetime
    media: Optional[str] = None


def parse_send_at(value: object) -> Optional[datetime]:
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value or "").strip()
        if not text:
            return None
        parsed = None
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            for fmt in DATE_FORMATS:
                try:
                    parsed = datetime.strptime(text, fmt)
                    break
                except ValueError:
                    continue
        if parsed is None:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _clean(value: object) -> str:
    return str(value).strip() if value is not None else ""


def build_flow(row: dict) -> Optional[Flow]:
    keyword = _clean(row.get("addKeyword") or row.get("keyword"))
    answer = _clean(row.get("addAnswer") or row.get("answer"))
    if not keyword or not answer:
        return None
    media = _clean(row.get("media")) or None
    return Flow(keyword=keyword, answer=answer, media=media)


def build_scheduled_message(row: dict, index: int) -> Optional[ScheduledMessage]:
    number = _clean(row.get("number") or row.get("numero"))
    message = _clean(row.get("message") or row.get("mensaje"))
    send_at = parse_send_at(row.get("send_at") or row.get("fecha"))
    if not number or not message or send_at is None:
        return None
    return ScheduledMessage(
        id=_clean(row.get("id")) or f"row-{index}",
        number=number,
        message=message,
        send_at=send_at,
        media=_clean(row.get("media")) or None,
    )


class ContentSource(ABC):
    @abstractmethod
    async def list_flows(self) -> List[Flow]:
        pass

    @abstractmethod
    async def get_prompt(self) -> Optional[str]:
        pass

    @abstractmethod
    async def list_scheduled_messages(self) -> List[ScheduledMessage]:
        pass


class GoogleSheetSource(ContentSource):
    """Reads bot content from a published Google Sheet."""

    def __init__(self, sheet_id: str, cache_seconds: float = 60.0, timeout_seconds: float = 15.0):
        self.sheet_id = sheet_id
        self.cache_seconds = cache_seconds
        self.timeout_seconds = timeout_seconds
        self._cache: Dict[str, Tuple[float, List[dict]]] = {}

    async def _fetch_rows(self, tab: str) -> List[dict]:
        cached = self._cache.get(tab)
        if cached and time.monotonic() - cached[0] < self.cache_seconds:
            return cached[1]

        url = SHEET_CSV_URL.format(sheet_id=self.sheet_id, tab=tab)
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds, follow_redirects=True) as client:
                response = await client.get(url)
        except Exception as e:
            logger.error(f"Sheet fetch failed: tab={tab}, error={e}")
            raise ServiceError("content_source", f"failed to fetch tab '{tab}': {e}") from e

        if response.status_code != 200:
            logger.error(f"Sheet fetch failed: tab={tab}, status={response.status_code}")
            raise ServiceError("content_source", f"tab '{tab}' returned HTTP {response.status_code}")

        rows = list(csv.DictReader(io.StringIO(response.text)))
        self._cache[tab] = (time.monotonic(), rows)
        logger.debug(f"Sheet tab loaded: tab={tab}, rows={len(rows)}")
        return rows

    def invalidate(self) -> None:
        self._cache.clear()

    async def list_flows(self) -> List[Flow]:
        rows = await self._fetch_rows("flows")
        return [flow for flow in (build_flow(row) for row in rows) if flow]

    async def get_prompt(self) -> Optional[str]:
        rows = await self._fetch_rows("prompts")
        for row in rows:
            prompt = _clean(row.get("prompt"))
            if prompt:
                return prompt
        return None

    async def list_scheduled_messages(self) -> List[ScheduledMessage]:
        rows = await self._fetch_rows("scheduled")
        items = []
        for index, row in enumerate(rows):
            item = build_scheduled_message(row, index)
            if item is None:
                logger.warning(f"Skipping malformed scheduled row {index}")
                continue
            items.append(item)
        return items


class YamlContentSource(ContentSource):
    """Reads bot content from a local YAML file on every call."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def _load(self) -> dict:
        if not self.path.exists():
            logger.warning(f"Content file not found: {self.path}")
            return {}
        try:
            with self.path.open("r", encoding="utf-8") as handle:
                data = yaml.safe_load(handle) or {}
        except yaml.YAMLError as e:
            raise ServiceError("content_source", f"invalid YAML in {self.path}: {e}") from e
        return data if isinstance(data, dict) else {}

    async def list_flows(self) -> List[Flow]:
        rows = self._load().get("flows") or []
        return [flow for flow in (build_flow(row) for row in rows if isinstance(row, dict)) if flow]

    async def get_prompt(self) -> Optional[str]:
        prompt = _clean(self._load().get("prompt"))
        return prompt or None

    async def list_scheduled_messages(self) -> List[ScheduledMessage]:
        rows = self._load().get("scheduled") or []
        items = []
        for index, row in enumerate(rows):
            if not isinstance(row, dict):
                continue
            item = build_scheduled_message(row, index)
            if item:
                items.append(item)
        return items
