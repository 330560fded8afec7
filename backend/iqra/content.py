from __future__ import annotations
import logging
import time
from datetime import datetime, timezone
from typing import Any, List, Optional

from pydantic import ValidationError

from .gateway import PersistenceGateway
from .local_store import NEWS_KEY, SETTINGS_KEY
from .mirror_client import ordered_values
from .schemas import AppSettings, NewsItem

logger = logging.getLogger(__name__)


class SchoolContent:
    """Owner of the shared news feed and school settings."""

    def __init__(self, gateway: PersistenceGateway) -> None:
        self._gateway = gateway
        self.settings = self._parse_settings(gateway.load(SETTINGS_KEY)) or AppSettings()
        self.news: List[NewsItem] = self._parse_news(gateway.load(NEWS_KEY, []))

    async def save_settings(self, new_settings: AppSettings) -> AppSettings:
        async with self._gateway.lock:
            self.settings = new_settings
            self._gateway.store(SETTINGS_KEY, self._dump_settings(), mirror_to="settings")
        return new_settings

    async def add_news(self, title: str, content: str, image_url: Optional[str] = None) -> NewsItem:
        item = NewsItem(
            id=str(int(time.time() * 1000)),
            title=title,
            content=content,
            image_url=image_url,
            date=datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z"),
        )
        async with self._gateway.lock:
            self.news = [item, *self.news]
            self._gateway.store(NEWS_KEY, self._dump_news(), mirror_to="news")
        return item

    async def delete_news(self, news_id: str) -> bool:
        async with self._gateway.lock:
            remaining = [n for n in self.news if n.id != news_id]
            if len(remaining) == len(self.news):
                return False
            self.news = remaining
            self._gateway.store(NEWS_KEY, self._dump_news(), mirror_to="news")
        return True

    # Remote snapshots overwrite in full; caller holds the gateway lock
    def replace_news_from_remote(self, raw: Any) -> None:
        self.news = self._parse_news(raw)
        self._gateway.overwrite_from_remote(NEWS_KEY, self._dump_news())

    def replace_settings_from_remote(self, raw: Any) -> None:
        parsed = self._parse_settings(raw)
        if parsed is None:
            return
        self.settings = parsed
        self._gateway.overwrite_from_remote(SETTINGS_KEY, self._dump_settings())

    def push(self) -> None:
        if self.news:
            self._gateway.push("news", self._dump_news())
        self._gateway.push("settings", self._dump_settings())

    def _dump_news(self) -> List[dict]:
        return [n.model_dump(by_alias=True, exclude_none=True) for n in self.news]

    def _dump_settings(self) -> dict:
        return self.settings.model_dump(by_alias=True, exclude_none=True)

    @staticmethod
    def _parse_settings(raw: Any) -> Optional[AppSettings]:
        if not isinstance(raw, dict):
            return None
        try:
            return AppSettings.model_validate(raw)
        except ValidationError:
            logger.warning("Ignoring malformed school settings")
            return None

    @staticmethod
    def _parse_news(raw: Any) -> List[NewsItem]:
        if isinstance(raw, dict):
            raw = ordered_values(raw)
        if not isinstance(raw, list):
            return []
        items: List[NewsItem] = []
        for entry in raw:
            try:
                items.append(NewsItem.model_validate(entry))
            except ValidationError:
                logger.warning("Dropping malformed news item")
        return items
