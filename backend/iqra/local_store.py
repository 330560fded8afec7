from __future__ import annotations
from typing import Callable, Optional

from sqlalchemy.orm import Session

from .db import SessionLocal
from .models import KeyValueEntry

SETTINGS_KEY = "iqra_settings"
NEWS_KEY = "iqra_news"
HISTORY_KEY = "iqra_exam_history"
CLOUD_CONFIG_KEY = "iqra_cloud_config"


def progress_key(language: str) -> str:
	return f"iqra_progress_{language}"


class LocalStore:
	"""Synchronous device-scoped key/value string store backed by the kv_entries table."""

	def __init__(self, session_factory: Callable[[], Session] = SessionLocal) -> None:
		self._session_factory = session_factory

	def get(self, key: str) -> Optional[str]:
		db = self._session_factory()
		try:
			row = db.get(KeyValueEntry, key)
			return row.value if row is not None else None
		finally:
			db.close()

	def set(self, key: str, value: str) -> None:
		db = self._session_factory()
		try:
			row = db.get(KeyValueEntry, key)
			if row is None:
				row = KeyValueEntry(key=key, value=value)
				db.add(row)
			else:
				row.value = value
			db.commit()
		finally:
			db.close()

	def remove(self, key: str) -> None:
		db = self._session_factory()
		try:
			row = db.get(KeyValueEntry, key)
			if row is not None:
				db.delete(row)
				db.commit()
		finally:
			db.close()
