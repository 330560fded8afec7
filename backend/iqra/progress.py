from __future__ import annotations
import logging
from typing import Dict

from pydantic import ValidationError

from .gateway import PersistenceGateway
from .local_store import progress_key
from .schemas import UserProgress
from .settings import CONTENT_LANGUAGES, PASSING_SCORE, TOTAL_LEVELS

logger = logging.getLogger(__name__)


def advance(progress: UserProgress, level: int, score: int) -> UserProgress:
    """Unlock the next level only for a passing score at the frontier level."""
    if score >= PASSING_SCORE and level == progress.max_unlocked_level and progress.max_unlocked_level < TOTAL_LEVELS:
        return progress.model_copy(update={"max_unlocked_level": progress.max_unlocked_level + 1})
    return progress


class ProgressTracker:
    """One independent unlock ledger per content-language."""

    def __init__(self, gateway: PersistenceGateway) -> None:
        self._gateway = gateway
        self._ledgers: Dict[str, UserProgress] = {}

    def get(self, language: str) -> UserProgress:
        if language not in CONTENT_LANGUAGES:
            raise ValueError(f"language must be one of {CONTENT_LANGUAGES}")
        if language not in self._ledgers:
            self._ledgers[language] = self._load(language)
        return self._ledgers[language]

    def record_attempt(self, level: int, score: int, language: str) -> UserProgress:
        current = self.get(language)
        updated = advance(current, level, score)
        if updated != current:
            logger.info("Unlocked %s level %d", language, updated.max_unlocked_level)
            self._save(language, updated)
        return updated

    def set_current_level(self, language: str, level: int) -> UserProgress:
        current = self.get(language)
        if current.current_level == level:
            return current
        updated = current.model_copy(update={"current_level": level})
        self._save(language, updated)
        return updated

    def _load(self, language: str) -> UserProgress:
        data = self._gateway.load(progress_key(language))
        if data is None:
            return UserProgress()
        try:
            return UserProgress.model_validate(data)
        except ValidationError:
            logger.warning("Stored %s progress is invalid; starting from level 1", language)
            return UserProgress()

    def _save(self, language: str, progress: UserProgress) -> None:
        self._gateway.store(progress_key(language), progress.model_dump(by_alias=True))
        self._ledgers[language] = progress
