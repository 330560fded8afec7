from __future__ import annotations
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Tuple

from pydantic import ValidationError

from .gateway import PersistenceGateway
from .local_store import HISTORY_KEY
from .schemas import AnswerDetail, ExamData, ExamMode, ExamResult
from .settings import MIRROR_HISTORY_LIMIT

logger = logging.getLogger(__name__)

NO_ANSWER = {"ar": "لم يجب", "en": "No Answer"}


def score_answers(exam: ExamData, answers: Mapping[int, int]) -> Tuple[int, int, int]:
    """Return (correct, total, score) where score rounds half up like the client UI."""
    questions = exam.all_questions()
    total = len(questions)
    correct = sum(1 for q in questions if answers.get(q.id) == q.correct_index)
    if total == 0:
        return 0, 0, 0
    return correct, total, (200 * correct + total) // (2 * total)


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _parse_entries(raw: Any) -> List[ExamResult]:
    if not isinstance(raw, list):
        return []
    entries: List[ExamResult] = []
    for item in raw:
        try:
            entries.append(ExamResult.model_validate(item))
        except ValidationError:
            logger.warning("Dropping malformed history entry")
    return entries


def _dump(entries: List[ExamResult]) -> List[Dict[str, Any]]:
    return [e.model_dump(by_alias=True, mode="json") for e in entries]


class HistoryRecorder:
    def __init__(self, gateway: PersistenceGateway, *, clock: Callable[[], float] = time.time) -> None:
        self._gateway = gateway
        self._clock = clock
        self._entries: List[ExamResult] = _parse_entries(gateway.load(HISTORY_KEY, []))

    @property
    def history(self) -> List[ExamResult]:
        """Most recent first."""
        return list(self._entries)

    def _new_id(self) -> str:
        return f"{int(self._clock() * 1000)}-{uuid.uuid4().hex[:8]}"

    async def record(
        self,
        exam: ExamData,
        answers: Mapping[int, int],
        student_name: str,
        mode: ExamMode,
        language: str,
    ) -> ExamResult:
        _, total, score = score_answers(exam, answers)
        details = []
        for q in exam.all_questions():
            chosen = answers.get(q.id)
            if chosen is not None and 0 <= chosen < len(q.options):
                user_answer = q.options[chosen]
            else:
                user_answer = NO_ANSWER.get(language, NO_ANSWER["en"])
            details.append(AnswerDetail(
                question_text=q.text,
                user_answer=user_answer,
                correct_answer=q.options[q.correct_index],
                is_correct=chosen == q.correct_index,
            ))
        result = ExamResult(
            id=self._new_id(),
            student_name=student_name,
            level=exam.level,
            score=score,
            total_questions=total,
            date=_iso_now(),
            mode=mode,
            language=language,
            details=details,
        )
        async with self._gateway.lock:
            self._commit([result, *self._entries])
        logger.info("Recorded %s level %d result for %s: %d%%", language, exam.level, student_name, score)
        return result

    async def delete(self, result_id: str) -> bool:
        async with self._gateway.lock:
            remaining = [e for e in self._entries if e.id != result_id]
            if len(remaining) == len(self._entries):
                return False
            self._commit(remaining)
        return True

    async def clear(self) -> None:
        async with self._gateway.lock:
            self._commit([])

    def replace_from_remote(self, raw: Iterable[Dict[str, Any]]) -> None:
        """Remote snapshot wins in full; caller holds the gateway lock."""
        entries = _parse_entries(list(raw))
        self._gateway.overwrite_from_remote(HISTORY_KEY, _dump(entries))
        self._entries = entries

    def push(self) -> None:
        self._gateway.push("history", _dump(self._entries), limit=MIRROR_HISTORY_LIMIT)

    def _commit(self, entries: List[ExamResult]) -> None:
        # Memory follows the store; a failed write leaves both unchanged
        self._gateway.store(HISTORY_KEY, _dump(entries), mirror_to="history", mirror_limit=MIRROR_HISTORY_LIMIT)
        self._entries = entries
