"""
Exam session state machine.

One instance drives one learner through level selection, setup, content
generation, (optionally timed) answering, scoring and progression:

    idle -> setting_up -> loading -> active -> submitted -> {loading | idle}
    {loading | active} -> error -> idle

Every attempt carries a token. Exiting or restarting bumps the token, so a
generator response that arrives for an abandoned attempt is dropped instead
of reviving it.
"""

from __future__ import annotations
import asyncio
import enum
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from .errors import SetupError, TransitionError
from .history import HistoryRecorder
from .progress import ProgressTracker
from .schemas import ExamData, ExamMode, ExamResult, UserProgress
from .settings import CONTENT_LANGUAGES, PASSING_SCORE, TOTAL_LEVELS, settings

logger = logging.getLogger(__name__)

GenerateExam = Callable[[int, str], Awaitable[ExamData]]


class SessionStatus(str, enum.Enum):
    IDLE = "idle"
    SETTING_UP = "setting_up"
    LOADING = "loading"
    ACTIVE = "active"
    SUBMITTED = "submitted"
    ERROR = "error"


class Countdown:
    """Once-per-tick countdown that calls ``on_expire`` at most once."""

    def __init__(self, seconds: int, on_expire: Callable[[], Awaitable[Any]], *, tick_seconds: float = 1.0) -> None:
        self.remaining = max(0, int(seconds))
        self.ticks = 0
        self._on_expire = on_expire
        self._tick_seconds = tick_seconds
        self._task: Optional[asyncio.Task] = None
        self._stopped = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done() and not self._stopped

    def start(self) -> None:
        if self._task is None and not self._stopped:
            self._task = asyncio.create_task(self._run(), name="exam-countdown")

    def stop(self) -> None:
        self._stopped = True
        task, self._task = self._task, None
        # Expiry submits from inside the task; it must not cancel itself
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _run(self) -> None:
        while self.remaining > 0:
            await asyncio.sleep(self._tick_seconds)
            if self._stopped:
                return
            self.remaining -= 1
            self.ticks += 1
        if self._stopped:
            return
        self._stopped = True
        try:
            await self._on_expire()
        except Exception:
            logger.exception("Automatic submission failed")


class ExamSession:
    def __init__(
        self,
        generate: GenerateExam,
        progress: ProgressTracker,
        history: HistoryRecorder,
        *,
        language: str = "ar",
        default_time_limit: Optional[int] = None,
        tick_seconds: Optional[float] = None,
    ) -> None:
        if language not in CONTENT_LANGUAGES:
            raise SetupError(f"language must be one of {CONTENT_LANGUAGES}")
        self._generate = generate
        self._progress = progress
        self._history = history
        self._default_time_limit = default_time_limit or settings.default_time_limit_seconds
        self._tick_seconds = settings.timer_tick_seconds if tick_seconds is None else tick_seconds
        self.language = language
        self.status = SessionStatus.IDLE
        self.level: Optional[int] = None
        self.student_name = ""
        self.mode = ExamMode.TIMED
        self.exam: Optional[ExamData] = None
        self.answers: Dict[int, int] = {}
        self.result: Optional[ExamResult] = None
        self.error: Optional[str] = None
        self._countdown: Optional[Countdown] = None
        self._attempt = 0
        self._submitting = False

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def progress(self) -> UserProgress:
        return self._progress.get(self.language)

    @property
    def remaining_seconds(self) -> Optional[int]:
        return self._countdown.remaining if self._countdown is not None else None

    @property
    def can_submit(self) -> bool:
        if self.status is not SessionStatus.ACTIVE or self.exam is None or self._submitting:
            return False
        return all(q.id in self.answers for q in self.exam.all_questions())

    @property
    def can_retry(self) -> bool:
        return self.status is SessionStatus.SUBMITTED

    @property
    def can_advance(self) -> bool:
        return (
            self.status is SessionStatus.SUBMITTED
            and self.result is not None
            and self.result.score >= PASSING_SCORE
            and self.level is not None
            and self.level < TOTAL_LEVELS
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def select_level(self, level: int) -> bool:
        """Pick a level; locked or out-of-range levels are ignored."""
        if self.status not in (SessionStatus.IDLE, SessionStatus.SETTING_UP):
            return False
        if not 1 <= level <= TOTAL_LEVELS or level > self.progress.max_unlocked_level:
            logger.debug("Ignoring selection of locked %s level %d", self.language, level)
            return False
        self._reset_attempt()
        self.level = level
        self.student_name = ""
        self.mode = ExamMode.TIMED
        self.status = SessionStatus.SETTING_UP
        self._remember_level()
        return True

    async def complete_setup(self, name: str, mode: ExamMode | str = ExamMode.TIMED) -> SessionStatus:
        if self.status is not SessionStatus.SETTING_UP:
            raise TransitionError("Select a level before completing setup")
        clean_name = (name or "").strip()
        if len(clean_name) < 2:
            raise SetupError("Student name must be at least 2 characters")
        try:
            exam_mode = ExamMode(mode)
        except ValueError as exc:
            raise SetupError(f"mode must be one of {[m.value for m in ExamMode]}") from exc
        self.student_name = clean_name
        self.mode = exam_mode
        await self._load()
        return self.status

    def answer(self, question_id: int, option_index: int) -> bool:
        """Record or overwrite an answer. Returns False once the attempt is closed."""
        if self.status is not SessionStatus.ACTIVE or self._submitting or self.exam is None:
            return False
        question = next((q for q in self.exam.all_questions() if q.id == question_id), None)
        if question is None:
            raise ValueError(f"Unknown question {question_id}")
        if not 0 <= option_index < len(question.options):
            raise ValueError(f"option_index must be 0..{len(question.options) - 1}")
        self.answers[question_id] = option_index
        return True

    async def submit(self, *, force: bool = False) -> Optional[ExamResult]:
        """
        Score the attempt once. The learner may submit only after answering
        everything; the countdown submits with ``force=True``. Repeated calls
        return the existing result without recording again.
        """
        if self.status is SessionStatus.SUBMITTED:
            return self.result
        if self.status is not SessionStatus.ACTIVE or self._submitting or self.exam is None:
            return None
        if not force and not self.can_submit:
            raise TransitionError("Answer every question before submitting")
        self._submitting = True
        token = self._attempt
        exam = self.exam
        if self._countdown is not None:
            self._countdown.stop()
        try:
            result = await self._history.record(exam, dict(self.answers), self.student_name, self.mode, self.language)
        except Exception:
            logger.exception("Could not save the %s level %d result", self.language, exam.level)
            self._submitting = False
            if token == self._attempt:
                self.error = "Could not save the result"
                self.status = SessionStatus.ERROR
            return None
        try:
            self._progress.record_attempt(exam.level, result.score, self.language)
        except Exception:
            logger.exception("Could not save %s progress", self.language)
        if token != self._attempt:
            # Exited while the result was being written; the record stands
            return result
        self.result = result
        self.status = SessionStatus.SUBMITTED
        return result

    async def retry(self) -> SessionStatus:
        if self.status is not SessionStatus.SUBMITTED:
            raise TransitionError("Retry is only available after submitting")
        await self._load()
        return self.status

    async def next_level(self) -> SessionStatus:
        if not self.can_advance or self.level is None:
            raise TransitionError("Next level requires a passing score below the top level")
        self.level += 1
        self._remember_level()
        await self._load()
        return self.status

    def exit(self) -> None:
        self._reset_attempt()
        self.level = None
        self.status = SessionStatus.IDLE

    def switch_language(self, language: str) -> None:
        if language not in CONTENT_LANGUAGES:
            raise SetupError(f"language must be one of {CONTENT_LANGUAGES}")
        self.exit()
        self.language = language

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _remember_level(self) -> None:
        try:
            self._progress.set_current_level(self.language, self.level)
        except Exception:
            logger.exception("Could not save the current %s level", self.language)

    def _reset_attempt(self) -> None:
        if self._countdown is not None:
            self._countdown.stop()
        self._countdown = None
        self._attempt += 1
        self._submitting = False
        self.exam = None
        self.answers = {}
        self.result = None
        self.error = None

    async def _load(self) -> None:
        self._reset_attempt()
        token = self._attempt
        level, language = self.level, self.language
        self.status = SessionStatus.LOADING
        try:
            exam = await self._generate(level, language)
        except Exception as exc:
            if token != self._attempt:
                return
            logger.warning("Exam generation failed for %s level %s: %s", language, level, exc)
            self.error = str(exc) or "Could not generate exam"
            self.status = SessionStatus.ERROR
            return
        if token != self._attempt:
            logger.info("Discarding exam generated for an abandoned attempt")
            return
        self.exam = exam
        if self.mode is ExamMode.TIMED:
            self._countdown = Countdown(
                exam.time_limit or self._default_time_limit,
                self._expire,
                tick_seconds=self._tick_seconds,
            )
            self._countdown.start()
        self.status = SessionStatus.ACTIVE

    async def _expire(self) -> None:
        logger.info("Time is up for %s level %s; submitting", self.language, self.level)
        await self.submit(force=True)

    def snapshot(self) -> Dict[str, Any]:
        """JSON-ready view; correct answers stay hidden until submission."""
        exam_view = None
        if self.exam is not None:
            reveal = self.status is SessionStatus.SUBMITTED
            exam_view = self.exam.model_dump(by_alias=True, mode="json")
            if not reveal:
                for section in exam_view["sections"]:
                    for q in section["questions"]:
                        q.pop("correctIndex", None)
        return {
            "status": self.status.value,
            "language": self.language,
            "level": self.level,
            "student_name": self.student_name,
            "mode": self.mode.value,
            "remaining_seconds": self.remaining_seconds,
            "exam": exam_view,
            "answers": {str(k): v for k, v in self.answers.items()},
            "result": self.result.model_dump(by_alias=True, mode="json") if self.result else None,
            "error": self.error,
            "can_submit": self.can_submit,
            "can_retry": self.can_retry,
            "can_advance": self.can_advance,
            "progress": self.progress.model_dump(by_alias=True),
        }
