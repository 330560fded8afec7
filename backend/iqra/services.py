from __future__ import annotations
import logging
import uuid
from typing import Callable, Dict, Optional, Tuple

from fastapi import HTTPException, Request

from .content import SchoolContent
from .gateway import PersistenceGateway
from .generator import ContentGenerator
from .history import HistoryRecorder
from .local_store import LocalStore
from .mirror_client import RealtimeMirror
from .progress import ProgressTracker
from .schemas import CloudConfig
from .session import ExamSession, GenerateExam
from .sync import SyncCoordinator

logger = logging.getLogger(__name__)


class Services:
    """Process-wide owners of shared state plus the live exam sessions."""

    def __init__(
        self,
        local: Optional[LocalStore] = None,
        *,
        generate: Optional[GenerateExam] = None,
        mirror_factory: Optional[Callable[[CloudConfig], RealtimeMirror]] = None,
        tick_seconds: Optional[float] = None,
    ) -> None:
        self.gateway = PersistenceGateway(local or LocalStore())
        self.progress = ProgressTracker(self.gateway)
        self.history = HistoryRecorder(self.gateway)
        self.content = SchoolContent(self.gateway)
        self.sync = SyncCoordinator(self.gateway, self.content, self.history, mirror_factory=mirror_factory)
        self._generate = generate or ContentGenerator().generate
        self._tick_seconds = tick_seconds
        self.sessions: Dict[str, ExamSession] = {}

    def new_session(self, language: str = "ar") -> Tuple[str, ExamSession]:
        session_id = uuid.uuid4().hex
        session = ExamSession(self._generate, self.progress, self.history, language=language, tick_seconds=self._tick_seconds)
        self.sessions[session_id] = session
        return session_id, session

    def session(self, session_id: str) -> ExamSession:
        session = self.sessions.get(session_id)
        if session is None:
            raise HTTPException(status_code=404, detail="Session not found")
        return session

    async def aclose(self) -> None:
        for session in self.sessions.values():
            session.exit()
        self.sessions.clear()
        await self.sync.close()
        await self.gateway.drain()


def get_services(request: Request) -> Services:
    return request.app.state.services
