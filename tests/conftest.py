from __future__ import annotations
import asyncio
from typing import Any, Dict, List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from iqra.content import SchoolContent
from iqra.db import init_db
from iqra.gateway import PersistenceGateway
from iqra.history import HistoryRecorder
from iqra.local_store import LocalStore
from iqra.progress import ProgressTracker
from iqra.schemas import CloudConfig, ExamData


def make_exam(level: int = 1, questions: int = 5, *, sections: int = 1, tag: str = "", time_limit: int = 60) -> ExamData:
    """Exam whose correct answer is always option 0; ids run 1..questions across sections."""
    per_section = [questions // sections + (1 if i < questions % sections else 0) for i in range(sections)]
    next_id = 1
    raw_sections = []
    for s_index, count in enumerate(per_section, start=1):
        qs = []
        for _ in range(count):
            qs.append({
                "id": next_id,
                "type": "MCQ",
                "text": f"{tag}Question {next_id}",
                "options": [f"right {next_id}", f"wrong {next_id}", f"other {next_id}"],
                "correctIndex": 0,
            })
            next_id += 1
        raw_sections.append({"id": s_index, "title": f"{tag}Passage {s_index}", "content": f"{tag}Text {s_index}", "questions": qs})
    return ExamData.model_validate({"level": level, "title": f"{tag}Level {level}", "timeLimit": time_limit, "sections": raw_sections})


class FakeGenerator:
    def __init__(self, *, questions: int = 5, time_limit: int = 60) -> None:
        self.calls: List[tuple] = []
        self.questions = questions
        self.time_limit = time_limit
        self.fail_with: Optional[Exception] = None
        self.gate: Optional[asyncio.Event] = None

    async def __call__(self, level: int, language: str) -> ExamData:
        self.calls.append((level, language))
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_with is not None:
            raise self.fail_with
        return make_exam(level, self.questions, tag=f"v{len(self.calls)} ", time_limit=self.time_limit)


class FakeSubscription:
    def __init__(self, collection: str) -> None:
        self.collection = collection
        self.active = True

    async def unsubscribe(self) -> None:
        self.active = False


class FakeMirror:
    def __init__(self, config: CloudConfig, *, open_error: Optional[Exception] = None) -> None:
        self.config = config
        self.open_error = open_error
        self.opened = False
        self._closed = False
        self.writes: List[tuple] = []
        self.listeners: Dict[str, Any] = {}
        self.subscriptions: List[FakeSubscription] = []
        self.fail_writes = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def open(self) -> None:
        if self.open_error is not None:
            raise self.open_error
        self.opened = True

    async def write(self, collection: str, value: Any) -> None:
        if self.fail_writes:
            raise RuntimeError("write rejected")
        self.writes.append((collection, value))

    async def read_once(self, collection: str) -> Any:
        return None

    def subscribe(self, collection: str, on_change) -> FakeSubscription:
        sub = FakeSubscription(collection)
        self.listeners[collection] = on_change
        self.subscriptions.append(sub)
        return sub

    async def emit(self, collection: str, snapshot: Any) -> None:
        await self.listeners[collection](snapshot)

    async def aclose(self) -> None:
        self._closed = True
        for sub in self.subscriptions:
            await sub.unsubscribe()


class MirrorFactory:
    def __init__(self) -> None:
        self.created: List[FakeMirror] = []
        self.open_error: Optional[Exception] = None

    def __call__(self, config: CloudConfig) -> FakeMirror:
        mirror = FakeMirror(config, open_error=self.open_error)
        self.created.append(mirror)
        return mirror


@pytest.fixture
def local_store() -> LocalStore:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    init_db(engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)
    return LocalStore(factory)


@pytest.fixture
def gateway(local_store: LocalStore) -> PersistenceGateway:
    return PersistenceGateway(local_store)


@pytest.fixture
def progress(gateway: PersistenceGateway) -> ProgressTracker:
    return ProgressTracker(gateway)


@pytest.fixture
def history(gateway: PersistenceGateway) -> HistoryRecorder:
    return HistoryRecorder(gateway)


@pytest.fixture
def content(gateway: PersistenceGateway) -> SchoolContent:
    return SchoolContent(gateway)


@pytest.fixture
def generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture
def mirror_factory() -> MirrorFactory:
    return MirrorFactory()


GOOD_CONFIG = {
    "apiKey": "AIzaSyExampleKey",
    "authDomain": "school.firebaseapp.com",
    "databaseURL": "https://school-default-rtdb.firebaseio.com",
    "projectId": "school",
    "storageBucket": "school.appspot.com",
    "messagingSenderId": "1234567890",
    "appId": "1:1234567890:web:abcdef",
}
