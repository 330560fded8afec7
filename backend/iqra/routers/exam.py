from __future__ import annotations
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from ..errors import SetupError, TransitionError
from ..schemas import ContentLanguage, ExamMode
from ..services import Services, get_services


router = APIRouter(prefix="/exam", tags=["exam"])


class CreateSessionRequest(BaseModel):
    language: ContentLanguage = "ar"


class SelectLevelRequest(BaseModel):
    level: int


class SetupRequest(BaseModel):
    student_name: str
    mode: ExamMode = ExamMode.TIMED


class AnswerRequest(BaseModel):
    question_id: int
    option_index: int = Field(ge=0)


class LanguageRequest(BaseModel):
    language: ContentLanguage


@router.post("/sessions")
async def create_session(req: Optional[CreateSessionRequest] = None, services: Services = Depends(get_services)) -> Dict[str, Any]:
    language = req.language if req else "ar"
    session_id, session = services.new_session(language)
    return {"session_id": session_id, **session.snapshot()}


@router.get("/sessions/{session_id}")
async def get_session(session_id: str, services: Services = Depends(get_services)) -> Dict[str, Any]:
    return services.session(session_id).snapshot()


@router.post("/sessions/{session_id}/level")
async def select_level(session_id: str, req: SelectLevelRequest, services: Services = Depends(get_services)) -> Dict[str, Any]:
    session = services.session(session_id)
    accepted = session.select_level(req.level)
    return {"accepted": accepted, **session.snapshot()}


@router.post("/sessions/{session_id}/setup")
async def complete_setup(session_id: str, req: SetupRequest, services: Services = Depends(get_services)) -> Dict[str, Any]:
    session = services.session(session_id)
    try:
        await session.complete_setup(req.student_name, req.mode)
    except SetupError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except TransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return session.snapshot()


@router.post("/sessions/{session_id}/answers")
async def answer(session_id: str, req: AnswerRequest, services: Services = Depends(get_services)) -> Dict[str, Any]:
    session = services.session(session_id)
    try:
        accepted = session.answer(req.question_id, req.option_index)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"accepted": accepted, "answers": {str(k): v for k, v in session.answers.items()}, "can_submit": session.can_submit}


@router.post("/sessions/{session_id}/submit")
async def submit(session_id: str, services: Services = Depends(get_services)) -> Dict[str, Any]:
    session = services.session(session_id)
    try:
        await session.submit()
    except TransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return session.snapshot()


@router.post("/sessions/{session_id}/retry")
async def retry(session_id: str, services: Services = Depends(get_services)) -> Dict[str, Any]:
    session = services.session(session_id)
    try:
        await session.retry()
    except TransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return session.snapshot()


@router.post("/sessions/{session_id}/next")
async def next_level(session_id: str, services: Services = Depends(get_services)) -> Dict[str, Any]:
    session = services.session(session_id)
    try:
        await session.next_level()
    except TransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return session.snapshot()


@router.post("/sessions/{session_id}/exit")
async def exit_exam(session_id: str, services: Services = Depends(get_services)) -> Dict[str, Any]:
    session = services.session(session_id)
    session.exit()
    return session.snapshot()


@router.post("/sessions/{session_id}/language")
async def switch_language(session_id: str, req: LanguageRequest, services: Services = Depends(get_services)) -> Dict[str, Any]:
    session = services.session(session_id)
    session.switch_language(req.language)
    return session.snapshot()


@router.get("/progress/{language}")
async def get_progress(language: ContentLanguage, services: Services = Depends(get_services)) -> Dict[str, Any]:
    return services.progress.get(language).model_dump(by_alias=True)
