"""FastAPI routes that drive reading sessions and the saved-reading history."""

import uuid
from typing import Dict, List, Optional, Tuple

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from arcana.ai import GenerationOrchestrator, default_context
from arcana.config import get_settings
from arcana.deck import get_spread
from arcana.drawing import CardDrawer
from arcana.errors import DeckError, DeckUnavailable, EntropyUnavailable, InvalidTransition, PersistenceFailed
from arcana.llm import OpenAITextGenerator
from arcana.models import (
    BirthData,
    DetailLevel,
    DrawnCard,
    Interpretation,
    PersistedReading,
    PersonalizationContext,
    ReadingStyle,
)
from arcana.readings_storage.readings_db import SQLiteReadingStore
from arcana.repository import ReadingRepository
from arcana.session import ReadingSessionMachine
from arcana.utils.rng import SystemEntropySource, default_entropy_source

router = APIRouter(prefix="/reading", tags=["reading"])
history_router = APIRouter(prefix="/readings", tags=["history"])


class SessionRegistry:
    """Live session machines keyed by an opaque handle."""

    def __init__(self, repository: ReadingRepository, orchestrator: GenerationOrchestrator,
                 drawer: Optional[CardDrawer] = None, entropy=None):
        self.repository = repository
        self.orchestrator = orchestrator
        self.drawer = drawer or CardDrawer()
        self.entropy = entropy or SystemEntropySource()
        self._machines: Dict[str, ReadingSessionMachine] = {}

    def create(self) -> Tuple[str, ReadingSessionMachine]:
        handle = uuid.uuid4().hex
        machine = ReadingSessionMachine(self.drawer, self.entropy, self.orchestrator, self.repository)
        self._machines[handle] = machine
        return handle, machine

    def get(self, handle: str) -> ReadingSessionMachine:
        machine = self._machines.get(handle)
        if machine is None:
            raise HTTPException(status_code=404, detail=f"Session not found: {handle}")
        return machine

    def discard(self, handle: str) -> None:
        machine = self._machines.pop(handle, None)
        if machine is not None:
            machine.clear()


_REGISTRY: Optional[SessionRegistry] = None


def build_registry() -> SessionRegistry:
    settings = get_settings()
    repository = ReadingRepository(SQLiteReadingStore(settings.db_path))
    orchestrator = GenerationOrchestrator(OpenAITextGenerator(settings), settings)
    entropy = default_entropy_source(settings.entropy, settings.quantum_api_key, settings.entropy_timeout)
    return SessionRegistry(repository, orchestrator, entropy=entropy)


def get_registry() -> SessionRegistry:
    global _REGISTRY
    if _REGISTRY is None:
        _REGISTRY = build_registry()
    return _REGISTRY


class StartRequest(BaseModel):
    spread_id: str = Field(..., description="Spread identifier: 'single-card', 'three-card', 'celtic-cross'")


class IntentionRequest(BaseModel):
    intention: str = Field("", max_length=1000)


class InterpretRequest(BaseModel):
    style: ReadingStyle = "psychological"
    detail: DetailLevel = "detailed"
    birth_data: Optional[BirthData] = None
    current_date: Optional[str] = None


class SaveRequest(BaseModel):
    user_id: str


class SessionView(BaseModel):
    handle: str
    step: str
    session_id: Optional[str] = None
    spread_id: Optional[str] = None
    intention: str = ""
    drawn_cards: List[DrawnCard] = Field(default_factory=list)
    revealed: List[bool] = Field(default_factory=list)
    interpretation: Optional[Interpretation] = None
    error: Optional[str] = None


def _view(handle: str, machine: ReadingSessionMachine) -> SessionView:
    s = machine.session
    if s is None:
        return SessionView(handle=handle, step=machine.step.value)
    return SessionView(
        handle=handle,
        step=s.step.value,
        session_id=s.id,
        spread_id=s.spread.id,
        intention=s.intention,
        drawn_cards=s.drawn_cards,
        revealed=s.revealed,
        interpretation=s.interpretation,
        error=s.error,
    )


def _conflict(e: InvalidTransition) -> HTTPException:
    return HTTPException(status_code=409, detail=str(e))


@router.post("/start", response_model=SessionView)
def start_session(req: StartRequest, registry: SessionRegistry = Depends(get_registry)) -> SessionView:
    try:
        spread = get_spread(req.spread_id)
    except DeckError:
        raise HTTPException(status_code=400, detail=f"Unknown spread_id: {req.spread_id}")
    handle, machine = registry.create()
    machine.start_session(spread)
    return _view(handle, machine)


@router.get("/{handle}", response_model=SessionView)
def get_session(handle: str, registry: SessionRegistry = Depends(get_registry)) -> SessionView:
    return _view(handle, registry.get(handle))


@router.post("/{handle}/intention", response_model=SessionView)
def set_intention(handle: str, req: IntentionRequest, registry: SessionRegistry = Depends(get_registry)) -> SessionView:
    machine = registry.get(handle)
    try:
        machine.set_intention(req.intention)
    except InvalidTransition as e:
        raise _conflict(e)
    return _view(handle, machine)


@router.post("/{handle}/draw", response_model=SessionView)
async def draw(handle: str, registry: SessionRegistry = Depends(get_registry)) -> SessionView:
    machine = registry.get(handle)
    try:
        await machine.draw_cards()
    except InvalidTransition as e:
        raise _conflict(e)
    except (DeckUnavailable, EntropyUnavailable) as e:
        raise HTTPException(status_code=503, detail=f"Card draw failed, please try again: {e}")
    return _view(handle, machine)


@router.post("/{handle}/reveal/{index}", response_model=SessionView)
def reveal(handle: str, index: int, registry: SessionRegistry = Depends(get_registry)) -> SessionView:
    machine = registry.get(handle)
    try:
        machine.mark_revealed(index)
    except InvalidTransition as e:
        raise _conflict(e)
    return _view(handle, machine)


@router.post("/{handle}/interpret", response_model=SessionView)
async def interpret(handle: str, req: Optional[InterpretRequest] = None,
                    registry: SessionRegistry = Depends(get_registry)) -> SessionView:
    machine = registry.get(handle)
    req = req or InterpretRequest()
    context = default_context()
    if req.birth_data is not None or req.current_date:
        context = PersonalizationContext(
            current_date=req.current_date or context.current_date,
            birth_data=req.birth_data,
        )
    try:
        await machine.request_interpretation(context, req.style, req.detail)
    except InvalidTransition as e:
        raise _conflict(e)
    return _view(handle, machine)


@router.post("/{handle}/save", response_model=PersistedReading)
async def save(handle: str, req: SaveRequest, registry: SessionRegistry = Depends(get_registry)) -> PersistedReading:
    machine = registry.get(handle)
    try:
        reading = await machine.save(req.user_id)
    except InvalidTransition as e:
        raise _conflict(e)
    registry.discard(handle)
    return reading


@router.delete("/{handle}")
def clear(handle: str, registry: SessionRegistry = Depends(get_registry)):
    registry.get(handle)
    registry.discard(handle)
    return {"ok": True}


@history_router.get("/{user_id}", response_model=List[PersistedReading])
async def history(user_id: str, limit: int = 50, registry: SessionRegistry = Depends(get_registry)):
    return await registry.repository.load(user_id, limit=limit)


@history_router.delete("/{user_id}/{reading_id}")
async def delete_reading(user_id: str, reading_id: str, registry: SessionRegistry = Depends(get_registry)):
    try:
        await registry.repository.delete(reading_id, user_id)
    except PersistenceFailed as e:
        raise HTTPException(status_code=500, detail=str(e))
    return {"ok": True}
