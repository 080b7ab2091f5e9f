from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect, status

from clinic.api.deps import get_registry
from clinic.api.models import (
    AnswerRequest,
    AnswerResponse,
    RecordsResponse,
    SessionCreateRequest,
    SessionView,
    SignInRequest,
)
from clinic.errors import InvalidActionError
from clinic.persistence.gateway import FEED_LIMIT, RECORDS_LIMIT
from clinic.session import SessionCoordinator
from clinic.session_registry import SessionRegistry
from clinic.websocket_hub import SESSION_GONE

router = APIRouter()


def _coordinator(registry: SessionRegistry, session_id: str) -> SessionCoordinator:
    coordinator = registry.get(session_id)
    if coordinator is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
    return coordinator


@router.websocket("/ws/session/{session_id}")
async def session_updates_ws(
    websocket: WebSocket,
    session_id: str,
    registry: SessionRegistry = Depends(get_registry),
) -> None:
    coordinator = registry.get(session_id)
    if coordinator is None:
        await websocket.close(code=SESSION_GONE)
        return

    await registry.hub.subscribe(websocket, coordinator.view())

    try:
        # Keep the socket open; client can optionally send pings.
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        await registry.hub.unsubscribe(session_id, websocket)
    except Exception:
        await registry.hub.unsubscribe(session_id, websocket)
        raise


@router.get("/healthcheck")
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.post("/sessions", response_model=SessionView, status_code=status.HTTP_201_CREATED)
async def create_session_route(
    payload: SessionCreateRequest | None = None,
    registry: SessionRegistry = Depends(get_registry),
) -> SessionView:
    uid = payload.uid if payload is not None else None
    coordinator = await registry.create(uid)
    return coordinator.view()


@router.get("/sessions/{session_id}", response_model=SessionView)
async def get_session_route(session_id: str, registry: SessionRegistry = Depends(get_registry)) -> SessionView:
    return _coordinator(registry, session_id).view()


@router.post("/sessions/{session_id}/case", response_model=SessionView)
async def request_case_route(session_id: str, registry: SessionRegistry = Depends(get_registry)) -> SessionView:
    coordinator = _coordinator(registry, session_id)
    try:
        await coordinator.request_new_case()
    except InvalidActionError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e
    return coordinator.view()


@router.post("/sessions/{session_id}/answer", response_model=AnswerResponse)
async def answer_route(
    session_id: str,
    payload: AnswerRequest,
    registry: SessionRegistry = Depends(get_registry),
) -> AnswerResponse:
    coordinator = _coordinator(registry, session_id)
    try:
        correct = await coordinator.submit_answer(payload.kind, payload.option_index)
    except InvalidActionError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e
    return AnswerResponse(correct=correct, session=coordinator.view())


@router.post("/sessions/{session_id}/advance", response_model=SessionView)
async def advance_route(session_id: str, registry: SessionRegistry = Depends(get_registry)) -> SessionView:
    coordinator = _coordinator(registry, session_id)
    await coordinator.force_advance()
    return coordinator.view()


@router.post("/sessions/{session_id}/sign_in", response_model=SessionView)
async def sign_in_route(
    session_id: str,
    payload: SignInRequest,
    registry: SessionRegistry = Depends(get_registry),
) -> SessionView:
    coordinator = _coordinator(registry, session_id)
    await coordinator.sign_in(payload.uid)
    return coordinator.view()


@router.post("/sessions/{session_id}/sign_out", response_model=SessionView)
async def sign_out_route(session_id: str, registry: SessionRegistry = Depends(get_registry)) -> SessionView:
    coordinator = _coordinator(registry, session_id)
    await coordinator.sign_out()
    return coordinator.view()


@router.get("/sessions/{session_id}/records", response_model=RecordsResponse)
async def records_route(
    session_id: str,
    limit: int = Query(FEED_LIMIT, ge=1, le=RECORDS_LIMIT),
    registry: SessionRegistry = Depends(get_registry),
) -> RecordsResponse:
    coordinator = _coordinator(registry, session_id)
    return RecordsResponse(records=await coordinator.history(limit))
