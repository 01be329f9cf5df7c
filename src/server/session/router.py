# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from .dependencies import get_session_registry, get_session_store
from .models import MessageRole, SessionHistoryRecord
from .schemas import (
    DeleteResponse,
    SessionEvent,
    SessionEventsResponse,
    SessionListResponse,
    SessionSnapshot,
    SessionSummary,
    SessionUpdateRequest,
    TimelineResponse,
)
from .state import SessionRegistry
from .store import SQLiteSessionStore
from .timeline import build_timeline

router = APIRouter(prefix="/api/sessions", tags=["sessions"])


@router.get("", response_model=SessionListResponse)
async def list_sessions(
    user_id: Optional[str] = Query(default=None, alias="userId", description="Only sessions of this user."),
    store: SQLiteSessionStore = Depends(get_session_store),
) -> SessionListResponse:
    records = await store.list_sessions(user_id=user_id)
    return SessionListResponse(sessions=[_to_summary(record) for record in records])


@router.get("/{session_id}", response_model=SessionSnapshot)
async def get_session(
    session_id: str,
    store: SQLiteSessionStore = Depends(get_session_store),
    registry: SessionRegistry = Depends(get_session_registry),
) -> SessionSnapshot:
    return await _load_snapshot(session_id, store, registry)


@router.get("/{session_id}/timeline", response_model=TimelineResponse)
async def get_session_timeline(
    session_id: str,
    store: SQLiteSessionStore = Depends(get_session_store),
    registry: SessionRegistry = Depends(get_session_registry),
) -> TimelineResponse:
    snapshot = await _load_snapshot(session_id, store, registry)
    return TimelineResponse(
        session_id=snapshot.session_id,
        is_streaming=snapshot.is_streaming,
        entries=list(build_timeline(snapshot)),
    )


@router.get("/{session_id}/events", response_model=SessionEventsResponse)
async def get_session_events(
    session_id: str,
    store: SQLiteSessionStore = Depends(get_session_store),
    registry: SessionRegistry = Depends(get_session_registry),
) -> SessionEventsResponse:
    snapshot = await _load_snapshot(session_id, store, registry)
    messages = sorted(
        (message for message in snapshot.messages if message.content.strip()),
        key=lambda message: (message.timestamp, message.seq),
    )
    return SessionEventsResponse(
        events=[
            SessionEvent(
                event_id=message.id,
                role="user" if message.role is MessageRole.USER else "assistant",
                text=message.content.strip(),
                event_timestamp=message.timestamp,
            )
            for message in messages
        ]
    )


@router.patch("/{session_id}", response_model=SessionSummary)
async def update_session(
    session_id: str,
    payload: SessionUpdateRequest,
    store: SQLiteSessionStore = Depends(get_session_store),
) -> SessionSummary:
    session = await store.get_session(session_id)
    if session is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")

    if payload.title is not None:
        session = await store.rename_session(session_id, payload.title)
    return _to_summary(session)


@router.delete("/{session_id}", response_model=DeleteResponse)
async def delete_session(
    session_id: str,
    store: SQLiteSessionStore = Depends(get_session_store),
    registry: SessionRegistry = Depends(get_session_registry),
) -> DeleteResponse:
    live = registry.get(session_id)
    if live is not None and live.is_streaming:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Session is streaming")
    session = await store.get_session(session_id)
    if session is None and live is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
    await store.delete_session(session_id)
    registry.discard(session_id)
    return DeleteResponse(success=True)


async def _load_snapshot(
    session_id: str, store: SQLiteSessionStore, registry: SessionRegistry
) -> SessionSnapshot:
    live = registry.get(session_id)
    if live is not None:
        return live.snapshot()
    snapshot = await store.load_snapshot(session_id)
    if snapshot is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
    return snapshot


def _to_summary(record: SessionHistoryRecord) -> SessionSummary:
    return SessionSummary(
        id=record.id,
        user_id=record.user_id,
        title=record.title,
        last_message_preview=record.last_message_preview,
        message_count=record.message_count,
        updated_at=record.updated_at,
        created_at=record.created_at,
    )
