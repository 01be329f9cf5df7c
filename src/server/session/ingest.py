# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, AsyncIterable, Iterable, Optional

from .errors import AlreadyStreaming, MalformedEvent, ProtocolViolation, TransportInterrupted
from .events import (
    TextDelta,
    ThinkingDelta,
    ToolStarted,
    ToolUpdated,
    TurnCompleted,
    TurnFailed,
    TurnStarted,
    parse_event,
)
from .state import SessionStateStore

logger = logging.getLogger(__name__)


class TurnOutcome(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    INTERRUPTED = "interrupted"
    CANCELLED = "cancelled"


class StreamingIngestController:
    """Applies one turn's ingest events to a session store, strictly in arrival order."""

    def __init__(self, store: SessionStateStore) -> None:
        self._store = store
        self._outcome: Optional[TurnOutcome] = None

    @property
    def store(self) -> SessionStateStore:
        return self._store

    @property
    def outcome(self) -> Optional[TurnOutcome]:
        return self._outcome

    def apply(self, event: Any) -> Any:
        """Apply a single event. Returns the validated event."""
        try:
            parsed = parse_event(event)
            self._dispatch(parsed)
        except ProtocolViolation as exc:
            logger.error(
                "Protocol violation in session %s: %s", self._store.session_id, exc
            )
            if not isinstance(exc, AlreadyStreaming):
                self._store.mark_error(str(exc))
            raise
        return parsed

    def apply_all(self, events: Iterable[Any]) -> int:
        """Apply events in order, stopping at the first failure.

        Events applied before the failing one stay applied. Returns the number
        of events applied.
        """
        applied = 0
        for event in events:
            self.apply(event)
            applied += 1
        return applied

    async def consume(self, events: AsyncIterable[Any]) -> TurnOutcome:
        try:
            async for event in events:
                self.apply(event)
        except asyncio.CancelledError:
            self.cancel()
            raise
        except TransportInterrupted as exc:
            self.interrupt(str(exc))
            return TurnOutcome.INTERRUPTED

        if self._store.open_message_id is not None:
            self.interrupt(
                f"Stream for session {self._store.session_id} ended before the turn finished"
            )
        return self._outcome or TurnOutcome.INTERRUPTED

    def interrupt(self, reason: str) -> None:
        """Close an open turn whose stream ended early, keeping the partial content."""
        if self._store.open_message_id is None:
            return
        logger.warning("%s; keeping partial content", reason)
        self._store.finalize_assistant_message(incomplete=True)
        self._outcome = TurnOutcome.INTERRUPTED

    def cancel(self) -> None:
        """Abandon the turn: close the open message, leave tool executions as they are."""
        if self._store.open_message_id is None:
            return
        logger.info("Turn cancelled in session %s; keeping partial content", self._store.session_id)
        self._store.finalize_assistant_message(incomplete=True)
        self._outcome = TurnOutcome.CANCELLED

    def _dispatch(self, event: Any) -> None:
        store = self._store
        if isinstance(event, TurnStarted):
            store.begin_assistant_message()
            store.clear_error()
            self._outcome = None
        elif isinstance(event, TextDelta):
            store.append_assistant_delta(event.text)
        elif isinstance(event, ThinkingDelta):
            store.append_reasoning_delta(event.text)
        elif isinstance(event, ToolStarted):
            store.record_tool_start(event.id, event.tool_name, event.input, status=event.status)
        elif isinstance(event, ToolUpdated):
            store.update_tool_status(event.id, event.status, event.output)
        elif isinstance(event, TurnCompleted):
            store.finalize_assistant_message()
            self._outcome = TurnOutcome.COMPLETED
        elif isinstance(event, TurnFailed):
            if store.open_message_id is not None:
                store.finalize_assistant_message(incomplete=True, error=event.reason)
            store.mark_error(event.reason)
            self._outcome = TurnOutcome.FAILED
        else:
            raise MalformedEvent(f"Unsupported event: {event!r}")
