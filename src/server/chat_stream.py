# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import aclosing
from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional
from uuid import uuid4

from src.catalog import ModelCatalog
from src.server.agent_client import AgentInvocationError, AgentRuntimeClient
from src.server.chat_request import InvocationRequest
from src.server.session.errors import (
    AlreadyStreaming,
    InvalidInput,
    ProtocolViolation,
    TransportInterrupted,
)
from src.server.session.events import TurnFailed, TurnStarted
from src.server.session.ingest import StreamingIngestController, TurnOutcome
from src.server.session.schemas import SessionSnapshot
from src.server.session.state import SessionRegistry, SessionStateStore
from src.server.session.store import SQLiteSessionStore
from src.server.session.wire import WireEventTranslator

logger = logging.getLogger(__name__)

_BACKGROUND_TASKS: set[asyncio.Task] = set()


@dataclass(slots=True)
class PreparedTurn:
    session_id: str
    request: InvocationRequest
    store: SessionStateStore
    controller: StreamingIngestController

    def abandon(self) -> None:
        """Close a turn whose response stream never ran."""
        self.controller.cancel()


class ChatTurnRunner:
    """Runs one agent turn for a session and re-streams it to the browser as SSE."""

    def __init__(
        self,
        registry: SessionRegistry,
        agent_client: AgentRuntimeClient,
        catalog: ModelCatalog,
        history: Optional[SQLiteSessionStore] = None,
    ) -> None:
        self._registry = registry
        self._agent_client = agent_client
        self._catalog = catalog
        self._history = history

    async def prepare(self, request: InvocationRequest) -> PreparedTurn:
        """Validate the request, record the user prompt and open the assistant turn.

        Raises ``InvalidInput`` for an unknown model and ``AlreadyStreaming``
        when the session already has a turn in flight.
        """
        if request.model_id is not None:
            if not self._catalog.known_model_ids:
                await self._catalog.list_models()
            if not self._catalog.is_known(request.model_id):
                raise InvalidInput(f"Unknown model id: {request.model_id}")

        session_id = request.session_id or uuid4().hex
        store = self._registry.get(session_id)
        if store is None and self._history is not None:
            snapshot = await self._history.load_snapshot(session_id)
            if snapshot is not None:
                store = self._registry.restore(snapshot)
        if store is None:
            store = self._registry.get_or_create(session_id)

        if store.is_streaming:
            raise AlreadyStreaming(f"Session {session_id} already has a turn in progress")
        store.append_user_message(request.prompt)
        controller = StreamingIngestController(store)
        controller.apply(TurnStarted())

        return PreparedTurn(
            session_id=session_id,
            request=request.model_copy(update={"session_id": session_id}),
            store=store,
            controller=controller,
        )

    async def stream(self, turn: PreparedTurn, auth_token: Optional[str] = None) -> AsyncIterator[str]:
        controller = turn.controller
        store = turn.store
        translator = WireEventTranslator(turn_started=True)

        try:
            yield _make_event("meta", {"sessionId": turn.session_id})
            yield _make_event(
                "turn-started", {"sessionId": turn.session_id, "messageId": store.open_message_id}
            )
            try:
                async with aclosing(self._agent_client.stream(turn.request, auth_token)) as wire_events:
                    async for wire_event in wire_events:
                        events = translator.translate(wire_event)
                        if wire_event.get("type") == "meta" and translator.session_id != turn.session_id:
                            logger.warning(
                                "Agent runtime reported session %s for session %s",
                                translator.session_id,
                                turn.session_id,
                            )
                        for event in events:
                            controller.apply(event)
                            yield _make_event(event.kind, _event_payload(event, turn.session_id))
                        if translator.finished:
                            break
            except TransportInterrupted as exc:
                controller.interrupt(str(exc))
            except AgentInvocationError as exc:
                failed = controller.apply(TurnFailed(reason=str(exc)))
                yield _make_event(failed.kind, _event_payload(failed, turn.session_id))
            except ProtocolViolation as exc:
                logger.error("Aborting turn in session %s: %s", turn.session_id, exc)
                controller.apply(TurnFailed(reason=str(exc)))
                yield _make_event("error", {"sessionId": turn.session_id, "message": str(exc)})

            if store.open_message_id is not None:
                controller.interrupt(
                    f"Agent stream for session {turn.session_id} ended before the turn finished"
                )
        except (asyncio.CancelledError, GeneratorExit):
            controller.cancel()
            self._persist_in_background(store, turn.request.user_id)
            raise

        await self._persist(store, store.snapshot(), turn.request.user_id)
        outcome = controller.outcome or TurnOutcome.INTERRUPTED
        yield _make_event(
            "done",
            {"sessionId": turn.session_id, "outcome": outcome.value, "error": store.error},
        )

    async def _persist(
        self, store: SessionStateStore, snapshot: SessionSnapshot, user_id: Optional[str]
    ) -> None:
        """Save the turn and release the live store; the next turn restores it from history."""
        if await self._save(snapshot, user_id):
            self._registry.release(store)

    async def _save(self, snapshot: SessionSnapshot, user_id: Optional[str]) -> bool:
        if self._history is None:
            return False
        try:
            await self._history.save_snapshot(snapshot, user_id=user_id)
        except Exception:  # noqa: BLE001 - history failure should not fail the turn
            logger.exception("Failed to persist session %s", snapshot.session_id)
            return False
        return True

    def _persist_in_background(self, store: SessionStateStore, user_id: Optional[str]) -> None:
        if self._history is None:
            return
        snapshot = store.snapshot()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running loop; session %s not persisted", snapshot.session_id)
            return
        task = loop.create_task(self._persist(store, snapshot, user_id))
        _BACKGROUND_TASKS.add(task)
        task.add_done_callback(_BACKGROUND_TASKS.discard)


def _event_payload(event: Any, session_id: str) -> dict[str, Any]:
    payload = event.model_dump(mode="json", by_alias=True, exclude={"kind"})
    payload["sessionId"] = session_id
    return payload


def _make_event(event_type: str, data: dict[str, Any]) -> str:
    try:
        json_data = json.dumps(data, ensure_ascii=False)
        return f"event: {event_type}\ndata: {json_data}\n\n"
    except (TypeError, ValueError) as e:
        logger.error("Error serializing event data: %s", e)
        error_data = json.dumps({"error": "Serialization failed"}, ensure_ascii=False)
        return f"event: error\ndata: {error_data}\n\n"
