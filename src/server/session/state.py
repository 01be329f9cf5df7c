# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

"""In-memory conversational state for one chat session.

Every mutating method validates its preconditions before touching the
underlying record, so a failed call leaves the session exactly as it was.
Readers never see the mutable record: they get a ``SessionSnapshot``.
"""

from __future__ import annotations

import copy
import logging
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import uuid4

from .errors import (
    AlreadyStreaming,
    DuplicateToolId,
    InvalidInput,
    InvalidSessionId,
    InvalidTransition,
    NoOpenMessage,
    UnknownToolId,
)
from .models import MessageRecord, MessageRole, SessionRecord, ToolExecutionRecord, ToolStatus
from .schemas import Message, SessionSnapshot, ToolExecution

logger = logging.getLogger(__name__)


class SessionStateStore:
    """Owns the message and tool-execution history of a single session."""

    def __init__(self, session_id: str) -> None:
        if not isinstance(session_id, str) or not session_id.strip():
            raise InvalidSessionId("Session id must be a non-empty string")
        self._record = SessionRecord(session_id=session_id)
        self._open_message: Optional[MessageRecord] = None
        self._tools_by_id: dict[str, ToolExecutionRecord] = {}
        self._next_seq = 1

    @classmethod
    def from_snapshot(cls, snapshot: SessionSnapshot) -> "SessionStateStore":
        """Rebuild a store from persisted history; every message comes back closed."""
        store = cls(snapshot.session_id)
        for message in snapshot.messages:
            store._record.messages.append(
                MessageRecord(
                    id=message.id,
                    role=message.role,
                    content=message.content,
                    timestamp=message.timestamp,
                    seq=message.seq,
                    reasoning_content=message.reasoning_content,
                    finalized=True,
                    incomplete=message.incomplete or not message.finalized,
                    error=message.error,
                )
            )
        for execution in snapshot.tool_executions:
            record = ToolExecutionRecord(
                id=execution.id,
                tool_name=execution.tool_name,
                input=copy.deepcopy(execution.input),
                status=execution.status,
                start_time=execution.start_time,
                seq=execution.seq,
                output=copy.deepcopy(execution.output),
                end_time=execution.end_time,
                message_id=execution.message_id,
            )
            store._record.tool_executions.append(record)
            store._tools_by_id[record.id] = record
        store._record.error = snapshot.error
        seqs = [item.seq for item in snapshot.messages] + [item.seq for item in snapshot.tool_executions]
        store._next_seq = max(seqs, default=0) + 1
        return store

    @property
    def session_id(self) -> str:
        return self._record.session_id

    @property
    def is_streaming(self) -> bool:
        return self._record.is_streaming

    @property
    def open_message_id(self) -> Optional[str]:
        return self._open_message.id if self._open_message else None

    @property
    def error(self) -> Optional[str]:
        return self._record.error

    def append_user_message(self, content: str) -> Message:
        if not isinstance(content, str) or not content.strip():
            raise InvalidInput("User message content must not be empty")
        if self._open_message is not None:
            raise AlreadyStreaming(
                f"Session {self.session_id} has an assistant response in progress"
            )
        record = self._new_message(MessageRole.USER, content, finalized=True)
        self._record.messages.append(record)
        return _message_view(record)

    def begin_assistant_message(self) -> Message:
        if self._open_message is not None:
            raise AlreadyStreaming(
                f"Session {self.session_id} already has open message {self._open_message.id}"
            )
        record = self._new_message(MessageRole.ASSISTANT, "", finalized=False)
        self._record.messages.append(record)
        self._open_message = record
        self._record.is_streaming = True
        logger.debug("Opened assistant message %s in session %s", record.id, self.session_id)
        return _message_view(record)

    def append_assistant_delta(self, text: str) -> None:
        message = self._require_open_message()
        if not isinstance(text, str):
            raise InvalidInput("Assistant delta must be a string")
        if text:
            message.content += text

    def append_reasoning_delta(self, text: str) -> None:
        message = self._require_open_message()
        if not isinstance(text, str):
            raise InvalidInput("Reasoning delta must be a string")
        if text:
            message.reasoning_content = (message.reasoning_content or "") + text

    def finalize_assistant_message(
        self, *, incomplete: bool = False, error: Optional[str] = None
    ) -> Message:
        message = self._require_open_message()
        message.finalized = True
        message.incomplete = incomplete
        message.error = error
        self._open_message = None
        self._record.is_streaming = False
        logger.debug(
            "Finalized assistant message %s in session %s (incomplete=%s)",
            message.id,
            self.session_id,
            incomplete,
        )
        return _message_view(message)

    def record_tool_start(
        self,
        tool_id: str,
        tool_name: str,
        tool_input: Any = None,
        *,
        status: ToolStatus = ToolStatus.PENDING,
        start_time: Optional[datetime] = None,
    ) -> ToolExecution:
        if not isinstance(tool_id, str) or not tool_id:
            raise InvalidInput("Tool execution id must be a non-empty string")
        if not isinstance(tool_name, str) or not tool_name:
            raise InvalidInput("Tool name must be a non-empty string")
        status = _coerce_status(status)
        if status.is_terminal:
            raise InvalidTransition(f"Tool {tool_id} cannot start in terminal status {status.value}")
        if tool_id in self._tools_by_id:
            raise DuplicateToolId(f"Tool execution {tool_id} already exists in session {self.session_id}")

        record = ToolExecutionRecord(
            id=tool_id,
            tool_name=tool_name,
            input=copy.deepcopy(tool_input),
            status=status,
            start_time=start_time or _utc_now(),
            seq=self._take_seq(),
            message_id=self.open_message_id,
        )
        self._record.tool_executions.append(record)
        self._tools_by_id[tool_id] = record
        return _tool_view(record)

    def update_tool_status(
        self, tool_id: str, status: ToolStatus, output: Any = None
    ) -> ToolExecution:
        record = self._tools_by_id.get(tool_id)
        if record is None:
            raise UnknownToolId(f"Tool execution {tool_id} not found in session {self.session_id}")
        status = _coerce_status(status)
        if status.rank <= record.status.rank:
            raise InvalidTransition(
                f"Tool {tool_id} cannot move from {record.status.value} to {status.value}"
            )

        record.status = status
        if output is not None:
            record.output = copy.deepcopy(output)
        if status.is_terminal:
            record.end_time = _utc_now()
        return _tool_view(record)

    def mark_error(self, reason: str) -> None:
        self._record.error = reason

    def clear_error(self) -> None:
        self._record.error = None

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            session_id=self._record.session_id,
            messages=tuple(_message_view(message) for message in self._record.messages),
            tool_executions=tuple(_tool_view(record) for record in self._record.tool_executions),
            is_streaming=self._record.is_streaming,
            error=self._record.error,
        )

    def _require_open_message(self) -> MessageRecord:
        if self._open_message is None:
            raise NoOpenMessage(f"Session {self.session_id} has no open assistant message")
        return self._open_message

    def _new_message(self, role: MessageRole, content: str, *, finalized: bool) -> MessageRecord:
        return MessageRecord(
            id=uuid4().hex,
            role=role,
            content=content,
            timestamp=_utc_now(),
            seq=self._take_seq(),
            finalized=finalized,
        )

    def _take_seq(self) -> int:
        seq = self._next_seq
        self._next_seq += 1
        return seq


def create_session(session_id: str) -> SessionStateStore:
    return SessionStateStore(session_id)


class SessionRegistry:
    """Live session stores keyed by session id. Sessions never share state."""

    def __init__(self) -> None:
        self._sessions: dict[str, SessionStateStore] = {}

    def get(self, session_id: str) -> Optional[SessionStateStore]:
        return self._sessions.get(session_id)

    def get_or_create(self, session_id: str) -> SessionStateStore:
        store = self._sessions.get(session_id)
        if store is None:
            store = SessionStateStore(session_id)
            self._sessions[session_id] = store
            logger.info("Created session %s", session_id)
        return store

    def restore(self, snapshot: SessionSnapshot) -> SessionStateStore:
        existing = self._sessions.get(snapshot.session_id)
        if existing is not None:
            return existing
        store = SessionStateStore.from_snapshot(snapshot)
        self._sessions[snapshot.session_id] = store
        logger.info(
            "Restored session %s with %d messages", snapshot.session_id, len(snapshot.messages)
        )
        return store

    def release(self, store: SessionStateStore) -> bool:
        """Drop a finished session whose history is saved. Streaming or replaced stores stay."""
        if store.is_streaming or self._sessions.get(store.session_id) is not store:
            return False
        del self._sessions[store.session_id]
        logger.debug("Released session %s from memory", store.session_id)
        return True

    def discard(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)

    def session_ids(self) -> list[str]:
        return list(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions


def _message_view(record: MessageRecord) -> Message:
    return Message(
        id=record.id,
        role=record.role,
        content=record.content,
        timestamp=record.timestamp,
        seq=record.seq,
        reasoning_content=record.reasoning_content,
        finalized=record.finalized,
        incomplete=record.incomplete,
        error=record.error,
    )


def _tool_view(record: ToolExecutionRecord) -> ToolExecution:
    return ToolExecution(
        id=record.id,
        tool_name=record.tool_name,
        input=copy.deepcopy(record.input),
        output=copy.deepcopy(record.output),
        status=record.status,
        start_time=record.start_time,
        end_time=record.end_time,
        seq=record.seq,
        message_id=record.message_id,
    )


def _coerce_status(status: Any) -> ToolStatus:
    try:
        return ToolStatus(status)
    except ValueError as exc:
        raise InvalidInput(f"Unknown tool status: {status!r}") from exc


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)
