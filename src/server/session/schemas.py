# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .models import MessageRole, ToolStatus


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FrozenCamelModel(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class Message(FrozenCamelModel):
    id: str
    role: MessageRole
    content: str
    timestamp: datetime
    seq: int
    reasoning_content: Optional[str] = None
    finalized: bool = True
    incomplete: bool = False
    error: Optional[str] = None


class ToolExecution(FrozenCamelModel):
    id: str
    tool_name: str
    input: Any = None
    output: Any = None
    status: ToolStatus
    start_time: datetime
    end_time: Optional[datetime] = None
    seq: int
    message_id: Optional[str] = None


class SessionSnapshot(FrozenCamelModel):
    """Immutable view of a session at one point in its mutation sequence."""

    session_id: str
    messages: tuple[Message, ...] = ()
    tool_executions: tuple[ToolExecution, ...] = ()
    is_streaming: bool = False
    error: Optional[str] = None

    @property
    def open_message(self) -> Optional[Message]:
        for message in reversed(self.messages):
            if message.role is MessageRole.ASSISTANT and not message.finalized:
                return message
        return None

    @property
    def has_unfinished_tools(self) -> bool:
        return any(not execution.status.is_terminal for execution in self.tool_executions)

    def tool(self, tool_id: str) -> Optional[ToolExecution]:
        for execution in self.tool_executions:
            if execution.id == tool_id:
                return execution
        return None


class TimelineEntry(FrozenCamelModel):
    kind: Literal["message", "tool"]
    id: str
    seq: int
    timestamp: datetime
    role: Optional[MessageRole] = None
    content: Optional[str] = None
    reasoning_content: Optional[str] = None
    streaming: bool = False
    incomplete: bool = False
    error: Optional[str] = None
    tool_name: Optional[str] = None
    status: Optional[ToolStatus] = None
    input: Any = None
    output: Any = None
    duration_ms: Optional[int] = None
    message_id: Optional[str] = None


class TimelineResponse(CamelModel):
    session_id: str
    is_streaming: bool
    entries: list[TimelineEntry] = Field(default_factory=list)


class SessionSummary(CamelModel):
    id: str
    user_id: Optional[str] = None
    title: Optional[str] = None
    last_message_preview: Optional[str] = None
    message_count: int = 0
    updated_at: datetime
    created_at: datetime


class SessionListResponse(CamelModel):
    sessions: list[SessionSummary]


class SessionEvent(CamelModel):
    event_id: str
    role: Literal["user", "assistant"]
    text: str
    event_timestamp: Optional[datetime] = None


class SessionEventsResponse(CamelModel):
    events: list[SessionEvent]


class SessionUpdateRequest(CamelModel):
    title: Optional[str] = Field(default=None, description="Manual session title override.")

    @field_validator("title")
    @classmethod
    def validate_title_length(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        value = value.strip()
        if not value:
            return None
        if len(value) > 60:
            raise ValueError("Title must be 60 characters or fewer")
        return value


class DeleteResponse(CamelModel):
    success: bool
