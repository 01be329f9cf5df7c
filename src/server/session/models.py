# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class ToolStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ToolStatus.COMPLETED, ToolStatus.FAILED)

    @property
    def rank(self) -> int:
        if self is ToolStatus.PENDING:
            return 0
        if self is ToolStatus.RUNNING:
            return 1
        return 2


@dataclass(slots=True)
class MessageRecord:
    id: str
    role: MessageRole
    content: str
    timestamp: datetime
    seq: int
    reasoning_content: Optional[str] = None
    finalized: bool = False
    incomplete: bool = False
    error: Optional[str] = None


@dataclass(slots=True)
class ToolExecutionRecord:
    id: str
    tool_name: str
    input: Any
    status: ToolStatus
    start_time: datetime
    seq: int
    output: Any = None
    end_time: Optional[datetime] = None
    message_id: Optional[str] = None


@dataclass(slots=True)
class SessionRecord:
    session_id: str
    messages: list[MessageRecord] = field(default_factory=list)
    tool_executions: list[ToolExecutionRecord] = field(default_factory=list)
    is_streaming: bool = False
    error: Optional[str] = None


@dataclass(slots=True)
class SessionHistoryRecord:
    id: str
    user_id: Optional[str]
    title: Optional[str]
    last_message_preview: Optional[str]
    message_count: int
    error: Optional[str]
    created_at: datetime
    updated_at: datetime
