# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

from __future__ import annotations

from .schemas import Message, SessionSnapshot, TimelineEntry, ToolExecution


def build_timeline(snapshot: SessionSnapshot) -> tuple[TimelineEntry, ...]:
    """Project a session snapshot into renderable entries ordered by creation."""
    entries = [_message_entry(message) for message in snapshot.messages]
    entries.extend(_tool_entry(execution) for execution in snapshot.tool_executions)
    entries.sort(key=lambda entry: entry.seq)
    return tuple(entries)


def _message_entry(message: Message) -> TimelineEntry:
    return TimelineEntry(
        kind="message",
        id=message.id,
        seq=message.seq,
        timestamp=message.timestamp,
        role=message.role,
        content=message.content,
        reasoning_content=message.reasoning_content,
        streaming=not message.finalized,
        incomplete=message.incomplete,
        error=message.error,
    )


def _tool_entry(execution: ToolExecution) -> TimelineEntry:
    duration_ms = None
    if execution.end_time is not None:
        duration_ms = int((execution.end_time - execution.start_time).total_seconds() * 1000)
    return TimelineEntry(
        kind="tool",
        id=execution.id,
        seq=execution.seq,
        timestamp=execution.start_time,
        tool_name=execution.tool_name,
        status=execution.status,
        input=execution.input,
        output=execution.output,
        duration_ms=duration_ms,
        message_id=execution.message_id,
    )
