# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

"""Decoding of the agent runtime's SSE frames into ingest events."""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterable, AsyncIterator, Optional

from .errors import MalformedEvent
from .events import (
    TextDelta,
    ThinkingDelta,
    ToolStarted,
    ToolUpdated,
    TurnCompleted,
    TurnFailed,
    TurnStarted,
)
from .models import ToolStatus

logger = logging.getLogger(__name__)


async def iter_sse_data(lines: AsyncIterable[str]) -> AsyncIterator[str]:
    """Yield the data payload of each SSE frame in a stream of text lines."""
    data_lines: list[str] = []
    async for line in lines:
        line = line.rstrip("\r\n")
        if not line:
            if data_lines:
                yield "\n".join(data_lines)
                data_lines = []
            continue
        if line.startswith(":"):
            continue
        if line.startswith("data:"):
            value = line[len("data:"):]
            data_lines.append(value[1:] if value.startswith(" ") else value)
    if data_lines:
        yield "\n".join(data_lines)


def decode_wire_event(payload: str) -> dict[str, Any]:
    try:
        event = json.loads(payload)
    except json.JSONDecodeError as exc:
        raise MalformedEvent(f"Invalid JSON in event frame: {payload[:200]}") from exc
    if not isinstance(event, dict) or not isinstance(event.get("type"), str):
        raise MalformedEvent(f"Event frame has no type: {payload[:200]}")
    return event


class WireEventTranslator:
    """Maps the agent runtime's wire events onto ingest events for one turn.

    The runtime reports tool completion by tool name only, so pending tool ids
    are tracked here to route each ``tool.end`` to the right execution.
    """

    def __init__(self, *, turn_started: bool = False) -> None:
        self.session_id: Optional[str] = None
        self._turn_started = turn_started
        self._finished = False
        self._tool_counter = 0
        self._open_tools: list[tuple[str, str]] = []

    @property
    def finished(self) -> bool:
        return self._finished

    def translate(self, event: dict[str, Any]) -> list[Any]:
        event_type = event.get("type")
        if self._finished:
            logger.debug("Dropping %s event received after the turn finished", event_type)
            return []

        if event_type == "meta":
            session_id = event.get("sessionId")
            if not isinstance(session_id, str) or not session_id:
                raise MalformedEvent("meta event requires a sessionId")
            self.session_id = session_id
            return []
        if event_type == "run.start":
            return self._start_turn()
        if event_type == "message.delta":
            return self._start_turn() + [TextDelta(text=_require_str(event, "text"))]
        if event_type == "thinking.delta":
            return self._start_turn() + [ThinkingDelta(text=_require_str(event, "text"))]
        if event_type == "tool.start":
            return self._start_turn() + [self._tool_started(event)]
        if event_type == "tool.end":
            return self._start_turn() + [self._tool_ended(event)]
        if event_type == "message.done":
            self._finished = True
            return self._start_turn() + [TurnCompleted()]
        if event_type == "error":
            self._finished = True
            message = event.get("message")
            reason = message if isinstance(message, str) and message else "Unknown error"
            return [TurnFailed(reason=reason)]
        raise MalformedEvent(f"Unknown event type: {event_type}")

    def _start_turn(self) -> list[Any]:
        if self._turn_started:
            return []
        self._turn_started = True
        return [TurnStarted()]

    def _tool_started(self, event: dict[str, Any]) -> ToolStarted:
        tool_name = _require_str(event, "toolName")
        tool_id = event.get("toolUseId")
        if not isinstance(tool_id, str) or not tool_id:
            self._tool_counter += 1
            tool_id = f"{tool_name}-{self._tool_counter}"
        self._open_tools.append((tool_id, tool_name))
        return ToolStarted(
            id=tool_id,
            tool_name=tool_name,
            input=event.get("input"),
            status=ToolStatus.RUNNING,
        )

    def _tool_ended(self, event: dict[str, Any]) -> ToolUpdated:
        tool_name = _require_str(event, "toolName")
        tool_id = event.get("toolUseId")
        match: Optional[tuple[str, str]] = None
        for entry in self._open_tools:
            if (tool_id and entry[0] == tool_id) or (not tool_id and entry[1] == tool_name):
                match = entry
                break
        if match is None:
            raise MalformedEvent(f"tool.end for {tool_name} has no matching tool.start")
        self._open_tools.remove(match)

        failed = event.get("status") == ToolStatus.FAILED.value or bool(event.get("error"))
        output = event.get("output")
        if output is None and event.get("error"):
            output = {"error": event["error"]}
        return ToolUpdated(
            id=match[0],
            status=ToolStatus.FAILED if failed else ToolStatus.COMPLETED,
            output=output,
        )


def _require_str(event: dict[str, Any], key: str) -> str:
    value = event.get(key)
    if not isinstance(value, str):
        raise MalformedEvent(f"{event.get('type')} event requires a string {key}")
    return value
