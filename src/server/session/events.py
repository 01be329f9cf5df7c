# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

"""Typed ingest events applied to a session by the streaming controller."""

from __future__ import annotations

from typing import Annotated, Any, Literal, Mapping, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel

from .errors import MalformedEvent
from .models import ToolStatus


class _IngestEvent(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True, extra="forbid"
    )


class TurnStarted(_IngestEvent):
    kind: Literal["turn-started"] = "turn-started"


class TextDelta(_IngestEvent):
    kind: Literal["text-delta"] = "text-delta"
    text: str


class ThinkingDelta(_IngestEvent):
    kind: Literal["thinking-delta"] = "thinking-delta"
    text: str


class ToolStarted(_IngestEvent):
    kind: Literal["tool-started"] = "tool-started"
    id: str = Field(min_length=1)
    tool_name: str = Field(min_length=1)
    input: Any = None
    status: ToolStatus = ToolStatus.PENDING


class ToolUpdated(_IngestEvent):
    kind: Literal["tool-updated"] = "tool-updated"
    id: str = Field(min_length=1)
    status: ToolStatus
    output: Any = None


class TurnCompleted(_IngestEvent):
    kind: Literal["turn-completed"] = "turn-completed"


class TurnFailed(_IngestEvent):
    kind: Literal["turn-failed"] = "turn-failed"
    reason: str


IngestEvent = Annotated[
    Union[
        TurnStarted,
        TextDelta,
        ThinkingDelta,
        ToolStarted,
        ToolUpdated,
        TurnCompleted,
        TurnFailed,
    ],
    Field(discriminator="kind"),
]

EVENT_TYPES = (
    TurnStarted,
    TextDelta,
    ThinkingDelta,
    ToolStarted,
    ToolUpdated,
    TurnCompleted,
    TurnFailed,
)

_EVENT_ADAPTER: TypeAdapter[Any] = TypeAdapter(IngestEvent)


def parse_event(raw: Any) -> Any:
    """Validate a raw mapping (or pass through an event) as an ingest event."""
    if isinstance(raw, EVENT_TYPES):
        return raw
    if not isinstance(raw, Mapping):
        raise MalformedEvent(f"Unsupported event payload: {type(raw).__name__}")
    try:
        return _EVENT_ADAPTER.validate_python(dict(raw))
    except ValidationError as exc:
        raise MalformedEvent(_describe_validation_error(raw, exc)) from exc


def _describe_validation_error(raw: Mapping[str, Any], exc: ValidationError) -> str:
    kind = raw.get("kind")
    problems = "; ".join(
        f"{'.'.join(str(part) for part in error['loc']) or 'event'}: {error['msg']}"
        for error in exc.errors()
    )
    return f"Malformed {kind or 'untyped'} event: {problems}"
