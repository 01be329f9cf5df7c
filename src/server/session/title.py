# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

from __future__ import annotations

import logging
from typing import Iterable

from .models import MessageRole
from .schemas import Message

logger = logging.getLogger(__name__)

_MAX_TITLE_LENGTH = 60
_FALLBACK_TITLE = "New chat"


def derive_session_title(messages: Iterable[Message]) -> str:
    """Title a session after its first assistant reply, else its first user prompt."""
    messages = list(messages)
    for role in (MessageRole.ASSISTANT, MessageRole.USER):
        for message in messages:
            if message.role is role and message.content.strip():
                return _truncate_to_limit(message.content)
    logger.debug("No message content available for title; using fallback")
    return _FALLBACK_TITLE


def _truncate_to_limit(text: str) -> str:
    cleaned = " ".join(text.split())
    if len(cleaned) <= _MAX_TITLE_LENGTH:
        return cleaned or _FALLBACK_TITLE
    trimmed = cleaned[: _MAX_TITLE_LENGTH - 1].rstrip()
    return f"{trimmed}…"
