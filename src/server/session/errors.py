# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

"""Error taxonomy for session state and stream ingestion."""

from __future__ import annotations


class SessionError(Exception):
    """Base class for every session-level failure."""


class InvalidInput(SessionError, ValueError):
    """Caller supplied malformed or empty data."""


class InvalidSessionId(InvalidInput):
    pass


class ProtocolViolation(SessionError):
    """Sequencing error between the stream producer and the session store."""


class AlreadyStreaming(ProtocolViolation):
    pass


class NoOpenMessage(ProtocolViolation):
    pass


class DuplicateToolId(ProtocolViolation):
    pass


class UnknownToolId(ProtocolViolation):
    pass


class InvalidTransition(ProtocolViolation):
    pass


class MalformedEvent(ProtocolViolation):
    pass


class TransportInterrupted(SessionError):
    """The event stream ended before the turn reached a terminal event."""
