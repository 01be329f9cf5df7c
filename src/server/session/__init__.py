# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

"""Session state, stream ingestion and SQLite-backed history."""

from .ingest import StreamingIngestController, TurnOutcome
from .state import SessionRegistry, SessionStateStore, create_session
from .store import SQLiteSessionStore
from .timeline import build_timeline

__all__ = [
    "SQLiteSessionStore",
    "SessionRegistry",
    "SessionStateStore",
    "StreamingIngestController",
    "TurnOutcome",
    "build_timeline",
    "create_session",
]
