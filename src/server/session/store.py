# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from .models import MessageRole, SessionHistoryRecord, ToolStatus
from .schemas import Message, SessionSnapshot, ToolExecution
from .title import derive_session_title

logger = logging.getLogger(__name__)


_SESSIONS_DDL = """
CREATE TABLE IF NOT EXISTS sessions (
    id TEXT PRIMARY KEY,
    user_id TEXT,
    title TEXT,
    last_message_preview TEXT,
    message_count INTEGER NOT NULL DEFAULT 0,
    error TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""

_MESSAGES_DDL = """
CREATE TABLE IF NOT EXISTS messages (
    id TEXT PRIMARY KEY,
    session_id TEXT NOT NULL,
    role TEXT NOT NULL,
    content TEXT NOT NULL,
    reasoning_content TEXT,
    incomplete INTEGER NOT NULL DEFAULT 0,
    error TEXT,
    seq INTEGER NOT NULL,
    created_at TEXT NOT NULL,
    FOREIGN KEY(session_id) REFERENCES sessions(id) ON DELETE CASCADE
);
"""

_TOOL_EXECUTIONS_DDL = """
CREATE TABLE IF NOT EXISTS tool_executions (
    id TEXT NOT NULL,
    session_id TEXT NOT NULL,
    message_id TEXT,
    tool_name TEXT NOT NULL,
    input TEXT,
    output TEXT,
    status TEXT NOT NULL,
    seq INTEGER NOT NULL,
    start_time TEXT NOT NULL,
    end_time TEXT,
    PRIMARY KEY (session_id, id),
    FOREIGN KEY(session_id) REFERENCES sessions(id) ON DELETE CASCADE
);
"""

_CREATE_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_sessions_updated ON sessions(updated_at DESC);",
    "CREATE INDEX IF NOT EXISTS idx_sessions_user ON sessions(user_id);",
    "CREATE INDEX IF NOT EXISTS idx_messages_session_seq ON messages(session_id, seq);",
    "CREATE INDEX IF NOT EXISTS idx_tools_session_seq ON tool_executions(session_id, seq);",
]

_SESSION_COLUMNS = (
    "id, user_id, title, last_message_preview, message_count, error, created_at, updated_at"
)


def _ensure_pragmas(connection: sqlite3.Connection) -> None:
    connection.execute("PRAGMA foreign_keys = ON;")
    connection.execute("PRAGMA journal_mode = WAL;")


class SQLiteSessionStore:
    """SQLite-backed history of finished chat turns."""

    def __init__(self, db_path: str) -> None:
        path = Path(db_path)
        if not path.is_absolute() and path.name != ":memory":
            path = Path.cwd() / path
        if path.suffix != ".db" and path.name != ":memory":
            path = path.with_suffix(".db")
        self._db_path = str(path)
        self._write_lock = asyncio.Lock()

    @property
    def db_path(self) -> str:
        return self._db_path

    async def init(self) -> None:
        """Initialise database schema."""
        db_path_obj = Path(self._db_path)
        if db_path_obj.name != ":memory":
            db_path_obj.parent.mkdir(parents=True, exist_ok=True)

        def _init() -> None:
            with sqlite3.connect(self._db_path) as connection:
                _ensure_pragmas(connection)
                connection.execute(_SESSIONS_DDL)
                connection.execute(_MESSAGES_DDL)
                connection.execute(_TOOL_EXECUTIONS_DDL)
                for statement in _CREATE_INDEXES:
                    connection.execute(statement)
                connection.commit()

        await asyncio.to_thread(_init)
        logger.info("Session database initialised at %s", self._db_path)

    async def close(self) -> None:  # pragma: no cover - compatibility placeholder
        return None

    async def save_snapshot(self, snapshot: SessionSnapshot, *, user_id: Optional[str] = None) -> None:
        """Upsert a session with all of its messages and tool executions."""
        now = _utc_now_str()
        preview = _last_preview(snapshot.messages)
        title = derive_session_title(snapshot.messages)
        created_at = (
            _format_ts(snapshot.messages[0].timestamp) if snapshot.messages else now
        )

        def _save() -> None:
            with sqlite3.connect(self._db_path) as connection:
                _ensure_pragmas(connection)
                connection.execute(
                    "INSERT INTO sessions (id, user_id, title, last_message_preview, message_count, error, created_at, updated_at)"
                    " VALUES (?, ?, ?, ?, ?, ?, ?, ?)"
                    " ON CONFLICT(id) DO UPDATE SET"
                    " user_id = COALESCE(excluded.user_id, sessions.user_id),"
                    " title = COALESCE(sessions.title, excluded.title),"
                    " last_message_preview = excluded.last_message_preview,"
                    " message_count = excluded.message_count,"
                    " error = excluded.error,"
                    " updated_at = excluded.updated_at",
                    (
                        snapshot.session_id,
                        user_id,
                        title,
                        preview,
                        len(snapshot.messages),
                        snapshot.error,
                        created_at,
                        now,
                    ),
                )
                connection.executemany(
                    "INSERT OR REPLACE INTO messages (id, session_id, role, content, reasoning_content, incomplete, error, seq, created_at)"
                    " VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    [
                        (
                            message.id,
                            snapshot.session_id,
                            message.role.value,
                            message.content,
                            message.reasoning_content,
                            int(message.incomplete or not message.finalized),
                            message.error,
                            message.seq,
                            _format_ts(message.timestamp),
                        )
                        for message in snapshot.messages
                    ],
                )
                connection.executemany(
                    "INSERT OR REPLACE INTO tool_executions (id, session_id, message_id, tool_name, input, output, status, seq, start_time, end_time)"
                    " VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    [
                        (
                            execution.id,
                            snapshot.session_id,
                            execution.message_id,
                            execution.tool_name,
                            _dump_json(execution.input),
                            _dump_json(execution.output),
                            execution.status.value,
                            execution.seq,
                            _format_ts(execution.start_time),
                            _format_ts(execution.end_time) if execution.end_time else None,
                        )
                        for execution in snapshot.tool_executions
                    ],
                )
                connection.commit()

        async with self._write_lock:
            await asyncio.to_thread(_save)
        logger.debug(
            "Saved session %s (%d messages, %d tool executions)",
            snapshot.session_id,
            len(snapshot.messages),
            len(snapshot.tool_executions),
        )

    async def list_sessions(self, *, user_id: Optional[str] = None) -> list[SessionHistoryRecord]:
        if user_id is None:
            rows = await asyncio.to_thread(
                self._fetchall,
                f"SELECT {_SESSION_COLUMNS} FROM sessions ORDER BY updated_at DESC",
            )
        else:
            rows = await asyncio.to_thread(
                self._fetchall,
                f"SELECT {_SESSION_COLUMNS} FROM sessions WHERE user_id = ? ORDER BY updated_at DESC",
                (user_id,),
            )
        return [self._row_to_session(row) for row in rows]

    async def get_session(self, session_id: str) -> Optional[SessionHistoryRecord]:
        row = await asyncio.to_thread(
            self._fetchone,
            f"SELECT {_SESSION_COLUMNS} FROM sessions WHERE id = ?",
            (session_id,),
        )
        return self._row_to_session(row) if row else None

    async def get_message_history(self, session_id: str) -> list[Message]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT id, role, content, reasoning_content, incomplete, error, seq, created_at "
            "FROM messages WHERE session_id = ? ORDER BY seq ASC",
            (session_id,),
        )
        return [
            Message(
                id=row["id"],
                role=MessageRole(row["role"]),
                content=row["content"],
                timestamp=_parse_ts(row["created_at"]),
                seq=row["seq"],
                reasoning_content=row["reasoning_content"],
                finalized=True,
                incomplete=bool(row["incomplete"]),
                error=row["error"],
            )
            for row in rows
        ]

    async def load_snapshot(self, session_id: str) -> Optional[SessionSnapshot]:
        session = await self.get_session(session_id)
        if session is None:
            return None
        messages = await self.get_message_history(session_id)
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT id, message_id, tool_name, input, output, status, seq, start_time, end_time "
            "FROM tool_executions WHERE session_id = ? ORDER BY seq ASC",
            (session_id,),
        )
        executions = [
            ToolExecution(
                id=row["id"],
                tool_name=row["tool_name"],
                input=_load_json(row["input"]),
                output=_load_json(row["output"]),
                status=ToolStatus(row["status"]),
                start_time=_parse_ts(row["start_time"]),
                end_time=_parse_ts(row["end_time"]) if row["end_time"] else None,
                seq=row["seq"],
                message_id=row["message_id"],
            )
            for row in rows
        ]
        return SessionSnapshot(
            session_id=session_id,
            messages=tuple(messages),
            tool_executions=tuple(executions),
            is_streaming=False,
            error=session.error,
        )

    async def rename_session(self, session_id: str, title: str) -> SessionHistoryRecord:
        now = _utc_now_str()
        async with self._write_lock:
            await asyncio.to_thread(
                self._execute,
                "UPDATE sessions SET title = ?, updated_at = ? WHERE id = ?",
                (title, now, session_id),
            )
        session = await self.get_session(session_id)
        if session is None:
            raise ValueError(f"Session {session_id} not found after rename")
        return session

    async def delete_session(self, session_id: str) -> None:
        async with self._write_lock:
            await asyncio.to_thread(
                self._execute,
                "DELETE FROM sessions WHERE id = ?",
                (session_id,),
            )

    def _execute(self, query: str, params: tuple = ()) -> None:
        with sqlite3.connect(self._db_path) as connection:
            _ensure_pragmas(connection)
            connection.execute(query, params)
            connection.commit()

    def _fetchall(self, query: str, params: tuple = ()) -> list[sqlite3.Row]:
        with sqlite3.connect(self._db_path) as connection:
            connection.row_factory = sqlite3.Row
            _ensure_pragmas(connection)
            cursor = connection.execute(query, params)
            return cursor.fetchall()

    def _fetchone(self, query: str, params: tuple = ()) -> Optional[sqlite3.Row]:
        with sqlite3.connect(self._db_path) as connection:
            connection.row_factory = sqlite3.Row
            _ensure_pragmas(connection)
            cursor = connection.execute(query, params)
            return cursor.fetchone()

    @staticmethod
    def _row_to_session(row: sqlite3.Row) -> SessionHistoryRecord:
        return SessionHistoryRecord(
            id=row["id"],
            user_id=row["user_id"],
            title=row["title"],
            last_message_preview=row["last_message_preview"],
            message_count=int(row["message_count"] or 0),
            error=row["error"],
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
        )


def _last_preview(messages: tuple[Message, ...]) -> Optional[str]:
    for message in reversed(messages):
        if message.content.strip():
            return message.content[:200]
    return None


def _dump_json(value: Any) -> Optional[str]:
    if value is None:
        return None
    return json.dumps(value, ensure_ascii=False, default=str)


def _load_json(value: Optional[str]) -> Any:
    return json.loads(value) if value else None


def _utc_now_str() -> str:
    return _format_ts(datetime.now(timezone.utc))


def _format_ts(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _parse_ts(value: str) -> datetime:
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
