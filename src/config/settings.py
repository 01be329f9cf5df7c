# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

from __future__ import annotations

from dataclasses import dataclass, field

from .loader import get_int_env, get_str_env


@dataclass(frozen=True, slots=True)
class ServerSettings:
    """Runtime settings for the chat backend, resolved from the environment."""

    agent_invocations_url: str = "http://localhost:8080/invocations"
    agent_models_url: str = "http://localhost:8080/models"
    agent_timeout_seconds: int = 300
    session_db_path: str = "research_chat.db"
    allowed_origins: list[str] = field(default_factory=lambda: ["http://localhost:5173"])
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "ServerSettings":
        origins = get_str_env("ALLOWED_ORIGINS", "http://localhost:5173")
        return cls(
            agent_invocations_url=get_str_env(
                "AGENT_INVOCATIONS_URL", "http://localhost:8080/invocations"
            ),
            agent_models_url=get_str_env("AGENT_MODELS_URL", "http://localhost:8080/models"),
            agent_timeout_seconds=get_int_env("AGENT_TIMEOUT_SECONDS", 300),
            session_db_path=get_str_env("SESSION_DB_PATH", "research_chat.db"),
            allowed_origins=[origin.strip() for origin in origins.split(",") if origin.strip()],
            log_level=get_str_env("LOG_LEVEL", "INFO").upper(),
        )
