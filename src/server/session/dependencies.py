# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Optional

from fastapi import Depends

from src.catalog import ModelCatalog
from src.config import ServerSettings
from src.server.agent_client import AgentRuntimeClient

from .state import SessionRegistry
from .store import SQLiteSessionStore

logger = logging.getLogger(__name__)

_SESSION_STORE: Optional[SQLiteSessionStore] = None
_SESSION_REGISTRY: Optional[SessionRegistry] = None
_AGENT_CLIENT: Optional[AgentRuntimeClient] = None
_MODEL_CATALOG: Optional[ModelCatalog] = None


@lru_cache(maxsize=1)
def get_settings() -> ServerSettings:
    return ServerSettings.from_env()


def initialise_session_store() -> SQLiteSessionStore:
    """Create session store instance using configuration."""
    global _SESSION_STORE
    if _SESSION_STORE is not None:
        return _SESSION_STORE

    store = SQLiteSessionStore(get_settings().session_db_path)
    _SESSION_STORE = store
    logger.info("Initialised session store with DB path %s", store.db_path)
    return store


def set_session_store(store: SQLiteSessionStore) -> None:
    global _SESSION_STORE
    _SESSION_STORE = store


def get_session_store(_: SQLiteSessionStore = Depends(initialise_session_store)) -> SQLiteSessionStore:
    if _SESSION_STORE is None:
        raise RuntimeError("Session store has not been initialised")
    return _SESSION_STORE


def get_session_registry() -> SessionRegistry:
    global _SESSION_REGISTRY
    if _SESSION_REGISTRY is None:
        _SESSION_REGISTRY = SessionRegistry()
    return _SESSION_REGISTRY


def set_session_registry(registry: SessionRegistry) -> None:
    global _SESSION_REGISTRY
    _SESSION_REGISTRY = registry


def get_agent_client() -> AgentRuntimeClient:
    global _AGENT_CLIENT
    if _AGENT_CLIENT is None:
        settings = get_settings()
        _AGENT_CLIENT = AgentRuntimeClient(
            settings.agent_invocations_url, timeout=settings.agent_timeout_seconds
        )
    return _AGENT_CLIENT


def set_agent_client(client: AgentRuntimeClient) -> None:
    global _AGENT_CLIENT
    _AGENT_CLIENT = client


def get_model_catalog() -> ModelCatalog:
    global _MODEL_CATALOG
    if _MODEL_CATALOG is None:
        _MODEL_CATALOG = ModelCatalog(get_settings().agent_models_url)
    return _MODEL_CATALOG


def set_model_catalog(catalog: ModelCatalog) -> None:
    global _MODEL_CATALOG
    _MODEL_CATALOG = catalog
