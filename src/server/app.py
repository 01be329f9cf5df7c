# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from src.catalog import ModelCatalog
from src.server.agent_client import AgentRuntimeClient
from src.server.chat_request import InvocationRequest
from src.server.chat_stream import ChatTurnRunner
from src.server.session.dependencies import (
    get_agent_client,
    get_model_catalog,
    get_session_registry,
    get_session_store,
    get_settings,
    initialise_session_store,
    set_session_store,
)
from src.server.session.errors import AlreadyStreaming, InvalidInput
from src.server.session.router import router as session_router
from src.server.session.state import SessionRegistry
from src.server.session.store import SQLiteSessionStore

logger = logging.getLogger(__name__)

INTERNAL_SERVER_ERROR_DETAIL = "Internal Server Error"


@asynccontextmanager
async def lifespan(_: FastAPI):
    session_store = initialise_session_store()
    await session_store.init()
    set_session_store(session_store)
    try:
        yield
    finally:
        await session_store.close()


app = FastAPI(
    title="Research Chat API",
    description="Chat backend for the multi-agent research assistant",
    version="0.1.0",
    lifespan=lifespan,
)

allowed_origins = get_settings().allowed_origins

logger.info("Allowed origins: %s", allowed_origins)

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(session_router)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Report malformed request bodies and parameters as 400 with a one-line reason."""
    messages = [
        f"{'.'.join(str(part) for part in error.get('loc', ()))}: {error.get('msg', 'invalid')}"
        for error in exc.errors()
    ]
    logger.warning("Rejected request to %s: %s", request.url.path, "; ".join(messages))
    return JSONResponse(
        status_code=400,
        content=jsonable_encoder({"detail": "; ".join(messages), "errors": exc.errors()}),
    )


@app.get("/api/models")
async def list_models(catalog: ModelCatalog = Depends(get_model_catalog)):
    """List selectable foundation models; an unreachable catalog yields an empty list."""
    models = await catalog.list_models()
    return {"models": [model.to_payload() for model in models]}


@app.post("/api/chat/stream")
async def chat_stream(
    request: InvocationRequest,
    authorization: Optional[str] = Header(default=None),
    registry: SessionRegistry = Depends(get_session_registry),
    agent_client: AgentRuntimeClient = Depends(get_agent_client),
    catalog: ModelCatalog = Depends(get_model_catalog),
    session_store: SQLiteSessionStore = Depends(get_session_store),
):
    runner = ChatTurnRunner(registry, agent_client, catalog, session_store)
    try:
        turn = await runner.prepare(request)
    except AlreadyStreaming as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except InvalidInput as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    try:
        return StreamingResponse(
            runner.stream(turn, _bearer_token(authorization)),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache"},
        )
    except Exception:
        logger.exception("Failed to start response stream for session %s", turn.session_id)
        turn.abandon()
        raise HTTPException(status_code=500, detail=INTERNAL_SERVER_ERROR_DETAIL)


@app.get("/ping")
async def ping():
    return {"status": "Healthy", "time_of_last_update": int(time.time())}


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization or not authorization.startswith("Bearer "):
        return None
    token = authorization[len("Bearer "):].strip()
    return token or None
