# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Optional

import httpx

from src.server.chat_request import InvocationRequest
from src.server.session.errors import TransportInterrupted
from src.server.session.wire import decode_wire_event, iter_sse_data

logger = logging.getLogger(__name__)


class AgentInvocationError(RuntimeError):
    """The agent runtime rejected the invocation or could not be reached."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AgentRuntimeClient:
    """Streams wire events from the agent runtime's invocation endpoint."""

    def __init__(
        self,
        invocations_url: str,
        *,
        timeout: float = 300,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.invocations_url = invocations_url
        self.timeout = timeout
        self._transport = transport

    async def stream(
        self, request: InvocationRequest, auth_token: Optional[str] = None
    ) -> AsyncIterator[dict[str, Any]]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
        }
        if auth_token:
            headers["Authorization"] = f"Bearer {auth_token}"
        body = request.model_dump(by_alias=True, exclude_none=True)

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                async with client.stream(
                    "POST", self.invocations_url, json=body, headers=headers
                ) as response:
                    if response.status_code >= 400:
                        raise AgentInvocationError(
                            _status_message(response.status_code), response.status_code
                        )
                    try:
                        async for payload in iter_sse_data(response.aiter_lines()):
                            yield decode_wire_event(payload)
                    except (httpx.ReadError, httpx.ReadTimeout, httpx.RemoteProtocolError) as exc:
                        raise TransportInterrupted(f"Agent stream interrupted: {exc}") from exc
        except httpx.HTTPError as exc:
            logger.warning("Agent invocation failed: %s", exc)
            raise AgentInvocationError(str(exc) or exc.__class__.__name__) from exc


def _status_message(status_code: int) -> str:
    if status_code == 401:
        return "Authentication required. Please sign in."
    if status_code == 403:
        return "Access denied. Please check your permissions."
    return f"HTTP error: {status_code}"
