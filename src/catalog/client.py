# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from .normalizer import FoundationModelSummary, ModelCatalogError, normalize_model_summaries

logger = logging.getLogger(__name__)


class ModelCatalog:
    """Fetches the foundation-model list and remembers which ids it returned."""

    def __init__(
        self,
        models_url: str,
        *,
        timeout: float = 30,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.models_url = models_url
        self.timeout = timeout
        self._transport = transport
        self._known_ids: frozenset[str] = frozenset()

    @property
    def known_model_ids(self) -> frozenset[str]:
        return self._known_ids

    def is_known(self, model_id: str) -> bool:
        return model_id in self._known_ids

    async def list_models(self) -> list[FoundationModelSummary]:
        """Return normalized models; a failed or unusable response yields an empty list."""
        try:
            descriptors = await self._fetch_descriptors()
            models = normalize_model_summaries(descriptors)
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Failed to load foundation models from %s: %s", self.models_url, exc)
            return []

        self._known_ids = frozenset(model.model_id for model in models if model.model_id)
        logger.info("Loaded %d foundation models", len(models))
        return models

    async def _fetch_descriptors(self) -> list[Any]:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.get(self.models_url, headers={"Accept": "application/json"})
            response.raise_for_status()
            data = response.json()

        if isinstance(data, list):
            return data
        if isinstance(data, dict):
            for key in ("models", "modelSummaries"):
                if key in data:
                    return data[key] or []
            return []
        raise ModelCatalogError(f"Unexpected model list payload: {type(data).__name__}")
