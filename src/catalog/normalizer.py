# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping, Optional

from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)

LEGACY_STATUS = "LEGACY"


class ModelCatalogError(ValueError):
    pass


class _CatalogModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        protected_namespaces=(),
        frozen=True,
    )


class ModelLifecycle(_CatalogModel):
    model_config = ConfigDict(extra="allow")

    status: Optional[str] = None


class RawModelDescriptor(_CatalogModel):
    """A provider descriptor as returned by the listing call; every field may be absent."""

    model_config = ConfigDict(extra="ignore")

    model_id: Optional[str] = None
    model_name: Optional[str] = None
    provider_name: Optional[str] = None
    model_lifecycle: Optional[ModelLifecycle] = None
    output_modalities: Optional[list[str]] = None
    response_streaming_supported: Optional[bool] = None
    inference_types_supported: Optional[list[str]] = None


class FoundationModelSummary(_CatalogModel):
    model_id: str
    model_name: Optional[str] = None
    provider_name: Optional[str] = None
    model_lifecycle: Optional[ModelLifecycle] = None
    output_modalities: Optional[list[str]] = None
    response_streaming_supported: Optional[bool] = None
    inference_types_supported: Optional[list[str]] = None

    def to_payload(self) -> dict[str, Any]:
        """camelCase JSON payload with absent fields omitted."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def normalize_model_summaries(
    descriptors: Optional[Iterable[Any]],
) -> list[FoundationModelSummary]:
    """Drop LEGACY models and map the rest to summaries, preserving input order.

    A descriptor with wrongly typed fields keeps its valid fields; the bad ones
    are treated as absent. Entries that are not objects are skipped.
    """
    if not descriptors:
        return []

    results: list[FoundationModelSummary] = []
    for index, descriptor in enumerate(descriptors):
        raw = _coerce_descriptor(descriptor, index)
        if raw is None:
            continue
        status = raw.model_lifecycle.status if raw.model_lifecycle else None
        if status == LEGACY_STATUS:
            continue
        results.append(_to_summary(raw))
    return results


def _coerce_descriptor(descriptor: Any, index: int) -> Optional[RawModelDescriptor]:
    if isinstance(descriptor, RawModelDescriptor):
        return descriptor
    if not isinstance(descriptor, Mapping):
        logger.warning(
            "Skipping model descriptor at index %d: not an object (%s)",
            index,
            type(descriptor).__name__,
        )
        return None

    data = dict(descriptor)
    try:
        return RawModelDescriptor.model_validate(data)
    except ValidationError as exc:
        invalid = {str(error["loc"][0]) for error in exc.errors() if error["loc"]}
        logger.warning(
            "Model descriptor at index %d has invalid fields %s; treating them as absent",
            index,
            ", ".join(sorted(invalid)),
        )

    cleaned = {
        key: value
        for key, value in data.items()
        if key not in invalid and to_camel(str(key)) not in invalid
    }
    try:
        return RawModelDescriptor.model_validate(cleaned)
    except ValidationError as exc:
        logger.warning("Skipping model descriptor at index %d: %s", index, exc)
        return None


def _to_summary(raw: RawModelDescriptor) -> FoundationModelSummary:
    return FoundationModelSummary(
        model_id=raw.model_id or "",
        model_name=raw.model_name,
        provider_name=raw.provider_name,
        model_lifecycle=raw.model_lifecycle,
        output_modalities=raw.output_modalities,
        response_streaming_supported=raw.response_streaming_supported,
        inference_types_supported=raw.inference_types_supported,
    )
