# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

"""Foundation-model catalog: normalization of provider descriptors and the listing client."""

from .client import ModelCatalog
from .normalizer import FoundationModelSummary, ModelCatalogError, normalize_model_summaries

__all__ = [
    "FoundationModelSummary",
    "ModelCatalog",
    "ModelCatalogError",
    "normalize_model_summaries",
]
