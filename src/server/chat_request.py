# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class InvocationRequest(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, protected_namespaces=()
    )

    prompt: str = Field(..., description="The user prompt for this turn")
    session_id: Optional[str] = Field(
        None, description="Existing session to continue; a new one is created when absent"
    )
    user_id: Optional[str] = Field(None, description="User id for memory and personalization")
    model_id: Optional[str] = Field(
        None, description="Foundation model id from the model catalog; server default when absent"
    )

    @field_validator("prompt")
    @classmethod
    def validate_prompt(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("prompt is required")
        return value

    @field_validator("session_id", "user_id", "model_id")
    @classmethod
    def blank_to_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        value = value.strip()
        return value or None
