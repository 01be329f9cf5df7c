# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

from dotenv import load_dotenv

from .loader import get_int_env, get_str_env
from .settings import ServerSettings

load_dotenv()

__all__ = ["ServerSettings", "get_int_env", "get_str_env"]
