# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

"""HTTP surface of the research chat backend: chat streaming, model listing and session history."""
