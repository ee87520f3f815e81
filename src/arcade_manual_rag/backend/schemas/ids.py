# src/arcade_manual_rag/backend/schemas/ids.py

"""
[职责] ID 契约层：UUID 字符串类型与生成策略（UUID v4 string）。
[边界] 不依赖 ORM；manual_id/tenant_id 由外部文档库分配，允许非 UUID 字符串。
[上游关系] 无（纯工具层）。
[下游关系] db models / pipelines / api middleware 生成与传递 ID。
"""

from __future__ import annotations

from typing import NewType
from uuid import uuid4


UUIDStr = NewType("UUIDStr", str)  # docstring: 统一 UUID 字符串类型（运行时仍为 str）


def new_uuid() -> UUIDStr:
    """Generate UUID v4 as string."""  # docstring: 系统内唯一 ID 的默认生成策略
    return UUIDStr(str(uuid4()))

