# src/arcade_manual_rag/backend/api/schemas_http/_common.py

"""
[职责] HTTP Schema 公共组件：ErrorResponse 与通用 ID 类型，作为 API 契约基础。
[边界] 仅描述 HTTP 输入/输出结构；不负责 trace 注入、异常映射或业务逻辑。
[上游关系] api/errors 将 DomainError 映射到 ErrorResponse。
[下游关系] api/schemas_http/{search,rundown,merge} 复用本模块结构。
"""

from __future__ import annotations

from typing import Any, Dict, NewType, Optional

from pydantic import BaseModel, ConfigDict, Field


UUIDStr = NewType("UUIDStr", str)  # docstring: 通用 UUID 字符串类型（运行时仍为 str）

TraceId = UUIDStr  # docstring: trace_id（跨请求链路）
RequestId = UUIDStr  # docstring: request_id（单次请求）
ManualId = NewType("ManualId", str)  # docstring: manual_id（手册ID）

ErrorDetail = Dict[str, Any]  # docstring: detail 结构（必须 JSON-safe）


class ErrorResponse(BaseModel):
    """
    [职责] ErrorResponse：扁平错误体 {error, code, detail, trace_id}，保持 {error: string} 兼容形态。
    [边界] 不包含 HTTP status/retryable；这些由 api/errors.py 决定。
    """

    model_config = ConfigDict(extra="forbid")  # docstring: 锁死错误字段，避免 drift

    error: str = Field(..., min_length=1)  # docstring: 人类可读错误信息
    code: str = Field(..., min_length=1)  # docstring: 错误码（标准枚举或 area.reason）
    detail: ErrorDetail = Field(default_factory=dict)
    trace_id: Optional[TraceId] = Field(default=None)  # docstring: 全链路追踪ID（由 middleware 注入）


class DebugEnvelope(BaseModel):
    """debug=true 时的调试封装（timing/策略计数/阶段错误）。"""

    model_config = ConfigDict(extra="allow")  # docstring: 允许扩展 provider 快照等细节

    timing_ms: Dict[str, float] = Field(default_factory=dict)
    attempts: Dict[str, int] = Field(default_factory=dict)  # docstring: 级联各策略命中数
    errors: Dict[str, str] = Field(default_factory=dict)  # docstring: 阶段/策略错误摘要
