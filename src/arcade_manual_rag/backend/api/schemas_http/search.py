# src/arcade_manual_rag/backend/api/schemas_http/search.py

"""
[职责] /search-unified 的 HTTP 合同：SearchRequest / CandidateView / SearchResponse。
[边界] 字段命名保持既有前端合同（textResults/figureResults/allResults 驼峰）。
"""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from arcade_manual_rag.backend.utils.constants import DEFAULT_TOP_K

from ._common import DebugEnvelope, ManualId


class SearchRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")  # docstring: 兼容前端附带的多余字段

    query: Optional[str] = Field(default=None)  # docstring: 必填语义由 service 校验（缺失 -> 400）
    manual_id: Optional[ManualId] = Field(default=None)
    tenant_id: Optional[str] = Field(default=None)
    top_k: int = Field(default=DEFAULT_TOP_K, ge=1, le=500)


class CandidateView(BaseModel):
    """单条检索结果（文本块或图片描述）。"""

    model_config = ConfigDict(extra="forbid")

    id: str
    content: str
    content_type: Literal["text", "figure"]
    manual_id: ManualId
    manual_title: str
    tenant_id: str
    page_start: Optional[int] = None
    page_end: Optional[int] = None
    figure_type: Optional[str] = None
    score: float  # docstring: 最终排序分（rerank 后为 rerank 分）
    base_score: float  # docstring: 检索策略原始分
    rerank_score: Optional[float] = None
    source: Literal["vector", "keyword", "substring"]
    score_details: Dict[str, Any] = Field(default_factory=dict)
    meta: Dict[str, Any] = Field(default_factory=dict)


class SearchResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    textResults: List[CandidateView] = Field(default_factory=list)
    figureResults: List[CandidateView] = Field(default_factory=list)
    allResults: List[CandidateView] = Field(default_factory=list)  # docstring: 向后兼容的组合 top-N
    count: int = 0
    total_candidates: int = 0
    strategy: str
    reranked: bool = False
    message: Optional[str] = None
    trace_id: Optional[str] = None
    request_id: Optional[str] = None
    debug: Optional[DebugEnvelope] = None
