# src/arcade_manual_rag/backend/pipelines/retrieval/types.py
"""
[职责] Retrieval types：retrieval 各阶段共享的最小公共类型（无 DB/外部依赖）。
[边界] 仅定义数据结构与类型；不包含任何检索逻辑。
[上游关系] vector/keyword/substring/cascade/rerank/scoring/diversity/isolation/assemble import 使用。
[下游关系] 每个阶段返回新的 Candidate 列表（dataclasses.replace），不原地修改上一阶段的对象。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional


ContentType = Literal["text", "figure"]  # docstring: 候选内容类型
CandidateSource = Literal["vector", "keyword", "substring"]  # docstring: 候选来源策略

BASE_SCORE_KEY = "base"  # docstring: score_details 中保存的检索策略原始分（score 被调整覆盖前写入）


@dataclass(frozen=True)
class Candidate:
    """
    [职责] Candidate：单次查询内的候选证据（文本块或图片描述），不可变值对象。
    [边界] 仅在一次请求内存活；manual_id/tenant_id 均必须存在且唯一。
    [上游关系] 检索策略产出。
    [下游关系] rerank 写入 rerank_score 后，所有排序以 rerank_score 为准（effective_score）。
    """

    record_id: str
    content: str
    content_type: ContentType
    manual_id: str
    tenant_id: str
    page_start: Optional[int]
    page_end: Optional[int]
    figure_type: Optional[str]
    score: float
    source: CandidateSource
    rerank_score: Optional[float] = None
    manual_title: Optional[str] = None
    score_details: Dict[str, Any] = field(default_factory=dict)
    meta: Dict[str, Any] = field(default_factory=dict)

    @property
    def effective_score(self) -> float:
        """rerank 之后以 rerank_score 为排序依据；未 rerank 时回退 score。"""
        return float(self.rerank_score) if self.rerank_score is not None else float(self.score)

    @property
    def base_score(self) -> float:
        """检索策略给出的原始分（不含 rerank 与内容类型/视觉调整）。"""
        return float(self.score_details.get(BASE_SCORE_KEY, self.score))

    @property
    def is_figure(self) -> bool:
        return self.content_type == "figure"


@dataclass(frozen=True)
class RetrievalConstraints:
    """检索作用域与上限（显式传递，不依赖会话级租户状态）。"""

    manual_id: Optional[str] = None
    tenant_id: Optional[str] = None
    top_k: int = 75


def coerce_page(value: Any) -> Optional[int]:
    """页码归一化：0/负数/非数字视为未知（None）。"""
    if value is None or isinstance(value, bool):
        return None
    try:
        page = int(value)
    except (TypeError, ValueError):
        return None
    return page if page > 0 else None


def sort_by_effective_score(candidates: List[Candidate]) -> List[Candidate]:
    """按 effective_score 降序的稳定排序（同分保持原顺序）。"""
    return sorted(candidates, key=lambda c: c.effective_score, reverse=True)
