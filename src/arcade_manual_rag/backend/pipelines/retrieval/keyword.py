# src/arcade_manual_rag/backend/pipelines/retrieval/keyword.py

"""
[职责] lexical 策略：基于 SQLite FTS5/BM25 检索文本块与图片描述，并映射为统一 Candidate。
[边界] 仅执行关键词检索与分数归一化；不做向量召回/rerank；不负责编排。
[上游关系] cascade.CandidateRetriever 调用 retrieve；依赖 db/fts 的 search_chunks_fts / search_figures_fts。
[下游关系] 非空即作为最终候选集（完全覆盖 dense 的不足结果，不合并）。
"""

from __future__ import annotations

import re
from typing import Awaitable, Callable, List, Literal, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from arcade_manual_rag.backend.db.fts import StoreHit, search_chunks_fts, search_figures_fts
from arcade_manual_rag.backend.utils.constants import STRATEGY_TEXT

from .types import Candidate, RetrievalConstraints, coerce_page


def _normalize_query(query: str) -> str:
    return " ".join(str(query or "").strip().split())


def _tokenize_query(query: str) -> List[str]:
    """提取 Unicode 词元（不做 stemming / 停用词）。"""
    tokens = re.findall(r"\w+", query, flags=re.UNICODE)
    return [t for t in tokens if t.strip()]


def build_fts_query(tokens: Sequence[str], *, mode: Literal["and", "or"]) -> str:
    """
    [职责] token 列表 -> FTS5 表达式；每个 token 加双引号，避免 AND/OR/NOT 等保留字与标点触发语法错误。
    [边界] 不注入前缀/NEAR 等高级语法。
    """
    quoted = ['"{}"'.format(t.replace('"', '""')) for t in tokens if t]
    if not quoted:
        return ""
    sep = " OR " if mode == "or" else " "
    return sep.join(quoted)


def bm25_to_score(bm25: Optional[float]) -> float:
    """
    [职责] SQLite bm25()（越小越相关，通常为负）-> (0, 1) 的“越大越好”分数。
    [边界] 单调转换；不跨候选归一化。
    """
    if bm25 is None:
        return 0.0
    strength = max(-float(bm25), 0.0)
    return strength / (1.0 + strength)


def _hit_to_candidate(hit: StoreHit, *, fts_query: str, mode: str) -> Candidate:
    norm = bm25_to_score(hit.raw_score)
    return Candidate(
        record_id=hit.record_id,
        content=hit.content,
        content_type="figure" if hit.content_type == "figure" else "text",
        manual_id=hit.manual_id,
        tenant_id=hit.tenant_id,
        page_start=coerce_page(hit.page_start),
        page_end=coerce_page(hit.page_end),
        figure_type=hit.figure_type or None,
        score=norm,
        source="keyword",
        score_details={"bm25": hit.raw_score, "fts_query": fts_query, "keyword_mode": mode},
        meta=dict(hit.meta or {}),
    )


class LexicalStrategy:
    """级联第 2 级：FTS5 关键词检索（AND 优先；chunk 与 figure 各自无命中时分别回退 OR）。"""

    name = STRATEGY_TEXT
    last_resort = False

    def __init__(self, *, session: AsyncSession, min_hits: int = 1, allow_or_fallback: bool = True) -> None:
        self._session = session
        self.min_hits = int(min_hits)
        self._allow_or_fallback = allow_or_fallback

    async def _search_kind(
        self,
        search: Callable[..., Awaitable[List[StoreHit]]],
        tokens: List[str],
        constraints: RetrievalConstraints,
    ) -> List[Candidate]:
        mode: Literal["and", "or"] = "and"
        fts_query = build_fts_query(tokens, mode=mode)
        kwargs = {
            "top_k": int(constraints.top_k),
            "manual_id": constraints.manual_id,
            "tenant_id": constraints.tenant_id,
        }
        hits = await search(self._session, fts_query=fts_query, **kwargs)

        if self._allow_or_fallback and not hits and len(tokens) > 1:
            mode = "or"
            fts_query = build_fts_query(tokens, mode=mode)
            hits = await search(self._session, fts_query=fts_query, **kwargs)

        return [_hit_to_candidate(h, fts_query=fts_query, mode=mode) for h in hits]

    async def retrieve(self, query: str, constraints: RetrievalConstraints) -> List[Candidate]:
        tokens = _tokenize_query(_normalize_query(query))
        if not tokens or int(constraints.top_k) <= 0:
            return []

        candidates = await self._search_kind(search_chunks_fts, tokens, constraints)
        candidates += await self._search_kind(search_figures_fts, tokens, constraints)  # docstring: figure 回退与 chunk 结果无关
        candidates.sort(key=lambda c: c.score, reverse=True)
        return candidates[: int(constraints.top_k)]
