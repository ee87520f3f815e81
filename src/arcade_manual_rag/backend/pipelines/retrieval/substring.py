# src/arcade_manual_rag/backend/pipelines/retrieval/substring.py

"""
[职责] substring 策略：级联最后一级，最宽松的子串匹配；统一赋予合成分数并强制 content_type=text。
[边界] 只检索文本块，不产出 figure；dense/lexical 任一已有结果时不会被调用（last_resort）。
[上游关系] cascade.CandidateRetriever；依赖 db/fts.search_substring。
[下游关系] 命中即作为最终候选集（strategy=simple_search）。
"""

from __future__ import annotations

from typing import List

from sqlalchemy.ext.asyncio import AsyncSession

from arcade_manual_rag.backend.db.fts import search_substring
from arcade_manual_rag.backend.utils.constants import STRATEGY_SIMPLE, SUBSTRING_FLAT_SCORE

from .types import Candidate, RetrievalConstraints, coerce_page


class SubstringStrategy:
    name = STRATEGY_SIMPLE
    last_resort = True  # docstring: 仅当前面所有策略都为空时执行

    def __init__(self, *, session: AsyncSession, flat_score: float = SUBSTRING_FLAT_SCORE, min_hits: int = 1) -> None:
        self._session = session
        self.flat_score = float(flat_score)
        self.min_hits = int(min_hits)

    async def retrieve(self, query: str, constraints: RetrievalConstraints) -> List[Candidate]:
        hits = await search_substring(
            self._session,
            query=query,
            top_k=int(constraints.top_k),
            manual_id=constraints.manual_id,
            tenant_id=constraints.tenant_id,
        )
        return [
            Candidate(
                record_id=h.record_id,
                content=h.content,
                content_type="text",
                manual_id=h.manual_id,
                tenant_id=h.tenant_id,
                page_start=coerce_page(h.page_start),
                page_end=coerce_page(h.page_end),
                figure_type=None,
                score=self.flat_score,
                source="substring",
                score_details={"flat_score": self.flat_score},
                meta=dict(h.meta or {}),
            )
            for h in hits
        ]
