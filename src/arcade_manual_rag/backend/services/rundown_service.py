# src/arcade_manual_rag/backend/services/rundown_service.py

"""
[职责] rundown_service：摘要入口（/search-rundown-v1）：复用统一检索，把文本候选按顶层章节聚类为 sections。
[边界] 不调用 LLM；summary 为固定模板句；不提交事务。
[上游关系] api/routers/rundown.py 调用。
[下游关系] search_service.run_search 提供候选；pipelines/rundown/summarize 负责聚类与 gist 清洗。
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from arcade_manual_rag.backend.pipelines.base.context import PipelineContext
from arcade_manual_rag.backend.pipelines.retrieval.types import Candidate, sort_by_effective_score
from arcade_manual_rag.backend.pipelines.rundown.summarize import (
    RundownSnippet,
    cluster_sections,
    summary_sentence,
)
from arcade_manual_rag.backend.utils.constants import RUNDOWN_DEFAULT_LIMIT
from arcade_manual_rag.backend.utils.errors import BadRequestError
from arcade_manual_rag.backend.utils.logging_ import get_logger, hash_text, log_event

from .search_service import run_search


logger = get_logger("services.rundown")

MISSING_QUERY_MESSAGE = "Missing query"


def _as_path(value: Any) -> List[str]:
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value if v]
    return []


async def _to_snippets(ctx: PipelineContext, candidates: List[Candidate]) -> List[RundownSnippet]:
    """
    [职责] 文本候选 -> RundownSnippet；section_path/menu_path 优先取候选 meta，缺失时批量回查 chunks_text。
    [边界] figure 候选不参与聚类。
    """
    texts = [c for c in candidates if not c.is_figure]
    missing = [c.record_id for c in texts if not c.meta.get("section_path") and not c.meta.get("menu_path")]
    rows = await ctx.chunk_repo.get_many(missing)  # docstring: 单次批量回查

    snippets: List[RundownSnippet] = []
    for c in texts:
        row = rows.get(c.record_id)
        section = _as_path(c.meta.get("section_path")) or (_as_path(row.section_path) if row is not None else [])
        menu = _as_path(c.meta.get("menu_path")) or (_as_path(row.menu_path) if row is not None else [])
        snippets.append(
            RundownSnippet(
                manual_id=c.manual_id,
                content=c.content,
                page_start=c.page_start,
                section_path=section,
                menu_path=menu,
            )
        )
    return snippets


async def rundown(
    *,
    session: AsyncSession,
    query: Optional[str],
    manual_id: Optional[str] = None,
    system: Optional[str] = None,
    vendor: Optional[str] = None,
    limit: Optional[int] = None,
    **search_kwargs: Any,
) -> Dict[str, Any]:
    """
    [职责] 检索 + 章节聚类，返回 {ok, summary, sections}。
    [边界] query 缺失 -> BadRequestError("Missing query")；limit 作为检索 top_k（默认 80）。
    """
    q = str(query or "").strip()
    if not q:
        raise BadRequestError(MISSING_QUERY_MESSAGE)

    ctx, outcome = await run_search(
        session=session,
        query=q,
        manual_id=manual_id,
        top_k=int(limit) if limit else RUNDOWN_DEFAULT_LIMIT,
        **search_kwargs,
    )

    snippets = await _to_snippets(ctx, sort_by_effective_score(list(outcome.retrieved)))  # docstring: 不受 rerank 窗口截断，limit 决定聚类规模
    sections = cluster_sections(snippets)

    log_event(
        logger,
        logging.INFO,
        "rundown completed",
        context=ctx,
        fields={
            "query_sha256": hash_text(q),
            "vendor": vendor,
            "strategy": outcome.results.strategy,
            "hits": len(snippets),
            "sections": len(sections),
        },
    )

    return {
        "ok": True,
        "summary": summary_sentence(system),
        "sections": [
            {"title": s.title, "gist": s.gist, "citations": [dict(c) for c in s.citations]} for s in sections
        ],
    }
