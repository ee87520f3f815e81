# src/arcade_manual_rag/backend/pipelines/retrieval/assemble.py

"""
[职责] Result Assembler：把 MMR 选择结果按 content_type 分区为 textResults / figureResults，
       视觉意图下保证至少一个 figure 位，并以单次批量查询补全 manual_title。
[边界] 不再改变任何分数；本阶段之后候选不可再被修改。
[上游关系] retrieval pipeline 传入 MMR 选择集、预截断的候选池、视觉意图与标题批量查询函数。
[下游关系] services/search_service 直接序列化 AssembledResults。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Sequence

from arcade_manual_rag.backend.utils.constants import COMBINED_RESULTS_CAP, FIGURE_RESULTS_CAP, TEXT_RESULTS_CAP
from arcade_manual_rag.backend.utils.logging_ import get_logger, log_event

from .types import Candidate, sort_by_effective_score


logger = get_logger("retrieval.assemble")

TitleLookup = Callable[[Iterable[str]], Awaitable[Dict[str, str]]]

NO_RESULTS_MESSAGE = "No results found"


@dataclass(frozen=True)
class AssembledResults:
    text_results: List[Candidate]
    figure_results: List[Candidate]
    all_results: List[Candidate]
    total_candidates: int
    strategy: str
    reranked: bool
    visual_intent: bool = False
    forced_figure: bool = False
    message: Optional[str] = None

    @property
    def count(self) -> int:
        return len(self.all_results)


async def assemble_results(
    *,
    selected: Sequence[Candidate],
    pool: Sequence[Candidate],
    visual_intent: bool,
    title_lookup: TitleLookup,
    total_candidates: int,
    strategy: str,
    reranked: bool,
    text_cap: int = TEXT_RESULTS_CAP,
    figure_cap: int = FIGURE_RESULTS_CAP,
    combined_cap: int = COMBINED_RESULTS_CAP,
    context: Optional[object] = None,
) -> AssembledResults:
    """
    [职责] 分区 + 强制 figure + 标题补全 + 组合 top-N。
    [边界] 强制 figure 仅在 visual_intent 且分区后 figure 为空时触发，取 pool 中最高分 figure，text 上限减 1。
    """
    texts = [c for c in selected if not c.is_figure]
    figures = [c for c in selected if c.is_figure][: max(int(figure_cap), 0)]
    effective_text_cap = max(int(text_cap), 0)
    forced = False

    if visual_intent and not figures:
        pool_figures = sort_by_effective_score([c for c in pool if c.is_figure])
        if pool_figures:
            figures = [pool_figures[0]]
            effective_text_cap = max(effective_text_cap - 1, 0)
            forced = True
            log_event(
                logger,
                logging.INFO,
                "forced figure inclusion",
                context=context,
                fields={"figure_id": pool_figures[0].record_id, "page_start": pool_figures[0].page_start},
            )

    texts = texts[:effective_text_cap]

    titles = await title_lookup({c.manual_id for c in (*texts, *figures)})  # docstring: 单次批量查询
    texts = [replace(c, manual_title=titles.get(c.manual_id) or c.manual_id) for c in texts]
    figures = [replace(c, manual_title=titles.get(c.manual_id) or c.manual_id) for c in figures]

    combined = sort_by_effective_score([*texts, *figures])[: max(int(combined_cap), 0)]

    return AssembledResults(
        text_results=texts,
        figure_results=figures,
        all_results=combined,
        total_candidates=int(total_candidates),
        strategy=strategy,
        reranked=bool(reranked),
        visual_intent=bool(visual_intent),
        forced_figure=forced,
        message=None if combined else NO_RESULTS_MESSAGE,
    )
