# src/arcade_manual_rag/backend/pipelines/merge/qa.py

"""
[职责] merge_qa：把 source 的 QA 对合入 target；问题文本归一化后按集合成员判重。
[边界] QA store 由 select_store 按顺序选择（主 schema 优先，备用 schema 兜底）；没有可用 store 时本阶段为空操作。
[上游关系] merge/pipeline 在 merge_figures 之后调用。
[下游关系] StageCounts.inserted -> added_qa，skipped -> skipped_qa_duplicates。
"""

from __future__ import annotations

import logging
from typing import Set, Tuple

from arcade_manual_rag.backend.db.repo import QAPair, select_store
from arcade_manual_rag.backend.pipelines.base.context import PipelineContext
from arcade_manual_rag.backend.utils.logging_ import get_logger, log_event
from arcade_manual_rag.backend.utils.matching import normalize_question

from .types import StageCounts
from .writes import guarded_write


logger = get_logger("merge.qa")


async def merge_qa(
    ctx: PipelineContext,
    *,
    source_manual_id: str,
    target_manual_id: str,
    tenant_id: str,
) -> Tuple[StageCounts, str]:
    """返回 (计数, 所用 store 名称)；无可用 store 时名称为空串。"""
    counts = StageCounts()
    store = await select_store(ctx.qa_stores, manual_id=source_manual_id)
    if store is None:
        log_event(logger, logging.WARNING, "no QA store available, QA merge skipped", context=ctx)
        return counts, ""

    seen: Set[str] = {normalize_question(p.question) for p in await store.list_pairs(target_manual_id)}

    for pair in await store.list_pairs(source_manual_id):
        key = normalize_question(pair.question)
        if not key or key in seen:
            counts.skipped += 1
            continue

        async def _insert(pair: QAPair = pair) -> None:
            await store.add_pair(manual_id=target_manual_id, tenant_id=tenant_id, pair=pair)

        if await guarded_write(ctx, counts, stage="merge_qa", record_id=key[:64], write=_insert):
            counts.inserted += 1
            seen.add(key)

    return counts, store.name
