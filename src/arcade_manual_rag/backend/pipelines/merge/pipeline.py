# src/arcade_manual_rag/backend/pipelines/merge/pipeline.py

"""
[职责] Merge pipeline 编排：validate -> merge_chunks -> merge_figures -> merge_qa -> merge_metadata -> done。
[边界] validate 失败立即终止（尚未写入）；单条写入失败只计数不终止；不提交事务（由 merge_service 提交）；不删除 source 数据。
[上游关系] services/merge_service 调用；tenant_id 来自 bearer token 解析后的 profile（显式参数）。
[下游关系] 返回 MergeReport；完成日志包含各类别计数与耗时。
"""

from __future__ import annotations

import logging
from typing import Tuple

from arcade_manual_rag.backend.db.models.manual import ManualModel
from arcade_manual_rag.backend.pipelines.base.context import PipelineContext
from arcade_manual_rag.backend.schemas.ids import new_uuid
from arcade_manual_rag.backend.utils.constants import TIMING_TOTAL_MS_KEY
from arcade_manual_rag.backend.utils.errors import BadRequestError, NotFoundError
from arcade_manual_rag.backend.utils.logging_ import get_logger, log_event

from .chunks import merge_chunks
from .figures import merge_figures
from .metadata import merge_metadata
from .qa import merge_qa
from .types import MergeReport


logger = get_logger("merge.pipeline")


async def _validate(
    ctx: PipelineContext,
    *,
    source_manual_id: str,
    target_manual_id: str,
    tenant_id: str,
) -> Tuple[ManualModel, ManualModel]:
    """
    [职责] 校验 source/target：均存在、互不相同、均属于调用方租户。
    [边界] 跨租户手册按不存在处理（不泄露存在性）。
    """
    if not source_manual_id or not target_manual_id:
        raise BadRequestError(
            "source_manual_id and target_manual_id are required",
            detail={"source_manual_id": source_manual_id or None, "target_manual_id": target_manual_id or None},
        )
    if source_manual_id == target_manual_id:
        raise BadRequestError(
            "source and target manual must differ",
            detail={"manual_id": source_manual_id},
        )

    manuals = []
    for role, manual_id in (("source", source_manual_id), ("target", target_manual_id)):
        manual = await ctx.manual_repo.get(manual_id)
        if manual is None or manual.tenant_id != tenant_id:
            raise NotFoundError(f"{role} manual not found", detail={f"{role}_manual_id": manual_id})
        manuals.append(manual)
    return manuals[0], manuals[1]


async def run_merge_pipeline(
    *,
    ctx: PipelineContext,
    source_manual_id: str,
    target_manual_id: str,
    tenant_id: str,
) -> MergeReport:
    source_id = str(source_manual_id or "").strip()
    target_id = str(target_manual_id or "").strip()
    tid = str(tenant_id or "").strip()
    if not tid:
        raise BadRequestError("tenant_id is required")

    ctx.tenant_id = tid
    ctx.manual_id = target_id or None
    ctx.merge_id = ctx.merge_id or new_uuid()

    # --- Step 1: validate (fatal) ---
    with ctx.timing.stage("validate"):
        await _validate(ctx, source_manual_id=source_id, target_manual_id=target_id, tenant_id=tid)

    log_event(
        logger,
        logging.INFO,
        "merge started",
        context=ctx,
        fields={"source_manual_id": source_id, "target_manual_id": target_id},
    )

    scope = {"source_manual_id": source_id, "target_manual_id": target_id, "tenant_id": tid}

    # --- Step 2: chunks ---
    with ctx.timing.stage("merge_chunks"):
        chunks = await merge_chunks(ctx, **scope)

    # --- Step 3: figures ---
    with ctx.timing.stage("merge_figures"):
        figures = await merge_figures(ctx, **scope)

    # --- Step 4: QA pairs ---
    with ctx.timing.stage("merge_qa"):
        qa, qa_store = await merge_qa(ctx, **scope)

    # --- Step 5: manual metadata ---
    with ctx.timing.stage("merge_metadata"):
        meta = await merge_metadata(ctx, source_manual_id=source_id, target_manual_id=target_id)

    failed = chunks.failed + figures.failed + qa.failed + meta.failed
    report = MergeReport(
        source_manual_id=source_id,
        target_manual_id=target_id,
        merged_chunks=chunks.inserted,
        skipped_chunk_duplicates=chunks.skipped,
        enriched_chunks=chunks.updated,
        merged_figures=figures.inserted,
        updated_figures=figures.updated,
        skipped_figure_duplicates=figures.skipped,
        added_qa=qa.inserted,
        skipped_qa_duplicates=qa.skipped,
        metadata_updated=meta.updated > 0,
        failed_items=failed,
        qa_store=qa_store,
        record_copies=tuple(chunks.created + figures.created),
        message=(
            "Manual data merged successfully"
            if not failed
            else f"Manual data merged with {failed} failed item(s)"
        ),
    )

    fields = {k: v for k, v in report.to_dict().items() if k != "message"}  # docstring: message 为 LogRecord 保留字段
    fields["timing_ms"] = ctx.timing_ms(total_key=TIMING_TOTAL_MS_KEY)
    log_event(logger, logging.INFO, "merge completed", context=ctx, fields=fields)
    return report
