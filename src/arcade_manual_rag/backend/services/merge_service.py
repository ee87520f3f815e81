# src/arcade_manual_rag/backend/services/merge_service.py

"""
[职责] merge_service：合并入口（/merge-manual-data）：执行 merge pipeline 并负责事务边界，提交后复制合并记录的向量。
[边界] 致命错误（校验/未找到）回滚并上抛；单条写入失败已在 pipeline 内以 SAVEPOINT 回滚，整体仍提交。
       向量复制在 commit 之后执行，失败不回滚 SQL（merged_vectors 记为 0）。
[上游关系] api/routers/merge.py 调用；tenant_id 来自 deps.get_tenant_id；milvus_repo 来自 deps.get_milvus_repo（可缺失）。
[下游关系] 返回 MergeReport.to_dict() + merged_vectors。
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from arcade_manual_rag.backend.kb.repo import MilvusRepo
from arcade_manual_rag.backend.pipelines.base.context import PipelineContext
from arcade_manual_rag.backend.pipelines.merge.pipeline import run_merge_pipeline
from arcade_manual_rag.backend.pipelines.merge.vectors import copy_merged_vectors
from arcade_manual_rag.backend.utils.constants import REQUEST_ID_KEY, TRACE_ID_KEY
from arcade_manual_rag.config import settings


async def merge_manuals(
    *,
    session: AsyncSession,
    source_manual_id: str,
    target_manual_id: str,
    tenant_id: str,
    milvus_repo: Optional[MilvusRepo] = None,
    collection: Optional[str] = None,
    trace_id: Optional[str] = None,
    request_id: Optional[str] = None,
) -> Dict[str, Any]:
    ctx = PipelineContext.from_session(session, trace_id=trace_id, request_id=request_id, tenant_id=tenant_id)
    try:
        report = await run_merge_pipeline(
            ctx=ctx,
            source_manual_id=source_manual_id,
            target_manual_id=target_manual_id,
            tenant_id=tenant_id,
        )
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    merged_vectors = await copy_merged_vectors(
        ctx,
        milvus_repo=milvus_repo,
        collection=collection or settings.ARCADE_RAG_MILVUS_COLLECTION,
        copies=report.record_copies,
        target_manual_id=report.target_manual_id,
        tenant_id=tenant_id,
    )

    payload = report.to_dict()
    payload["merged_vectors"] = merged_vectors
    payload[TRACE_ID_KEY] = str(ctx.trace_id)
    payload[REQUEST_ID_KEY] = str(ctx.request_id)
    return payload
