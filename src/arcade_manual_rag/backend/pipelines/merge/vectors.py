# src/arcade_manual_rag/backend/pipelines/merge/vectors.py

"""
[职责] 合并后的向量复制：为新插入 target 的 chunk/figure 读取源记录向量，以新 record_id / manual_id / tenant_id 写回 Milvus。
[边界] 在 SQL 事务提交之后执行（避免为回滚的行写入向量）；不重新 embedding；Milvus 不可用或失败只记 warning，不影响已提交的合并。
[上游关系] services/merge_service 在 commit 后调用，输入 MergeReport.record_copies。
[下游关系] dense 策略（pipelines/retrieval/vector.py）按 target manual 作用域即可命中合并内容。
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pymilvus.exceptions import MilvusException

from arcade_manual_rag.backend.kb.repo import MilvusRepo
from arcade_manual_rag.backend.kb.schema import (
    MANUAL_ID_FIELD,
    RECORD_ID_FIELD,
    TENANT_ID_FIELD,
    VECTOR_ID_FIELD,
    build_expr_for_records,
)
from arcade_manual_rag.backend.pipelines.base.context import PipelineContext
from arcade_manual_rag.backend.schemas.ids import new_uuid
from arcade_manual_rag.backend.utils.logging_ import get_logger, log_event


logger = get_logger("merge.vectors")


def rebind_entities(
    rows: Sequence[Dict[str, Any]],
    copies: Sequence[Tuple[str, str]],
    *,
    target_manual_id: str,
    tenant_id: str,
) -> List[Dict[str, Any]]:
    """
    [职责] 源向量实体 -> 目标实体（新 vector_id，record_id 指向新行，归属改为 target/tenant）。
    [边界] 源记录没有向量时不产生实体；一条源记录被复制多次时每次都生成独立实体。
    """
    by_source: Dict[str, List[Dict[str, Any]]] = {}
    for row in rows:
        by_source.setdefault(str(row.get(RECORD_ID_FIELD) or ""), []).append(row)

    out: List[Dict[str, Any]] = []
    for source_id, new_id in copies:
        for row in by_source.get(str(source_id), []):
            entity = dict(row)
            entity[VECTOR_ID_FIELD] = str(new_uuid())
            entity[RECORD_ID_FIELD] = str(new_id)
            entity[MANUAL_ID_FIELD] = target_manual_id
            entity[TENANT_ID_FIELD] = tenant_id
            out.append(entity)
    return out


async def copy_merged_vectors(
    ctx: PipelineContext,
    *,
    milvus_repo: Optional[MilvusRepo],
    collection: str,
    copies: Sequence[Tuple[str, str]],
    target_manual_id: str,
    tenant_id: str,
) -> int:
    """返回写入的向量实体数；未配置 Milvus 或写入失败时返回 0。"""
    expr = build_expr_for_records([source_id for source_id, _ in copies])
    if expr is None:
        return 0
    if milvus_repo is None:
        log_event(
            logger,
            logging.WARNING,
            "milvus not configured, merged records have no vectors",
            context=ctx,
            fields={"records": len(copies)},
        )
        return 0

    try:
        rows = await milvus_repo.query_by_expr(collection=collection, expr=expr)
        entities = rebind_entities(rows, copies, target_manual_id=target_manual_id, tenant_id=tenant_id)
        if entities:
            await milvus_repo.upsert_embeddings(collection=collection, entities=entities)
    except MilvusException as exc:
        log_event(
            logger,
            logging.WARNING,
            "merged vector copy failed",
            context=ctx,
            fields={"records": len(copies), "error": f"{exc.__class__.__name__}: {exc}"},
        )
        return 0

    log_event(
        logger,
        logging.INFO,
        "merged vectors copied",
        context=ctx,
        fields={"records": len(copies), "vectors": len(entities)},
    )
    return len(entities)
