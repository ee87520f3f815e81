# src/arcade_manual_rag/backend/pipelines/retrieval/isolation.py

"""
[职责] Tenant/Manual Isolation Filter：硬性后置过滤，丢弃 manual_id 或 tenant_id 与请求作用域不一致的候选。
[边界] 这是数据隔离边界而非排序决策：无论分数高低一律丢弃；从不向调用方报错，只记录 warning（含丢弃数量）。
[上游关系] retrieval pipeline 在全部打分之后（MMR 选择结果、强制 figure 候选池）调用。
[下游关系] assemble 只看到作用域内候选。
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from arcade_manual_rag.backend.utils.logging_ import get_logger, log_event

from .types import Candidate


logger = get_logger("retrieval.isolation")


def enforce_isolation(
    candidates: Sequence[Candidate],
    *,
    manual_id: Optional[str] = None,
    tenant_id: Optional[str] = None,
    stage: str = "final",
    context: Optional[object] = None,
) -> List[Candidate]:
    """作用域未指定（None/空）的维度不过滤。"""
    mid = str(manual_id or "").strip() or None
    tid = str(tenant_id or "").strip() or None
    if mid is None and tid is None:
        return list(candidates)

    kept: List[Candidate] = []
    dropped_manual = 0
    dropped_tenant = 0
    for cand in candidates:
        if mid is not None and cand.manual_id != mid:
            dropped_manual += 1
            continue
        if tid is not None and cand.tenant_id != tid:
            dropped_tenant += 1
            continue
        kept.append(cand)

    dropped = dropped_manual + dropped_tenant
    if dropped:
        log_event(
            logger,
            logging.WARNING,
            "isolation violation: dropped out-of-scope candidates",
            context=context,
            fields={
                "stage": stage,
                "dropped": dropped,
                "dropped_manual": dropped_manual,
                "dropped_tenant": dropped_tenant,
                "requested_manual_id": mid,
                "requested_tenant_id": tid,
            },
        )
    return kept
