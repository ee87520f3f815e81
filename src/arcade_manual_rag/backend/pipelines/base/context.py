# src/arcade_manual_rag/backend/pipelines/base/context.py

"""
[职责] PipelineContext：单次 retrieval / rundown / merge 执行的依赖聚合（session/repos/QA stores/timing）与 trace 字段。
[边界] 不创建/关闭数据库连接；不管理事务提交；不持有跨请求状态。tenant_id/manual_id 作为显式参数透传，不设置会话级租户变量。
[上游关系] services/测试 fixture 创建 AsyncSession 后调用 PipelineContext.from_session(...)。
[下游关系] pipelines 从 ctx 获取 repo 与 timing；log_event(context=ctx) 自动附加 trace/tenant/manual/merge 字段。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from arcade_manual_rag.backend.db.repo import (
    ChunkRepo,
    FigureRepo,
    ManualRepo,
    QuestionAnswerStore,
    default_qa_stores,
)
from arcade_manual_rag.backend.schemas.ids import UUIDStr, new_uuid

from .timing import TimingCollector


@dataclass
class PipelineContext:
    """
    [职责] 为单次 pipeline 执行提供统一依赖与元数据。
    [边界] 不做 commit/rollback；不做缓存；只做聚合与透传。
    """

    session: AsyncSession

    # repos (assembled per session)
    manual_repo: ManualRepo
    chunk_repo: ChunkRepo
    figure_repo: FigureRepo
    qa_stores: List[QuestionAnswerStore]  # docstring: QA stores 按优先级排列（主 schema 在前）

    # observability / scope
    trace_id: UUIDStr = field(default_factory=new_uuid)
    request_id: UUIDStr = field(default_factory=new_uuid)
    tenant_id: Optional[str] = None  # docstring: 请求方租户（显式作用域）
    manual_id: Optional[str] = None  # docstring: 请求的手册作用域
    merge_id: Optional[str] = None  # docstring: merge 运行ID（仅 merge 使用）

    timing: TimingCollector = field(default_factory=TimingCollector)
    provider_snapshot: Dict[str, Any] = field(default_factory=dict)  # docstring: embed/rerank provider 快照
    meta: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_session(
        cls,
        session: AsyncSession,
        *,
        trace_id: Optional[str] = None,
        request_id: Optional[str] = None,
        tenant_id: Optional[str] = None,
        manual_id: Optional[str] = None,
        qa_stores: Optional[List[QuestionAnswerStore]] = None,
        meta: Optional[Dict[str, Any]] = None,
    ) -> "PipelineContext":
        """从 AsyncSession 装配 PipelineContext（统一 repo 装配点，不触发 DB I/O）。"""
        return cls(
            session=session,
            manual_repo=ManualRepo(session),
            chunk_repo=ChunkRepo(session),
            figure_repo=FigureRepo(session),
            qa_stores=list(qa_stores) if qa_stores is not None else default_qa_stores(session),
            trace_id=UUIDStr(trace_id) if trace_id else new_uuid(),
            request_id=UUIDStr(request_id) if request_id else new_uuid(),
            tenant_id=tenant_id,
            manual_id=manual_id,
            timing=TimingCollector(),
            meta=meta or {},
        )

    def timing_ms(self, *, include_total: bool = True, total_key: str = "total") -> Dict[str, float]:
        return self.timing.to_dict(include_total=include_total, total_key=total_key)

    def with_provider(self, kind: str, snapshot: Dict[str, Any]) -> None:
        """写入某类 provider 快照（embed / rerank）。"""
        k = str(kind).strip()
        if k:
            self.provider_snapshot[k] = snapshot
