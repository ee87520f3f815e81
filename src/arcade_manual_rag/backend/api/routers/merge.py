# src/arcade_manual_rag/backend/api/routers/merge.py

"""
[职责] Merge Router：手册合并入口（POST /merge-manual-data），要求 bearer token 解析出租户。
[边界] 认证失败由 deps.get_tenant_id 抛 UnauthorizedError（全局处理器渲染 401）；事务由 merge_service 管理。
[上游关系] 管理端"合并手册"操作调用。
[下游关系] merge_service 执行合并并返回报告。
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from arcade_manual_rag.backend.api.deps import TraceIds, get_milvus_repo, get_session, get_tenant_id, get_trace_ids
from arcade_manual_rag.backend.api.errors import to_json_response
from arcade_manual_rag.backend.api.schemas_http.merge import MergeRequest, MergeResponse
from arcade_manual_rag.backend.kb.repo import MilvusRepo
from arcade_manual_rag.backend.services.merge_service import merge_manuals


router = APIRouter(tags=["merge"])


@router.post("/merge-manual-data", response_model=MergeResponse)
async def merge_manual_data(
    request: MergeRequest,
    tenant_id: str = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_session),
    ids: TraceIds = Depends(get_trace_ids),
    milvus_repo: Optional[MilvusRepo] = Depends(get_milvus_repo),
) -> MergeResponse:
    try:
        result = await merge_manuals(
            session=session,
            source_manual_id=str(request.source_manual_id or ""),
            target_manual_id=str(request.target_manual_id or ""),
            tenant_id=tenant_id,
            milvus_repo=milvus_repo,
            trace_id=ids.trace_id,
            request_id=ids.request_id,
        )
    except Exception as exc:
        return to_json_response(exc, trace_id=ids.trace_id, request_id=ids.request_id)  # type: ignore[return-value]

    return MergeResponse.model_validate(result)
