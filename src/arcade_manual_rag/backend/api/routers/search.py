# src/arcade_manual_rag/backend/api/routers/search.py

"""
[职责] Search Router：统一检索入口（POST /search-unified），负责 HTTP 入参校验与服务调用。
[边界] 不直接调用 pipeline；仅进行输入/输出映射。
[上游关系] 前端/外部调用发起检索请求。
[下游关系] search_service 执行检索编排并返回结果。
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from arcade_manual_rag.backend.api.deps import TraceIds, get_milvus_repo, get_session, get_trace_ids
from arcade_manual_rag.backend.api.errors import to_json_response
from arcade_manual_rag.backend.api.schemas_http.search import SearchRequest, SearchResponse
from arcade_manual_rag.backend.kb.repo import MilvusRepo
from arcade_manual_rag.backend.services.search_service import search


router = APIRouter(tags=["search"])


@router.post("/search-unified", response_model=SearchResponse, response_model_exclude_none=True)
async def search_unified(
    request: SearchRequest,
    debug: bool = Query(False),
    session: AsyncSession = Depends(get_session),
    milvus_repo: Optional[MilvusRepo] = Depends(get_milvus_repo),
    ids: TraceIds = Depends(get_trace_ids),
) -> SearchResponse:
    """
    [职责] 检索并返回 textResults / figureResults / allResults。
    [边界] 缺失 query -> 400；上游 embedding/rerank 故障已在 pipeline 内降级，不会在此报错。
    """
    try:
        result = await search(
            session=session,
            query=str(request.query or ""),
            manual_id=request.manual_id,
            tenant_id=request.tenant_id,
            top_k=request.top_k,
            milvus_repo=milvus_repo,
            trace_id=ids.trace_id,
            request_id=ids.request_id,
            debug=debug,
        )
    except Exception as exc:
        return to_json_response(exc, trace_id=ids.trace_id, request_id=ids.request_id)  # type: ignore[return-value]

    return SearchResponse.model_validate(result)
