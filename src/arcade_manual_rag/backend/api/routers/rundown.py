# src/arcade_manual_rag/backend/api/routers/rundown.py

"""
[职责] Rundown Router：摘要入口（POST /search-rundown-v1）。
[边界] 错误体沿用 {ok: false, error} 形态（与既有前端合同一致），不使用通用 ErrorResponse。
[上游关系] 前端"系统概览"面板调用。
[下游关系] rundown_service 复用统一检索并聚类章节。
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from arcade_manual_rag.backend.api.deps import TraceIds, get_milvus_repo, get_session, get_trace_ids
from arcade_manual_rag.backend.api.schemas_http.rundown import RundownRequest, RundownResponse
from arcade_manual_rag.backend.kb.repo import MilvusRepo
from arcade_manual_rag.backend.services.rundown_service import MISSING_QUERY_MESSAGE, rundown
from arcade_manual_rag.backend.utils.errors import DomainError, to_http_error
from arcade_manual_rag.backend.utils.logging_ import get_logger, log_event


router = APIRouter(tags=["rundown"])
logger = get_logger("api.rundown")


def _failure(status_code: int, message: str, ids: TraceIds) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"ok": False, "error": message},
        headers={"x-trace-id": ids.trace_id, "x-request-id": ids.request_id},
    )


@router.post("/search-rundown-v1", response_model=RundownResponse)
async def search_rundown(
    request: RundownRequest,
    session: AsyncSession = Depends(get_session),
    milvus_repo: Optional[MilvusRepo] = Depends(get_milvus_repo),
    ids: TraceIds = Depends(get_trace_ids),
) -> RundownResponse:
    query = request.resolved_query()
    if not query:
        return _failure(400, MISSING_QUERY_MESSAGE, ids)  # type: ignore[return-value]

    try:
        result = await rundown(
            session=session,
            query=query,
            manual_id=request.manual_id,
            system=request.system,
            vendor=request.vendor,
            limit=request.limit,
            milvus_repo=milvus_repo,
            trace_id=ids.trace_id,
            request_id=ids.request_id,
        )
    except Exception as exc:
        status_code, payload = to_http_error(exc, trace_id=ids.trace_id)
        if not isinstance(exc, DomainError):
            log_event(
                logger,
                logging.ERROR,
                "rundown failed",
                context={"trace_id": ids.trace_id, "request_id": ids.request_id},
                fields={"error_type": type(exc).__name__},
                exc_info=exc,
            )
        return _failure(status_code, str(payload["error"]), ids)  # type: ignore[return-value]

    return RundownResponse.model_validate(result)
