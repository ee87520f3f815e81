# src/arcade_manual_rag/backend/api/routers/health.py

"""
[职责] Health Router：提供服务健康检查（DB/Milvus）与版本摘要。
[边界] 不执行业务逻辑；不触发 pipeline；仅探测依赖健康状态。
[上游关系] 运维/监控系统调用健康检查接口。
[下游关系] 依赖 DB/Milvus 客户端执行轻量检查。
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pymilvus.exceptions import MilvusException
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from arcade_manual_rag.backend.api.deps import get_milvus_repo, get_session
from arcade_manual_rag.backend.kb.repo import MilvusRepo


router = APIRouter(prefix="/health", tags=["health"])


@router.get("")
async def health_check(
    session: AsyncSession = Depends(get_session),
    milvus_repo: Optional[MilvusRepo] = Depends(get_milvus_repo),
) -> Dict[str, Any]:
    """
    [职责] 检测 DB/Milvus 可用性并返回健康摘要。
    [边界] Milvus 未配置视为降级（检索仍可走全文/子串策略）。
    """
    db_status: Dict[str, Any] = {"ok": True}
    milvus_status: Dict[str, Any] = {"ok": True, "optional": True}

    try:
        await session.execute(text("SELECT 1"))  # docstring: DB ping（最小读）
    except SQLAlchemyError as exc:
        db_status["ok"] = False
        db_status["error"] = f"{exc.__class__.__name__}: {exc}"

    if milvus_repo is None:
        milvus_status["ok"] = False
        milvus_status["error"] = "milvus not configured"
    else:
        try:
            milvus_status["version"] = await milvus_repo.healthcheck()
        except MilvusException as exc:
            milvus_status["ok"] = False
            milvus_status["error"] = f"{exc.__class__.__name__}: {exc}"

    status = "ok" if db_status["ok"] and milvus_status["ok"] else "degraded"
    return {
        "status": status,
        "db": db_status,
        "milvus": milvus_status,
        "version": {"api": "v1"},
    }
