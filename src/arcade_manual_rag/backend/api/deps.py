# src/arcade_manual_rag/backend/api/deps.py

"""
[职责] API 依赖装配：提供 session、trace ids、可选 MilvusRepo 与 bearer token -> tenant 解析。
[边界] 不做业务逻辑；不提交事务。
[上游关系] FastAPI 路由层调用依赖注入。
[下游关系] services/routers 通过本模块获取依赖实例。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from fastapi import Depends, Request
from pymilvus.exceptions import MilvusException
from sqlalchemy.ext.asyncio import AsyncSession

from arcade_manual_rag.backend.db.engine import SessionLocal
from arcade_manual_rag.backend.db.repo import ProfileRepo
from arcade_manual_rag.backend.kb.client import MilvusClient
from arcade_manual_rag.backend.kb.repo import MilvusRepo
from arcade_manual_rag.backend.schemas.ids import new_uuid
from arcade_manual_rag.backend.utils.errors import ExternalDependencyError, UnauthorizedError
from arcade_manual_rag.backend.utils.logging_ import get_logger, log_event


logger = get_logger("api.deps")

_BEARER_PREFIX = "bearer "


async def get_session() -> AsyncIterator[AsyncSession]:
    """每个 request 一个 session；不提交/回滚事务，仅负责创建与关闭。"""
    async with SessionLocal() as session:
        yield session


@dataclass(frozen=True)
class TraceIds:
    trace_id: str
    request_id: str


def get_trace_ids(request: Request) -> TraceIds:
    """
    [职责] 读取 middleware 注入的 trace/request id（缺失时生成并写回 state）。
    [边界] 不校验 UUID 格式。
    """
    trace_id = str(getattr(request.state, "trace_id", "") or "").strip() or str(new_uuid())
    request_id = str(getattr(request.state, "request_id", "") or "").strip() or str(new_uuid())
    request.state.trace_id = trace_id
    request.state.request_id = request_id
    return TraceIds(trace_id=trace_id, request_id=request_id)


def get_milvus_repo() -> Optional[MilvusRepo]:
    """
    [职责] 获取 MilvusRepo；未配置或连接失败时返回 None（dense 策略随后记错并让级联继续）。
    [边界] 不做 collection 初始化。
    """
    try:
        client = MilvusClient.from_env()
    except (ExternalDependencyError, MilvusException) as exc:
        log_event(
            logger,
            logging.WARNING,
            "milvus unavailable, dense search disabled",
            fields={"error_type": type(exc).__name__},
        )
        return None
    return MilvusRepo(client)


def _bearer_token(request: Request) -> Optional[str]:
    raw = str(request.headers.get("authorization") or "").strip()
    if not raw.lower().startswith(_BEARER_PREFIX):
        return None
    token = raw[len(_BEARER_PREFIX):].strip()
    return token or None


async def get_tenant_id(
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> str:
    """
    [职责] Authorization: Bearer <token> -> profile.tenant_id。
    [边界] 缺失 token 或 token 无对应 profile -> UnauthorizedError（401）。
    """
    token = _bearer_token(request)
    if token is None:
        raise UnauthorizedError("Unauthorized", detail={"reason": "missing bearer token"})
    profile = await ProfileRepo(session).get_by_token(token)
    if profile is None:
        raise UnauthorizedError("Unauthorized", detail={"reason": "profile not found"})
    return str(profile.tenant_id)
