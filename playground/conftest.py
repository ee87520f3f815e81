# playground/conftest.py

"""
[职责] gate tests 共享 fixture：临时 SQLite（aiosqlite）引擎 + 建表 + FTS 触发器 + AsyncSession。
[边界] 不连接 Milvus / embedding / rerank 外部服务；需要时由各 gate 注入 stub。
[上游关系] pytest 收集 playground/*_gate。
[下游关系] 各 gate 通过 `session` fixture 获取已初始化的会话，并用 seed_* helper 写入手册数据。
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

_REPO_ROOT = Path(__file__).resolve().parents[1]
_SRC_ROOT = _REPO_ROOT / "src"
if str(_SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(_SRC_ROOT))  # docstring: ensure local src import

from arcade_manual_rag.backend.db.engine import create_engine, create_sessionmaker, init_db  # noqa: E402
from arcade_manual_rag.backend.db.fts import ensure_sqlite_fts  # noqa: E402
from arcade_manual_rag.backend.db.models import ChunkModel, FigureModel, ManualModel  # noqa: E402
from arcade_manual_rag.backend.db.repo import ChunkRepo, FigureRepo, ManualRepo  # noqa: E402


@pytest_asyncio.fixture
async def engine(tmp_path: Path) -> AsyncIterator[AsyncEngine]:
    """每个测试独立的 sqlite 文件库（savepoint/触发器行为与生产 sqlite 一致）。"""
    eng = create_engine(url=f"sqlite+aiosqlite:///{(tmp_path / 'gate.db').as_posix()}", echo=False)
    await init_db(engine=eng)
    try:
        yield eng
    finally:
        await eng.dispose()


@pytest_asyncio.fixture
async def session(engine: AsyncEngine) -> AsyncIterator[AsyncSession]:
    Session = create_sessionmaker(engine)
    async with Session() as s:
        await ensure_sqlite_fts(s)  # docstring: 建 FTS 虚表与同步触发器（内部 commit）
        yield s


async def seed_manual(
    session: AsyncSession,
    *,
    manual_id: str,
    tenant_id: str = "tenant-a",
    title: Optional[str] = None,
) -> ManualModel:
    return await ManualRepo(session).create(manual_id=manual_id, tenant_id=tenant_id, title=title)


async def seed_chunks(
    session: AsyncSession,
    *,
    manual_id: str,
    tenant_id: str = "tenant-a",
    rows: List[Dict[str, Any]],
) -> List[ChunkModel]:
    repo = ChunkRepo(session)
    return [await repo.create(manual_id=manual_id, tenant_id=tenant_id, **row) for row in rows]


async def seed_figures(
    session: AsyncSession,
    *,
    manual_id: str,
    tenant_id: str = "tenant-a",
    rows: List[Dict[str, Any]],
) -> List[FigureModel]:
    repo = FigureRepo(session)
    return [await repo.create(manual_id=manual_id, tenant_id=tenant_id, **row) for row in rows]
