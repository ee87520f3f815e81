# src/arcade_manual_rag/backend/db/engine.py

"""
[职责] 数据库引擎与会话工厂：创建 AsyncEngine / AsyncSession，并提供 FastAPI 可注入的 get_session。
[边界] 不包含 ORM Model 定义；不包含业务事务编排（由 service/pipeline 负责）；不负责迁移。
[上游关系] config.py / 环境变量提供数据库连接配置；应用启动时可调用 init_db。
[下游关系] api/deps.py、repo 层依赖 AsyncSession；tests 可复用 sessionmaker。
"""

from __future__ import annotations

import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from arcade_manual_rag.config import LOCAL_ROOT, settings

from .base import Base


def _default_db_url() -> str:
    """本地 sqlite 文件（repo-root/.Local/arcade_manual_rag.db）。"""
    db_path = Path(LOCAL_ROOT) / "arcade_manual_rag.db"
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite+aiosqlite:///{db_path.as_posix()}"


def resolve_db_url(override: str | None = None) -> str:
    """
    Resolve database URL.

    Priority:
        1) explicit override
        2) settings: ARCADE_RAG_DATABASE_URL (loads .env)
        3) env: DATABASE_URL
        4) fallback: local sqlite file
    """
    if override:
        return override
    s_url = str(settings.ARCADE_RAG_DATABASE_URL or "").strip()
    if s_url:
        if s_url.startswith("sqlite") and ":memory:" not in s_url:
            Path(LOCAL_ROOT).mkdir(parents=True, exist_ok=True)  # docstring: 默认 sqlite 目录需存在
        return s_url
    env_url = os.getenv("DATABASE_URL", "").strip()
    if env_url:
        return env_url
    return _default_db_url()


def create_engine(*, url: str | None = None, echo: bool | None = None) -> AsyncEngine:
    """Create AsyncEngine (aiosqlite for local/test, any async driver in production)."""
    db_url = resolve_db_url(url)  # docstring: 数据库连接串
    db_echo = echo if echo is not None else (os.getenv("SQL_ECHO", "0") == "1")  # docstring: SQL 打印开关

    engine = create_async_engine(
        db_url,
        echo=db_echo,
        future=True,
        pool_pre_ping=True,
    )
    if db_url.startswith("sqlite"):
        _enable_sqlite_savepoints(engine)
    return engine


def _enable_sqlite_savepoints(engine: AsyncEngine) -> None:
    """
    pysqlite 的隐式 BEGIN 会让 SAVEPOINT 失效：关闭驱动事务管理，改为在 begin 事件中显式 BEGIN。
    merge 的逐条 SAVEPOINT 依赖此设置。
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):  # type: ignore[no-untyped-def]
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):  # type: ignore[no-untyped-def]
        conn.exec_driver_sql("BEGIN")


def create_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create async sessionmaker."""  # docstring: 统一 expire_on_commit 行为
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


# --- global singletons (app runtime) ---
ENGINE: AsyncEngine = create_engine()  # docstring: 默认全局引擎
SessionLocal: async_sessionmaker[AsyncSession] = create_sessionmaker(ENGINE)  # docstring: 默认会话工厂


@asynccontextmanager
async def session_scope() -> AsyncIterator[AsyncSession]:
    """
    Context manager for DB session (scripts / background jobs).

    Usage:
      async with session_scope() as s:
          ...
    """
    async with SessionLocal() as session:
        yield session


async def init_db(*, engine: AsyncEngine | None = None) -> None:
    """
    Initialize database schema (create_all).

    Must import models to register tables in Base.metadata.
    """
    from . import models  # noqa: F401  # docstring: 强制注册 ORM 表

    eng = engine or ENGINE
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_db(*, engine: AsyncEngine | None = None) -> None:
    """Drop all tables (local/dev/tests only)."""
    from . import models  # noqa: F401

    eng = engine or ENGINE
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


async def get_session() -> AsyncIterator[AsyncSession]:
    """
    FastAPI dependency.

    Example:
      async def endpoint(session: AsyncSession = Depends(get_session)): ...
    """
    async with SessionLocal() as session:
        yield session
