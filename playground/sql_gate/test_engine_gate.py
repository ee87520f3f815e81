# playground/sql_gate/test_engine_gate.py

"""
[职责] engine gate：验证 db/engine.py 的最小可用性（create_engine / init_db / drop_db / SAVEPOINT）。
[边界] 不跑 FastAPI；不引入业务 pipeline；只在临时 sqlite 文件上验证。
[上游关系] 依赖 backend/db/engine.py 与 backend/db/models 注册。
[下游关系] merge 的逐条 SAVEPOINT 与 api/deps.get_session 依赖这里的引擎行为。
"""

from __future__ import annotations

import json

import pytest
from sqlalchemy import func, select, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine

from arcade_manual_rag.backend.db.engine import create_engine, create_sessionmaker, drop_db, init_db
from arcade_manual_rag.backend.db.models import ChunkModel, ManualModel


pytestmark = pytest.mark.sql_gate

_CORE_TABLES = {
    "documents",
    "manual_metadata",
    "chunks_text",
    "figures",
    "golden_questions",
    "manual_questions",
    "profiles",
}


async def _table_names(engine: AsyncEngine) -> set:
    async with engine.connect() as conn:
        rows = (await conn.execute(text("SELECT name FROM sqlite_master WHERE type='table'"))).fetchall()
    return {r[0] for r in rows}


@pytest.mark.asyncio
async def test_engine_init_and_drop(tmp_path) -> None:
    """Init DB creates tables; drop DB removes them (on isolated sqlite file)."""  # docstring: 防污染默认本地库
    engine = create_engine(url=f"sqlite+aiosqlite:///{tmp_path / 'engine_gate.db'}", echo=False)
    try:
        await drop_db(engine=engine)  # docstring: 幂等
        await init_db(engine=engine)
        assert _CORE_TABLES.issubset(await _table_names(engine))

        await drop_db(engine=engine)
        assert not (_CORE_TABLES & await _table_names(engine))
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_savepoint_rolls_back_only_the_failed_item(tmp_path) -> None:
    """A failed nested write must not discard earlier writes in the same transaction."""
    engine = create_engine(url=f"sqlite+aiosqlite:///{tmp_path / 'savepoint_gate.db'}", echo=False)
    try:
        await init_db(engine=engine)
        Session = create_sessionmaker(engine)
        async with Session() as session:
            async with session.begin_nested():
                session.add(ManualModel(manual_id="m-ok", tenant_id="t1"))

            with pytest.raises(IntegrityError):
                async with session.begin_nested():
                    session.add(ChunkModel(manual_id="missing", tenant_id="t1", content="orphan"))  # docstring: 外键冲突
                    await session.flush()

            await session.commit()

        async with Session() as session:
            count = await session.scalar(select(func.count()).select_from(ManualModel))
        assert count == 1
    finally:
        await engine.dispose()


def test_init_db_script_creates_schema_fts_and_profile(tmp_path, capsys) -> None:
    from arcade_manual_rag.backend.scripts.init_db import main

    url = f"sqlite+aiosqlite:///{(tmp_path / 'init_gate.db').as_posix()}"
    argv = ["--db-url", url, "--seed-profile", "dev-token", "--rebuild-fts", "--json"]

    assert main(argv) == 0
    first = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
    assert first["ok"] is True and first["created"] is True
    assert first["fts"] == {"ensured": True, "rebuilt": True, "profile_seeded": True}
    assert first["milvus"] is None

    assert main(argv) == 0  # docstring: 重复执行幂等（profile 已存在不重复写入）
    second = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
    assert second["ok"] is True and second["error"] is None
