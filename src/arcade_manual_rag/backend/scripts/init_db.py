# src/arcade_manual_rag/backend/scripts/init_db.py

"""
[职责] 初始化存储结构：关系库建表（可选 drop）、SQLite FTS 影子表与触发器、可选 Milvus collection。
[边界] 不导入手册；--seed-profile 仅写入一条 dev profile（token -> tenant）用于本地联调 merge 接口。
[上游关系] 本地开发/CI/部署脚本调用；依赖 db.engine、db.fts、kb.client、kb.schema。
[下游关系] services/pipelines/api 在结构就绪后运行。
"""

from __future__ import annotations

import argparse
import asyncio
import json
import time
from typing import Any, Dict, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncEngine

from arcade_manual_rag.backend.db.engine import create_engine, create_sessionmaker, drop_db, init_db
from arcade_manual_rag.backend.db.fts import ensure_sqlite_fts, rebuild_sqlite_fts
from arcade_manual_rag.backend.db.repo.profile_repo import ProfileRepo
from arcade_manual_rag.backend.kb.client import MilvusClient
from arcade_manual_rag.backend.kb.schema import build_collection_spec
from arcade_manual_rag.config import settings


DEV_USER_ID = "dev-user"
DEV_TENANT_ID = "dev-tenant"


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Initialize database schema, FTS tables and the Milvus collection.")
    parser.add_argument("--db-url", dest="db_url", default=None)  # docstring: 显式 DB 连接串
    parser.add_argument("--drop", action="store_true")  # docstring: 先 drop 再 create
    parser.add_argument("--no-fts", dest="fts", action="store_false")  # docstring: 跳过 FTS 初始化
    parser.add_argument("--rebuild-fts", action="store_true")  # docstring: 重建 FTS 内容
    parser.add_argument("--seed-profile", dest="seed_token", default=None)  # docstring: 以该 token 写入 dev profile
    parser.add_argument("--milvus", action="store_true")  # docstring: 同时初始化 Milvus collection
    parser.add_argument("--collection", default=None)  # docstring: 覆盖默认 collection 名
    # docstring: SQL echo 三态开关：默认 None（由 engine/环境决定）
    echo_group = parser.add_mutually_exclusive_group()
    echo_group.add_argument("--echo", dest="echo", action="store_true", default=None)
    echo_group.add_argument("--no-echo", dest="echo", action="store_false")
    parser.add_argument("--json", action="store_true")  # docstring: 仅输出 JSON 结果
    return parser


def _parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = _build_parser()
    return parser.parse_args(list(argv) if argv is not None else None)


async def _prepare_fts(*, engine: AsyncEngine, rebuild: bool, seed_token: Optional[str]) -> Dict[str, Any]:
    """FTS 影子表 + 可选 dev profile（ensure/rebuild 内部各自提交）。"""
    out: Dict[str, Any] = {"ensured": False, "rebuilt": False, "profile_seeded": False}
    Session = create_sessionmaker(engine)
    async with Session() as session:
        await ensure_sqlite_fts(session)
        out["ensured"] = True
        if rebuild:
            await rebuild_sqlite_fts(session)
            out["rebuilt"] = True
        if seed_token:
            repo = ProfileRepo(session)
            if await repo.get_by_token(seed_token) is None:
                await repo.create(
                    user_id=DEV_USER_ID,
                    tenant_id=DEV_TENANT_ID,
                    token=seed_token,
                    display_name="dev",
                )
                await session.commit()
            out["profile_seeded"] = True
    return out


async def _prepare_milvus(*, collection: Optional[str], drop: bool) -> Dict[str, Any]:
    """建 collection + 索引 + load；已存在时幂等跳过建表。"""
    client = MilvusClient.from_env()
    spec = build_collection_spec(
        name=collection or settings.ARCADE_RAG_MILVUS_COLLECTION,
        embed_dim=int(settings.EMBED_DIM),
    )
    version = await client.healthcheck()
    existed = await client.has_collection(spec.name)
    await client.create_collection(spec, drop_if_exists=drop)
    await client.ensure_index(spec)
    await client.load_collection(spec.name)
    return {
        "server_version": version,
        "collection": spec.name,
        "embed_dim": spec.embed_dim,
        "metric_type": spec.metric_type,
        "index_type": spec.index_type,
        "existed": bool(existed),
        "dropped": bool(existed and drop),
    }


async def _run_async(
    *,
    db_url: Optional[str],
    drop: bool,
    fts: bool,
    rebuild_fts: bool,
    seed_token: Optional[str],
    milvus: bool,
    collection: Optional[str],
    echo: Optional[bool],
) -> Dict[str, Any]:
    """
    [职责] 执行初始化主流程，输出 JSON-safe 结果。
    [边界] 异常写入 result["error"] 并标记 ok=False；连接池总是释放。
    """
    start_ms = time.perf_counter() * 1000.0
    engine = create_engine(url=db_url, echo=echo)
    result: Dict[str, Any] = {
        "ok": True,
        "db_url": str(engine.url),
        "echo": engine.echo,
        "dropped": False,
        "created": False,
        "fts": None,
        "milvus": None,
        "duration_ms": 0.0,
        "error": None,
    }
    try:
        if drop:
            await drop_db(engine=engine)
            result["dropped"] = True
        await init_db(engine=engine)
        result["created"] = True

        if fts:
            result["fts"] = await _prepare_fts(engine=engine, rebuild=rebuild_fts, seed_token=seed_token)

        if milvus:
            result["milvus"] = await _prepare_milvus(collection=collection, drop=drop)
    except Exception as exc:
        result["ok"] = False
        result["error"] = f"{exc.__class__.__name__}: {exc}"
    finally:
        await engine.dispose()
        result["duration_ms"] = round(time.perf_counter() * 1000.0 - start_ms, 2)
    return result


def _print_summary(*, result: Dict[str, Any], as_json: bool) -> None:
    if as_json:
        print(json.dumps(result, ensure_ascii=True, default=str))
        return
    status = "ok" if result.get("ok") else "failed"
    print(f"[init_db] status={status}")
    print(f"[init_db] db_url={result.get('db_url')} echo={result.get('echo')}")
    print(f"[init_db] dropped={result.get('dropped')} created={result.get('created')}")
    if result.get("fts"):
        print(f"[init_db] fts={result.get('fts')}")
    if result.get("milvus"):
        print(f"[init_db] milvus={result.get('milvus')}")
    if result.get("error"):
        print(f"[init_db] error={result.get('error')}")
    print(f"[init_db] duration_ms={result.get('duration_ms')}")


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _parse_args(argv)
    result = asyncio.run(
        _run_async(
            db_url=args.db_url,
            drop=bool(args.drop),
            fts=bool(args.fts),
            rebuild_fts=bool(args.rebuild_fts),
            seed_token=args.seed_token,
            milvus=bool(args.milvus),
            collection=args.collection,
            echo=args.echo,
        )
    )
    _print_summary(result=result, as_json=bool(args.json))
    return 0 if result.get("ok") else 1


if __name__ == "__main__":
    raise SystemExit(main())
