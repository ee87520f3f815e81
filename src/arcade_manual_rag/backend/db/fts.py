# src/arcade_manual_rag/backend/db/fts.py

"""
[职责] SQLite 检索底座：为 chunks_text / figures 提供 FTS5 关键词检索，并为 chunks_text 提供最宽松的 LIKE 子串检索。
[边界] 当前仅实现 SQLite FTS5；PostgreSQL tsvector/pg_trgm 作为生产替换点。作用域（manual_id/tenant_id）在 SQL 侧过滤。
[上游关系] 外部 ingest 与 merge 写入 ChunkModel/FigureModel；本模块通过触发器同步 FTS 索引。
[下游关系] retrieval/keyword.py 调用 search_lexical()；retrieval/substring.py 调用 search_substring()。
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession


# 说明：
# - 主键是 UUID(str)，不适合作为 SQLite rowid；FTS 表使用独立的 UNINDEXED id 列。
# - figures 的索引文本 = caption_text + ocr_text + keywords(JSON 文本)。

CHUNK_FTS_TABLE = "chunk_fts"  # docstring: 文本块 FTS5 虚表
FIGURE_FTS_TABLE = "figure_fts"  # docstring: 图片描述 FTS5 虚表

_FIGURE_DOC_SQL = "coalesce({p}.caption_text, '') || ' ' || coalesce({p}.ocr_text, '') || ' ' || coalesce({p}.keywords, '')"
_SUBSTRING_MIN_TOKEN = 3  # docstring: 子串检索忽略过短 token


@dataclass(frozen=True)
class StoreHit:
    """DB 侧检索命中（文本块或图片），携带构造 Candidate 所需的全部字段。"""

    record_id: str
    content_type: str  # docstring: "text" | "figure"
    content: str
    manual_id: str
    tenant_id: str
    page_start: Optional[int]
    page_end: Optional[int]
    figure_type: Optional[str]
    raw_score: Optional[float]  # docstring: bm25（越小越相关）；子串检索为 None
    meta: Dict[str, Any]


async def ensure_sqlite_fts(session: AsyncSession) -> None:
    """
    Ensure SQLite FTS5 structures exist (virtual tables + sync triggers).

    Idempotent; call once at startup or in test fixtures after create_all.
    """
    await session.execute(text("PRAGMA foreign_keys=ON;"))

    await session.execute(
        text(
            f"""
            CREATE VIRTUAL TABLE IF NOT EXISTS {CHUNK_FTS_TABLE}
            USING fts5(chunk_id UNINDEXED, content, tokenize = 'unicode61');
            """
        )
    )
    await session.execute(
        text(
            f"""
            CREATE VIRTUAL TABLE IF NOT EXISTS {FIGURE_FTS_TABLE}
            USING fts5(figure_id UNINDEXED, content, tokenize = 'unicode61');
            """
        )
    )

    statements = [
        f"""
        CREATE TRIGGER IF NOT EXISTS chunks_text_ai AFTER INSERT ON chunks_text BEGIN
          INSERT INTO {CHUNK_FTS_TABLE}(chunk_id, content) VALUES (new.id, new.content);
        END;
        """,
        f"""
        CREATE TRIGGER IF NOT EXISTS chunks_text_ad AFTER DELETE ON chunks_text BEGIN
          DELETE FROM {CHUNK_FTS_TABLE} WHERE chunk_id = old.id;
        END;
        """,
        f"""
        CREATE TRIGGER IF NOT EXISTS chunks_text_au AFTER UPDATE OF content ON chunks_text BEGIN
          UPDATE {CHUNK_FTS_TABLE} SET content = new.content WHERE chunk_id = new.id;
        END;
        """,
        f"""
        CREATE TRIGGER IF NOT EXISTS figures_ai AFTER INSERT ON figures BEGIN
          INSERT INTO {FIGURE_FTS_TABLE}(figure_id, content) VALUES (new.id, {_FIGURE_DOC_SQL.format(p="new")});
        END;
        """,
        f"""
        CREATE TRIGGER IF NOT EXISTS figures_ad AFTER DELETE ON figures BEGIN
          DELETE FROM {FIGURE_FTS_TABLE} WHERE figure_id = old.id;
        END;
        """,
        f"""
        CREATE TRIGGER IF NOT EXISTS figures_au AFTER UPDATE OF caption_text, ocr_text, keywords ON figures BEGIN
          UPDATE {FIGURE_FTS_TABLE} SET content = {_FIGURE_DOC_SQL.format(p="new")} WHERE figure_id = new.id;
        END;
        """,
    ]
    for stmt in statements:
        await session.execute(text(stmt))

    await session.commit()  # docstring: DDL/trigger 需要提交以生效


async def rebuild_sqlite_fts(session: AsyncSession) -> None:
    """Rebuild both FTS indexes from the base tables (legacy data / bulk import repair)."""
    await session.execute(text(f"DELETE FROM {CHUNK_FTS_TABLE};"))
    await session.execute(text(f"DELETE FROM {FIGURE_FTS_TABLE};"))
    await session.execute(
        text(f"INSERT INTO {CHUNK_FTS_TABLE}(chunk_id, content) SELECT id, content FROM chunks_text;")
    )
    await session.execute(
        text(
            f"INSERT INTO {FIGURE_FTS_TABLE}(figure_id, content) "
            f"SELECT id, {_FIGURE_DOC_SQL.format(p='figures')} FROM figures;"
        )
    )
    await session.commit()


def _scope_sql(alias: str, *, manual_id: Optional[str], tenant_id: Optional[str], params: Dict[str, Any]) -> str:
    """拼接 manual_id / tenant_id 作用域条件（显式参数，不依赖会话级租户变量）。"""
    clauses: List[str] = []
    if manual_id:
        clauses.append(f"{alias}.manual_id = :manual_id")
        params["manual_id"] = manual_id
    if tenant_id:
        clauses.append(f"{alias}.tenant_id = :tenant_id")
        params["tenant_id"] = tenant_id
    return "".join(f" AND {c}" for c in clauses)


def _json_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    try:
        parsed = json.loads(value)
    except (TypeError, ValueError):
        return []
    return parsed if isinstance(parsed, list) else []


def _chunk_hit(r: Any, *, raw_score: Optional[float]) -> StoreHit:
    return StoreHit(
        record_id=str(r["id"]),
        content_type="text",
        content=str(r["content"] or ""),
        manual_id=str(r["manual_id"]),
        tenant_id=str(r["tenant_id"]),
        page_start=r["page_start"],
        page_end=r["page_end"],
        figure_type=None,
        raw_score=raw_score,
        meta={
            "section_path": _json_list(r["section_path"]),
            "menu_path": _json_list(r["menu_path"]),
        },
    )


async def search_chunks_fts(
    session: AsyncSession,
    *,
    fts_query: str,
    top_k: int,
    manual_id: Optional[str] = None,
    tenant_id: Optional[str] = None,
) -> List[StoreHit]:
    """FTS5 检索文本块（bm25 升序）。"""
    if not fts_query.strip() or int(top_k) <= 0:
        return []

    params: Dict[str, Any] = {"q": fts_query, "limit": int(top_k)}
    sql = f"""
    SELECT
      c.id AS id,
      c.content AS content,
      c.manual_id AS manual_id,
      c.tenant_id AS tenant_id,
      c.page_start AS page_start,
      c.page_end AS page_end,
      c.section_path AS section_path,
      c.menu_path AS menu_path,
      bm25({CHUNK_FTS_TABLE}) AS score
    FROM {CHUNK_FTS_TABLE}
    JOIN chunks_text c ON c.id = {CHUNK_FTS_TABLE}.chunk_id
    WHERE {CHUNK_FTS_TABLE} MATCH :q
    """
    sql += _scope_sql("c", manual_id=manual_id, tenant_id=tenant_id, params=params)
    sql += " ORDER BY score ASC LIMIT :limit"

    rows = (await session.execute(text(sql), params)).mappings().all()
    return [_chunk_hit(r, raw_score=float(r["score"]) if r["score"] is not None else None) for r in rows]


async def search_figures_fts(
    session: AsyncSession,
    *,
    fts_query: str,
    top_k: int,
    manual_id: Optional[str] = None,
    tenant_id: Optional[str] = None,
) -> List[StoreHit]:
    """FTS5 检索图片描述（caption/OCR/keywords）。"""
    if not fts_query.strip() or int(top_k) <= 0:
        return []

    params: Dict[str, Any] = {"q": fts_query, "limit": int(top_k)}
    sql = f"""
    SELECT
      f.id AS id,
      {FIGURE_FTS_TABLE}.content AS content,
      f.manual_id AS manual_id,
      f.tenant_id AS tenant_id,
      f.page_number AS page_number,
      f.figure_type AS figure_type,
      f.figure_label AS figure_label,
      f.storage_path AS storage_path,
      bm25({FIGURE_FTS_TABLE}) AS score
    FROM {FIGURE_FTS_TABLE}
    JOIN figures f ON f.id = {FIGURE_FTS_TABLE}.figure_id
    WHERE {FIGURE_FTS_TABLE} MATCH :q
    """
    sql += _scope_sql("f", manual_id=manual_id, tenant_id=tenant_id, params=params)
    sql += " ORDER BY score ASC LIMIT :limit"

    rows = (await session.execute(text(sql), params)).mappings().all()
    hits: List[StoreHit] = []
    for r in rows:
        hits.append(
            StoreHit(
                record_id=str(r["id"]),
                content_type="figure",
                content=" ".join(str(r["content"] or "").split()),  # docstring: 合并触发器拼接产生的空白
                manual_id=str(r["manual_id"]),
                tenant_id=str(r["tenant_id"]),
                page_start=r["page_number"],
                page_end=r["page_number"],
                figure_type=r["figure_type"],
                raw_score=float(r["score"]) if r["score"] is not None else None,
                meta={
                    "figure_label": r["figure_label"],
                    "storage_path": r["storage_path"],
                },
            )
        )
    return hits


def escape_like(value: str) -> str:
    """转义 LIKE 通配符（配合 ESCAPE 子句）；分词后的 token 仍可能含下划线。"""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


async def search_substring(
    session: AsyncSession,
    *,
    query: str,
    top_k: int,
    manual_id: Optional[str] = None,
    tenant_id: Optional[str] = None,
) -> List[StoreHit]:
    """
    最宽松的子串检索：content 包含任一 query token（大小写不敏感 LIKE）。

    只检索 chunks_text；不产出 figure。
    """
    tokens = [t.lower() for t in re.findall(r"\w+", str(query or ""), flags=re.UNICODE)]
    tokens = [t for t in tokens if len(t) >= _SUBSTRING_MIN_TOKEN]
    if not tokens or int(top_k) <= 0:
        return []

    params: Dict[str, Any] = {"limit": int(top_k)}
    likes: List[str] = []
    for i, tok in enumerate(dict.fromkeys(tokens)):
        key = f"t{i}"
        params[key] = f"%{escape_like(tok)}%"
        likes.append(f"lower(c.content) LIKE :{key} ESCAPE '\\'")

    sql = f"""
    SELECT
      c.id AS id,
      c.content AS content,
      c.manual_id AS manual_id,
      c.tenant_id AS tenant_id,
      c.page_start AS page_start,
      c.page_end AS page_end,
      c.section_path AS section_path,
      c.menu_path AS menu_path
    FROM chunks_text c
    WHERE ({" OR ".join(likes)})
    """
    sql += _scope_sql("c", manual_id=manual_id, tenant_id=tenant_id, params=params)
    sql += " ORDER BY c.page_start ASC LIMIT :limit"

    rows = (await session.execute(text(sql), params)).mappings().all()
    return [_chunk_hit(r, raw_score=None) for r in rows]
