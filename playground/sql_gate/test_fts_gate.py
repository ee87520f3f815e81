# playground/sql_gate/test_fts_gate.py

"""
[职责] fts gate：验证 SQLite FTS5 虚表/触发器可创建，chunks_text 与 figures 可按关键词/子串检索，且作用域过滤生效。
[边界] 只测试 SQL 侧检索；不涉及 Milvus；不做 rerank/打分。
[上游关系] 依赖 db/fts.py + chunk/figure repo 写入。
[下游关系] retrieval/keyword.py 与 retrieval/substring.py 依赖这些 StoreHit。
"""

from __future__ import annotations

import pytest
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from arcade_manual_rag.backend.db.fts import (
    CHUNK_FTS_TABLE,
    FIGURE_FTS_TABLE,
    escape_like,
    rebuild_sqlite_fts,
    search_chunks_fts,
    search_figures_fts,
    search_substring,
)
from arcade_manual_rag.backend.pipelines.retrieval.keyword import LexicalStrategy
from arcade_manual_rag.backend.pipelines.retrieval.types import RetrievalConstraints
from conftest import seed_chunks, seed_figures, seed_manual


pytestmark = pytest.mark.sql_gate


@pytest.mark.asyncio
async def test_fts_ensure_creates_tables_and_triggers(session: AsyncSession) -> None:
    rows = (
        await session.execute(
            text("SELECT name FROM sqlite_master WHERE type='table' AND name IN (:a, :b)"),
            {"a": CHUNK_FTS_TABLE, "b": FIGURE_FTS_TABLE},
        )
    ).fetchall()
    assert {r[0] for r in rows} == {CHUNK_FTS_TABLE, FIGURE_FTS_TABLE}

    trigger_rows = (await session.execute(text("SELECT name FROM sqlite_master WHERE type='trigger'"))).fetchall()
    names = {r[0] for r in trigger_rows}
    assert {"chunks_text_ai", "chunks_text_ad", "chunks_text_au", "figures_ai", "figures_ad", "figures_au"}.issubset(
        names
    )


@pytest.mark.asyncio
async def test_fts_search_is_scoped_by_manual_and_tenant(session: AsyncSession) -> None:
    await seed_manual(session, manual_id="m1", tenant_id="t1")
    await seed_manual(session, manual_id="m2", tenant_id="t1")
    await seed_manual(session, manual_id="m3", tenant_id="t2")
    c1 = await seed_chunks(
        session,
        manual_id="m1",
        tenant_id="t1",
        rows=[{"content": "Replace the coin door lock with the supplied key.", "page_start": 3, "section_path": ["Cabinet"]}],
    )
    await seed_chunks(session, manual_id="m2", tenant_id="t1", rows=[{"content": "Coin door lock for the sister cabinet."}])
    await seed_chunks(session, manual_id="m3", tenant_id="t2", rows=[{"content": "Coin door lock of another operator."}])

    hits = await search_chunks_fts(session, fts_query='"coin" "lock"', top_k=10, manual_id="m1", tenant_id="t1")
    assert [h.record_id for h in hits] == [c1[0].id]
    assert hits[0].meta["section_path"] == ["Cabinet"]
    assert isinstance(hits[0].raw_score, float)

    tenant_hits = await search_chunks_fts(session, fts_query='"coin"', top_k=10, tenant_id="t1")
    assert {h.manual_id for h in tenant_hits} == {"m1", "m2"}


@pytest.mark.asyncio
async def test_fts_figure_description_is_searchable(session: AsyncSession) -> None:
    await seed_manual(session, manual_id="m1", tenant_id="t1")
    figs = await seed_figures(
        session,
        manual_id="m1",
        tenant_id="t1",
        rows=[
            {
                "page_number": 12,
                "figure_type": "diagram",
                "caption_text": "Power supply wiring",
                "ocr_text": "J2 harness",
                "keywords": ["transformer"],
                "storage_path": "figs/p12.png",
            }
        ],
    )

    hits = await search_figures_fts(session, fts_query='"transformer"', top_k=5, manual_id="m1")
    assert len(hits) == 1
    assert hits[0].record_id == figs[0].id
    assert hits[0].content_type == "figure"
    assert hits[0].page_start == 12
    assert "Power supply wiring" in hits[0].content


@pytest.mark.asyncio
async def test_substring_matches_partial_words_and_skips_short_tokens(session: AsyncSession) -> None:
    await seed_manual(session, manual_id="m1", tenant_id="t1")
    await seed_chunks(
        session,
        manual_id="m1",
        tenant_id="t1",
        rows=[
            {"content": "Service lockouts prevent credit after a tilt.", "page_start": 7},
            {"content": "Unrelated monitor text.", "page_start": 8},
        ],
    )

    hits = await search_substring(session, query="lockout of", top_k=10, manual_id="m1")
    assert len(hits) == 1
    assert hits[0].raw_score is None
    assert "lockouts" in hits[0].content

    assert await search_substring(session, query="of to", top_k=10) == []


@pytest.mark.asyncio
async def test_substring_treats_underscore_literally(session: AsyncSession) -> None:
    await seed_manual(session, manual_id="m1", tenant_id="t1")
    await seed_chunks(
        session,
        manual_id="m1",
        tenant_id="t1",
        rows=[
            {"content": "Set dip switch SW_1 to ON.", "page_start": 3},
            {"content": "Set dip switch SWX1 to OFF.", "page_start": 4},
        ],
    )

    hits = await search_substring(session, query="sw_1", top_k=10, manual_id="m1")

    assert [h.page_start for h in hits] == [3]  # docstring: _ 不作为单字符通配
    assert escape_like("50%_off\\") == "50\\%\\_off\\\\"


@pytest.mark.asyncio
async def test_rebuild_restores_index(session: AsyncSession) -> None:
    await seed_manual(session, manual_id="m1", tenant_id="t1")
    await seed_chunks(session, manual_id="m1", tenant_id="t1", rows=[{"content": "Marquee lamp replacement."}])
    await session.execute(text(f"DELETE FROM {CHUNK_FTS_TABLE}"))

    assert await search_chunks_fts(session, fts_query='"marquee"', top_k=5) == []
    await rebuild_sqlite_fts(session)
    assert len(await search_chunks_fts(session, fts_query='"marquee"', top_k=5)) == 1


@pytest.mark.asyncio
async def test_lexical_or_fallback_is_decided_per_kind(session: AsyncSession) -> None:
    await seed_manual(session, manual_id="m1", tenant_id="t1")
    await seed_chunks(
        session,
        manual_id="m1",
        tenant_id="t1",
        rows=[{"content": "Open the coin door with the service key.", "page_start": 4}],
    )
    await seed_figures(
        session,
        manual_id="m1",
        tenant_id="t1",
        rows=[{"page_number": 5, "caption_text": "Door hinge detail", "storage_path": "m1/p5.png"}],
    )

    got = await LexicalStrategy(session=session).retrieve(
        "coin door", RetrievalConstraints(manual_id="m1", tenant_id="t1", top_k=10)
    )

    modes = {c.content_type: c.score_details["keyword_mode"] for c in got}
    assert modes == {"text": "and", "figure": "or"}  # docstring: chunk 的 AND 命中不阻止 figure 回退
