# playground/rundown_gate/test_rundown_gate.py

"""
[职责] rundown gate：gist 清洗规则与按顶层章节聚类（桶排序、过短/目录桶丢弃、引用数量、gist 上限）。
[边界] 聚类规则为纯函数测试；服务入口在临时 SQLite 上运行（provider 关闭，rerank 用 stub）。
[上游关系] pipelines/rundown/summarize.py、services/rundown_service.py。
[下游关系] /search-rundown-v1 的 sections 输出依赖此行为。
"""

from __future__ import annotations

from typing import List, Optional, Sequence, Tuple

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from arcade_manual_rag.backend.pipelines.rundown.summarize import (
    RundownSnippet,
    cluster_sections,
    normalize_gist,
    section_key,
    summary_sentence,
)
from arcade_manual_rag.backend.services.rundown_service import rundown
from conftest import seed_chunks, seed_manual


pytestmark = pytest.mark.rundown_gate


def _snip(
    content: str,
    *,
    section: Optional[List[str]] = None,
    menu: Optional[List[str]] = None,
    page: Optional[int] = 1,
    manual_id: str = "galaga",
) -> RundownSnippet:
    return RundownSnippet(
        manual_id=manual_id,
        content=content,
        page_start=page,
        section_path=list(section or []),
        menu_path=list(menu or []),
    )


_CABINET = "The cabinet houses the monitor, the power supply and the coin door assembly."
_MONITOR = "Monitor adjustments include brightness, contrast, horizontal size and vertical hold."


def test_normalize_gist_strips_pdf_noise() -> None:
    raw = "<!-- hdr --> Page 12 C O I N door P/N: 031-1234-00 adjust- ment • REV. 3/97 done"
    assert normalize_gist(raw) == "COIN door adjustment done"


def test_normalize_gist_keeps_ordinary_words() -> None:
    assert normalize_gist("Turn the page over\nand   check the fuse") == "Turn the page over and check the fuse"
    assert normalize_gist(None) == ""


def test_normalize_gist_collapses_letter_parades() -> None:
    assert normalize_gist("s e r v i c e mode") == "service mode"


def test_section_key_prefers_section_then_menu() -> None:
    assert section_key(_snip("x", section=["Cabinet", "Door"], menu=["Menu"])) == "Cabinet"
    assert section_key(_snip("x", menu=["Operator Menu"])) == "Operator Menu"
    assert section_key(_snip("x")) == "General"
    assert len(section_key(_snip("x", section=["T" * 200]))) == 80


def test_cluster_sections_orders_by_bucket_size_and_cites_first_three() -> None:
    snippets = [
        _snip(_MONITOR, section=["Monitor"], page=20),
        _snip(_CABINET, section=["Cabinet"], page=3),
        _snip(_CABINET + " Second.", section=["Cabinet"], page=4),
        _snip(_MONITOR + " Again.", section=["Monitor"], page=21),
        _snip(_CABINET + " Third.", section=["Cabinet"], page=5),
        _snip(_CABINET + " Fourth.", section=["Cabinet"], page=6),
        _snip("short", section=["Cabinet"], page=7),
    ]

    sections = cluster_sections(snippets)

    assert [s.title for s in sections] == ["Cabinet", "Monitor"]
    assert sections[0].citations == [
        {"manual_id": "galaga", "page": 3},
        {"manual_id": "galaga", "page": 4},
        {"manual_id": "galaga", "page": 5},
    ]
    assert "short" not in sections[0].gist


def test_cluster_sections_drops_short_and_table_of_contents_buckets() -> None:
    toc = "Table of Contents: Section 1 Cabinet, Section 2 Monitor, Section 3 Wiring, Section 4 Parts list."
    snippets = [
        _snip(toc, section=["Front Matter"]),
        _snip(toc + " continued", section=["Front Matter"]),
        _snip(toc + " again", section=["Front Matter"]),
        _snip(_CABINET, section=["Cabinet"]),
        _snip(_CABINET + " More text.", section=["Cabinet"]),
        _snip("Controls are on the front panel of the cabinet.", menu=["Controls"]),
    ]

    sections = cluster_sections(snippets)
    assert [s.title for s in sections] == ["Cabinet"]


def test_cluster_sections_caps_gist_and_section_count() -> None:
    snippets = [_snip(_CABINET * 3, section=["Cabinet"], page=i) for i in range(10)]
    snippets += [_snip(_MONITOR * 2, section=[f"Extra {i}"]) for i in range(10)]

    sections = cluster_sections(snippets, max_sections=3)
    assert len(sections) == 3
    assert sections[0].title == "Cabinet"
    assert len(sections[0].gist) <= 900
    assert [s.title for s in sections[1:]] == ["Extra 0", "Extra 1"]  # docstring: 同大小桶保持首次出现顺序


def test_summary_sentence() -> None:
    assert summary_sentence("Galaga") == "High-level overview of Galaga."
    assert summary_sentence(None) == "High-level overview of the requested system."


# -----------------------------
# service entrypoint
# -----------------------------


class _TopOneReranker:
    """Keeps only the first document, like a narrow cross-encoder window."""

    name = "stub"
    model = "top-one"

    async def score(self, *, query: str, documents: Sequence[str], top_n: int) -> List[Tuple[int, float]]:
        return [(0, 0.9)]


@pytest.mark.asyncio
async def test_rundown_clusters_candidates_beyond_rerank_window(session: AsyncSession) -> None:
    await seed_manual(session, manual_id="galaga", tenant_id="t1", title="Galaga")
    await seed_chunks(
        session,
        manual_id="galaga",
        tenant_id="t1",
        rows=[
            {"content": _CABINET + " The coin door lock is keyed per operator and opens clockwise.",
             "page_start": 3, "section_path": ["Cabinet"]},
            {"content": _MONITOR + " Coin counter wiring passes behind the monitor chassis bracket.",
             "page_start": 20, "section_path": ["Monitor"]},
        ],
    )

    result = await rundown(
        session=session,
        query="coin",
        manual_id="galaga",
        system="Galaga",
        reranker=_TopOneReranker(),
        use_settings_providers=False,
        config={"rerank_top_n": 1},
    )

    assert result["ok"] is True
    assert sorted(s["title"] for s in result["sections"]) == ["Cabinet", "Monitor"]  # docstring: limit 而非 rerank 窗口决定规模
