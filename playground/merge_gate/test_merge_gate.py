# playground/merge_gate/test_merge_gate.py

"""
[职责] merge gate：chunk 去重/丰富、figure 匹配/OCR 丰富/插入、QA 判重与 store 兜底、元数据合并规则、逐条失败计数、校验错误、提交后的向量复制。
[边界] 在临时 SQLite 上运行真实 repo；QA 写入失败用 stub store 注入；Milvus 用内存 stub。
[上游关系] pipelines/merge/*.py + db/repo。
[下游关系] /merge-manual-data 的报告字段依赖这些计数。
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import pytest
from pymilvus.exceptions import MilvusException
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from arcade_manual_rag.backend.db.models import ChunkModel, FigureModel, ManualMetadataModel
from arcade_manual_rag.backend.db.models.qa import GoldenQuestionModel, ManualQuestionModel
from arcade_manual_rag.backend.db.repo import (
    ChunkRepo,
    FigureRepo,
    GoldenQuestionStore,
    ManualQuestionStore,
    QAPair,
    select_store,
)
from arcade_manual_rag.backend.pipelines.base.context import PipelineContext
from arcade_manual_rag.backend.pipelines.merge.chunks import find_duplicate_chunk
from arcade_manual_rag.backend.pipelines.merge.figures import enrichment_changes, figures_match
from arcade_manual_rag.backend.pipelines.merge.metadata import apply_metadata_merge, merged_notes
from arcade_manual_rag.backend.pipelines.merge.pipeline import run_merge_pipeline
from arcade_manual_rag.backend.pipelines.merge.types import MergeReport
from arcade_manual_rag.backend.pipelines.merge.vectors import rebind_entities
from arcade_manual_rag.backend.services.merge_service import merge_manuals
from arcade_manual_rag.backend.utils.errors import BadRequestError, NotFoundError
from conftest import seed_chunks, seed_figures, seed_manual


pytestmark = pytest.mark.merge_gate

TENANT = "tenant-a"
SOURCE = "galaga-v2"
TARGET = "galaga"

_LONG = "Monitor adjustment procedure: set brightness, then contrast, then focus. " * 4


def _chunk(content: str, start: Optional[int] = 1, end: Optional[int] = None) -> ChunkModel:
    return ChunkModel(manual_id=TARGET, tenant_id=TENANT, content=content, page_start=start, page_end=end)


def _figure(**fields) -> FigureModel:
    base = {"topics": [], "keywords": [], "detected_components": {}, "vision_metadata": {}}
    base.update(fields)
    return FigureModel(manual_id=TARGET, tenant_id=TENANT, **base)


def _meta(manual_id: str, **fields) -> ManualMetadataModel:
    base = {"tags": [], "aliases": []}
    base.update(fields)
    return ManualMetadataModel(manual_id=manual_id, **base)


async def _seed_pair(session: AsyncSession) -> None:
    await seed_manual(session, manual_id=TARGET, tenant_id=TENANT, title="Galaga")
    await seed_manual(session, manual_id=SOURCE, tenant_id=TENANT, title="Galaga (rev 2)")


async def _count(session: AsyncSession, model, manual_id: str) -> int:
    stmt = select(func.count()).select_from(model).where(model.manual_id == manual_id)
    return int(await session.scalar(stmt) or 0)


# -----------------------------
# pure matching rules
# -----------------------------


def test_chunk_duplicate_exact_and_prefix_rules() -> None:
    targets = [_chunk("Open the coin door.", 4), _chunk(_LONG + "Version one tail.", 10, 11)]

    assert find_duplicate_chunk(_chunk("  Open the coin door.  ", None), targets) is targets[0]
    assert find_duplicate_chunk(_chunk(_LONG + "Version two tail.", 11, 12), targets) is targets[1]
    assert find_duplicate_chunk(_chunk(_LONG + "Version two tail.", 20, 21), targets) is None  # docstring: 页码不重叠
    assert find_duplicate_chunk(_chunk("Open the coin door quickly.", 4), targets) is None


def test_figures_match_requires_same_page() -> None:
    target = _figure(page_number=4, figure_label="Fig 2", storage_path="s3://bucket/galaga/p4_fig2.png?sig=abc")

    assert figures_match(_figure(page_number=4, figure_label="Fig 2"), target)
    assert figures_match(_figure(page_number=4, storage_path="/mnt/cache/p4_fig2.png"), target)
    assert not figures_match(_figure(page_number=5, figure_label="Fig 2"), target)
    assert not figures_match(_figure(page_number=4, figure_label="Fig 3"), target)


def test_figure_enrichment_fills_blanks_and_unions_keywords() -> None:
    target = _figure(page_number=4, figure_label="Fig 2", caption_text="Harness", keywords=["wiring"],
                     vision_metadata={"model": "v1"})
    source = _figure(page_number=4, figure_label="Fig 2", caption_text="Other caption", ocr_text="J2 harness pinout",
                     keywords=["wiring", "J2"], vision_metadata={"model": "v2", "dpi": 300, "merged_from": "x"})

    changes = enrichment_changes(target, source)

    assert changes["ocr_text"] == "J2 harness pinout"
    assert "caption_text" not in changes  # docstring: 非空字段不覆盖
    assert changes["keywords"] == ["wiring", "J2"]
    assert changes["vision_metadata"] == {"model": "v1", "dpi": 300}
    assert enrichment_changes(target, _figure(page_number=4, figure_label="Fig 2")) == {}


def test_metadata_merge_rules() -> None:
    target = _meta(TARGET, tags=["galaga"], page_count=40, quality_score=0.7, notes="Operator notes.")
    source = _meta(SOURCE, tags=["galaga", "namco"], aliases=["Gallag"], page_count=52, quality_score=0.6,
                   manufacturer="Namco", version="Rev B", notes="Service bulletin 12.")

    assert apply_metadata_merge(target, source, source_manual_id=SOURCE) is True
    assert target.tags == ["galaga", "namco"]
    assert target.aliases == ["Gallag"]
    assert target.page_count == 52
    assert target.quality_score == pytest.approx(0.7)
    assert (target.manufacturer, target.version) == ("Namco", "Rev B")
    assert target.notes == "Operator notes.\n\n[merged from galaga-v2] Service bulletin 12."

    assert apply_metadata_merge(target, source, source_manual_id=SOURCE) is False  # docstring: 重复合并不再拼接


def test_merged_notes_edge_cases() -> None:
    assert merged_notes("keep", None, source_manual_id=SOURCE) == "keep"
    assert merged_notes(None, "new", source_manual_id=SOURCE) == "[merged from galaga-v2] new"


# -----------------------------
# full pipeline on sqlite
# -----------------------------


@pytest.mark.asyncio
async def test_merge_reports_every_category(session: AsyncSession) -> None:
    await _seed_pair(session)
    await seed_chunks(
        session,
        manual_id=TARGET,
        tenant_id=TENANT,
        rows=[
            {"content": "Open the coin door.", "page_start": 4},
            {"content": _LONG + "Version one tail.", "page_start": 10, "page_end": 11},
        ],
    )
    await seed_chunks(
        session,
        manual_id=SOURCE,
        tenant_id=TENANT,
        rows=[
            {"content": "Open the coin door.", "page_start": 4, "section_path": ["Cabinet"], "meta_data": {"lang": "en"}},
            {"content": _LONG + "Version two tail.", "page_start": 11, "page_end": 12},
            {"content": "Replace the 5A fuse on the power supply.", "page_start": 30, "section_path": ["Power"]},
        ],
    )
    await seed_figures(
        session,
        manual_id=TARGET,
        tenant_id=TENANT,
        rows=[{"page_number": 4, "figure_label": "Fig 2", "storage_path": "galaga/p4.png", "caption_text": "Harness"}],
    )
    await seed_figures(
        session,
        manual_id=SOURCE,
        tenant_id=TENANT,
        rows=[
            {"page_number": 4, "figure_label": "Fig 2", "ocr_text": "J2 harness pinout"},
            {"page_number": 30, "figure_label": "Fig 9", "storage_path": "galaga-v2/p30.png", "figure_type": "diagram"},
            {"page_number": 31, "figure_label": "Fig 10"},
        ],
    )
    session.add_all(
        [
            GoldenQuestionModel(manual_id=TARGET, tenant_id=TENANT, question="How do I open the coin door?"),
            GoldenQuestionModel(manual_id=SOURCE, tenant_id=TENANT, question="how do I open the coin door"),
            GoldenQuestionModel(manual_id=SOURCE, tenant_id=TENANT, question="Which fuse protects the PSU?",
                                expected_answer="5A", category="power"),
        ]
    )
    session.add_all([_meta(TARGET, tags=["galaga"]), _meta(SOURCE, tags=["namco"], notes="Rev 2 scan.")])
    await session.flush()

    ctx = PipelineContext.from_session(session)
    report = await run_merge_pipeline(ctx=ctx, source_manual_id=SOURCE, target_manual_id=TARGET, tenant_id=TENANT)

    assert report.merged_chunks == 1
    assert report.skipped_chunk_duplicates == 2
    assert report.enriched_chunks == 1
    assert report.merged_figures == 1
    assert report.updated_figures == 1
    assert report.skipped_figure_duplicates == 0
    assert report.added_qa == 1
    assert report.skipped_qa_duplicates == 1
    assert report.metadata_updated is True
    assert report.failed_items == 0
    assert report.qa_store == "golden_questions"
    assert report.total_items_merged == 4
    assert report.message == "Manual data merged successfully"

    targets = await ctx.chunk_repo.list_by_manual(TARGET, tenant_id=TENANT)
    by_content = {c.content: c for c in targets}
    assert by_content["Open the coin door."].section_path == ["Cabinet"]
    assert by_content["Open the coin door."].meta_data == {"lang": "en"}
    assert by_content["Replace the 5A fuse on the power supply."].merged_from == SOURCE

    figures = {f.figure_label: f for f in await ctx.figure_repo.list_by_manual(TARGET, tenant_id=TENANT)}
    assert figures["Fig 2"].ocr_text == "J2 harness pinout"
    assert figures["Fig 2"].vision_metadata["merged_from"] == SOURCE
    assert figures["Fig 9"].merged_from == SOURCE
    assert "Fig 10" not in figures  # docstring: 无 storage_path 不合入

    meta = await ctx.manual_repo.get_metadata(TARGET)
    assert meta.tags == ["galaga", "namco"]
    assert meta.notes == "[merged from galaga-v2] Rev 2 scan."

    assert await _count(session, ChunkModel, SOURCE) == 3  # docstring: source 数据保留


@pytest.mark.asyncio
async def test_merge_twice_is_idempotent(session: AsyncSession) -> None:
    await _seed_pair(session)
    await seed_chunks(session, manual_id=SOURCE, tenant_id=TENANT, rows=[{"content": "Coin mech cleaning.", "page_start": 2}])
    await seed_figures(
        session,
        manual_id=SOURCE,
        tenant_id=TENANT,
        rows=[{"page_number": 2, "figure_label": "Fig 1", "storage_path": "galaga-v2/p2.png"}],
    )
    session.add(_meta(SOURCE, tags=["namco"], notes="Scan."))
    await session.flush()

    first = await run_merge_pipeline(
        ctx=PipelineContext.from_session(session), source_manual_id=SOURCE, target_manual_id=TARGET, tenant_id=TENANT
    )
    second = await run_merge_pipeline(
        ctx=PipelineContext.from_session(session), source_manual_id=SOURCE, target_manual_id=TARGET, tenant_id=TENANT
    )

    assert (first.merged_chunks, first.merged_figures, first.metadata_updated) == (1, 1, True)
    assert (second.merged_chunks, second.skipped_chunk_duplicates, second.enriched_chunks) == (0, 1, 0)
    assert (second.merged_figures, second.updated_figures, second.skipped_figure_duplicates) == (0, 0, 1)
    assert second.metadata_updated is False
    assert second.total_items_merged == 0
    assert await _count(session, ChunkModel, TARGET) == 1


@pytest.mark.asyncio
async def test_verbatim_source_merges_nothing(session: AsyncSession) -> None:
    await _seed_pair(session)
    rows = [{"content": f"Chunk {i} text.", "page_start": i} for i in range(4)]
    await seed_chunks(session, manual_id=TARGET, tenant_id=TENANT, rows=rows)
    await seed_chunks(session, manual_id=SOURCE, tenant_id=TENANT, rows=rows)

    report = await run_merge_pipeline(
        ctx=PipelineContext.from_session(session), source_manual_id=SOURCE, target_manual_id=TARGET, tenant_id=TENANT
    )

    assert report.merged_chunks == 0
    assert report.skipped_chunk_duplicates == len(rows)


@pytest.mark.asyncio
async def test_qa_falls_back_to_legacy_store(session: AsyncSession) -> None:
    await _seed_pair(session)
    session.add_all(
        [
            ManualQuestionModel(manual_id=SOURCE, tenant_id=TENANT, question_text="Where is the volume pot?",
                                answer_text="On the audio board."),
            ManualQuestionModel(manual_id=SOURCE, tenant_id=TENANT, question_text="Where is the volume pot"),
        ]
    )
    await session.flush()

    ctx = PipelineContext.from_session(session)
    store = await select_store(ctx.qa_stores, manual_id=SOURCE)
    assert store is not None and store.name == "manual_questions"

    report = await run_merge_pipeline(ctx=ctx, source_manual_id=SOURCE, target_manual_id=TARGET, tenant_id=TENANT)

    assert report.qa_store == "manual_questions"
    assert (report.added_qa, report.skipped_qa_duplicates) == (1, 1)  # docstring: source 内部重复也只插入一次
    pairs = await ManualQuestionStore(session).list_pairs(TARGET)
    assert [p.answer for p in pairs] == ["On the audio board."]
    assert await _count(session, GoldenQuestionModel, TARGET) == 0


@pytest.mark.asyncio
async def test_select_store_defaults_to_first_available(session: AsyncSession) -> None:
    store = await select_store([GoldenQuestionStore(session), ManualQuestionStore(session)], manual_id="empty")
    assert store is not None and store.name == "golden_questions"
    assert await select_store([], manual_id="empty") is None


class _FlakyGoldenStore(GoldenQuestionStore):
    """Rejects questions containing "fuse"."""

    async def add_pair(self, *, manual_id: str, tenant_id: str, pair: QAPair) -> None:
        if "fuse" in pair.question:
            raise IntegrityError("INSERT INTO golden_questions", {}, Exception("boom"))
        await super().add_pair(manual_id=manual_id, tenant_id=tenant_id, pair=pair)


@pytest.mark.asyncio
async def test_item_failure_is_counted_and_merge_continues(session: AsyncSession) -> None:
    await _seed_pair(session)
    session.add_all(
        [
            GoldenQuestionModel(manual_id=SOURCE, tenant_id=TENANT, question="Which fuse protects the PSU?"),
            GoldenQuestionModel(manual_id=SOURCE, tenant_id=TENANT, question="How do I enter test mode?"),
        ]
    )
    session.add(_meta(SOURCE, tags=["namco"]))
    await session.flush()

    ctx = PipelineContext.from_session(session, qa_stores=[_FlakyGoldenStore(session)])
    report = await run_merge_pipeline(ctx=ctx, source_manual_id=SOURCE, target_manual_id=TARGET, tenant_id=TENANT)
    await session.commit()

    assert report.failed_items == 1
    assert report.added_qa == 1
    assert report.metadata_updated is True  # docstring: 后续阶段照常执行
    assert report.message == "Manual data merged with 1 failed item(s)"
    assert report.success is True
    questions: List[str] = [p.question for p in await GoldenQuestionStore(session).list_pairs(TARGET)]
    assert questions == ["How do I enter test mode?"]


@pytest.mark.asyncio
async def test_validation_errors(session: AsyncSession) -> None:
    await _seed_pair(session)
    await seed_manual(session, manual_id="foreign", tenant_id="tenant-b")
    ctx = PipelineContext.from_session(session)

    with pytest.raises(BadRequestError):
        await run_merge_pipeline(ctx=ctx, source_manual_id="", target_manual_id=TARGET, tenant_id=TENANT)
    with pytest.raises(BadRequestError):
        await run_merge_pipeline(ctx=ctx, source_manual_id=TARGET, target_manual_id=TARGET, tenant_id=TENANT)
    with pytest.raises(NotFoundError):
        await run_merge_pipeline(ctx=ctx, source_manual_id="missing", target_manual_id=TARGET, tenant_id=TENANT)
    with pytest.raises(NotFoundError):
        await run_merge_pipeline(ctx=ctx, source_manual_id="foreign", target_manual_id=TARGET, tenant_id=TENANT)
    with pytest.raises(BadRequestError):
        await run_merge_pipeline(ctx=ctx, source_manual_id=SOURCE, target_manual_id=TARGET, tenant_id=" ")


def test_report_dict_and_total() -> None:
    report = MergeReport(
        source_manual_id=SOURCE,
        target_manual_id=TARGET,
        merged_chunks=2,
        merged_figures=1,
        updated_figures=3,
        added_qa=4,
        skipped_chunk_duplicates=9,
    )
    payload = report.to_dict()
    assert payload["total_items_merged"] == 10
    assert payload["success"] is True
    assert payload["skipped_chunk_duplicates"] == 9
    assert set(payload) >= {"source_manual_id", "target_manual_id", "failed_items", "qa_store", "message"}


# -----------------------------
# vectors copied after commit
# -----------------------------


class _VectorStoreStub:
    """MilvusRepo 替身：按 record_id 返回预置实体，记录 upsert。"""

    def __init__(self, rows: List[Dict[str, Any]], *, fail_upsert: bool = False) -> None:
        self._rows = rows
        self._fail_upsert = fail_upsert
        self.query_exprs: List[str] = []
        self.upserted: List[Dict[str, Any]] = []

    async def query_by_expr(self, *, collection: str, expr: str, **kwargs: Any) -> List[Dict[str, Any]]:
        self.query_exprs.append(expr)
        return [dict(r) for r in self._rows if f'"{r["record_id"]}"' in expr]

    async def upsert_embeddings(self, *, collection: str, entities: List[Dict[str, Any]]) -> None:
        if self._fail_upsert:
            raise MilvusException(message="collection not loaded")
        self.upserted.extend(entities)


def _vector_row(record_id: str, manual_id: str = SOURCE) -> Dict[str, Any]:
    return {
        "vector_id": f"v-{record_id}",
        "embedding": [0.1, 0.2, 0.3],
        "record_id": record_id,
        "content": "payload",
        "content_type": "text",
        "manual_id": manual_id,
        "tenant_id": TENANT,
        "page_start": 30,
        "page_end": 0,
        "figure_type": "",
    }


@pytest.mark.asyncio
async def test_merge_copies_vectors_of_inserted_records(session: AsyncSession) -> None:
    await _seed_pair(session)
    await seed_chunks(session, manual_id=TARGET, tenant_id=TENANT, rows=[{"content": "Open the coin door.", "page_start": 4}])
    src_chunks = await seed_chunks(
        session,
        manual_id=SOURCE,
        tenant_id=TENANT,
        rows=[
            {"content": "Open the coin door.", "page_start": 4},
            {"content": "Replace the 5A fuse on the power supply.", "page_start": 30},
        ],
    )
    src_figures = await seed_figures(
        session,
        manual_id=SOURCE,
        tenant_id=TENANT,
        rows=[{"page_number": 30, "figure_label": "Fig 9", "storage_path": "galaga-v2/p30.png"}],
    )
    await session.commit()
    duplicate, fresh = src_chunks
    store = _VectorStoreStub([_vector_row(duplicate.id), _vector_row(fresh.id), _vector_row(src_figures[0].id)])

    result = await merge_manuals(
        session=session,
        source_manual_id=SOURCE,
        target_manual_id=TARGET,
        tenant_id=TENANT,
        milvus_repo=store,  # type: ignore[arg-type]
        collection="manual_vectors",
    )

    assert result["merged_chunks"] == 1 and result["merged_figures"] == 1
    assert result["merged_vectors"] == 2
    assert duplicate.id not in store.query_exprs[0]  # docstring: 重复块不复制向量

    new_chunk = next(
        c for c in await ChunkRepo(session).list_by_manual(TARGET, tenant_id=TENANT) if c.merged_from == SOURCE
    )
    new_figure = (await FigureRepo(session).list_by_manual(TARGET, tenant_id=TENANT))[0]
    by_record = {e["record_id"]: e for e in store.upserted}
    assert set(by_record) == {new_chunk.id, new_figure.id}
    copied = by_record[new_chunk.id]
    assert copied["manual_id"] == TARGET and copied["tenant_id"] == TENANT
    assert copied["embedding"] == [0.1, 0.2, 0.3]
    assert copied["vector_id"] not in {f"v-{fresh.id}", f"v-{src_figures[0].id}"}


@pytest.mark.asyncio
async def test_vector_copy_failure_keeps_committed_merge(session: AsyncSession) -> None:
    await _seed_pair(session)
    chunks = await seed_chunks(session, manual_id=SOURCE, tenant_id=TENANT, rows=[{"content": "Coin mech cleaning."}])
    await session.commit()

    failing = await merge_manuals(
        session=session,
        source_manual_id=SOURCE,
        target_manual_id=TARGET,
        tenant_id=TENANT,
        milvus_repo=_VectorStoreStub([_vector_row(chunks[0].id)], fail_upsert=True),  # type: ignore[arg-type]
        collection="manual_vectors",
    )

    assert failing["merged_chunks"] == 1
    assert failing["merged_vectors"] == 0
    assert await _count(session, ChunkModel, TARGET) == 1  # docstring: SQL 合并已提交


def test_rebind_entities_points_vectors_at_new_records() -> None:
    rows = [_vector_row("s1"), _vector_row("s1"), _vector_row("s2")]

    out = rebind_entities(rows, [("s1", "n1"), ("s3", "n3")], target_manual_id=TARGET, tenant_id="tenant-b")

    assert [e["record_id"] for e in out] == ["n1", "n1"]  # docstring: 无向量的源记录不产生实体
    assert {e["manual_id"] for e in out} == {TARGET}
    assert {e["tenant_id"] for e in out} == {"tenant-b"}
    assert len({e["vector_id"] for e in out}) == 2
    assert rows[0]["record_id"] == "s1"  # docstring: 源实体不被修改
