# playground/retrieval_gate/test_retrieval_pipeline_gate.py

"""
[职责] retrieval pipeline gate：在真实 SQLite FTS 上跑完整链路（级联 -> rerank -> 打分 -> MMR -> 隔离 -> 组装）。
[边界] embedding / Milvus / rerank 使用 stub；不依赖外部服务。
[上游关系] pipelines/retrieval/pipeline.py + db/fts.py + ManualRepo.titles_for。
[下游关系] services/search_service 与 rundown_service 复用该链路。
"""

from __future__ import annotations

from typing import Any, Dict, List, Sequence, Tuple

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from arcade_manual_rag.backend.pipelines.base.context import PipelineContext
from arcade_manual_rag.backend.pipelines.retrieval.embedding import QueryEmbedder
from arcade_manual_rag.backend.pipelines.retrieval.pipeline import (
    _normalize_config,
    build_candidate_retriever,
    run_retrieval_pipeline,
)
from arcade_manual_rag.backend.utils.constants import DEFAULT_TOP_K, MMR_TARGET_COUNT
from arcade_manual_rag.backend.utils.errors import BadRequestError, ExternalDependencyError
from conftest import seed_chunks, seed_figures, seed_manual


pytestmark = pytest.mark.retrieval_gate


class _DownEmbedder:
    """Embedding provider that is unreachable."""

    provider = "stub"
    model = "down"
    dim = 4

    def snapshot(self) -> Dict[str, Any]:
        return {"provider": self.provider, "model": self.model}

    async def embed_query(self, text: str) -> List[float]:
        raise ExternalDependencyError("embedding service unavailable")


class _MilvusStub:
    """Never reached when embedding fails; search returns nothing otherwise."""

    async def search(self, **kwargs: Any) -> List[List[Dict[str, Any]]]:
        return [[]]


class _ReverseReranker:
    """Scores documents by position (last document ranks first)."""

    name = "stub"
    model = "reverse"

    async def score(self, *, query: str, documents: Sequence[str], top_n: int) -> List[Tuple[int, float]]:
        n = len(documents)
        return [(i, 1.0 - (n - 1 - i) * 0.05) for i in reversed(range(n))][:top_n]


async def _seed_galaga(session: AsyncSession) -> None:
    await seed_manual(session, manual_id="galaga", tenant_id="t1", title="Galaga Service Manual")
    await seed_manual(session, manual_id="pacman", tenant_id="t1", title="Pac-Man Manual")
    await seed_chunks(
        session,
        manual_id="galaga",
        tenant_id="t1",
        rows=[
            {"content": "To open the coin door, turn the lock key clockwise.", "page_start": 4, "section_path": ["Cabinet"]},
            {"content": "The coin door holds two coin mechanisms and a lamp.", "page_start": 4, "section_path": ["Cabinet"]},
            {"content": "Monitor adjustment: brightness and contrast pots.", "page_start": 9, "section_path": ["Monitor"]},
        ],
    )
    await seed_chunks(
        session,
        manual_id="pacman",
        tenant_id="t1",
        rows=[{"content": "Pac-Man coin door uses a different lock.", "page_start": 2}],
    )
    await seed_figures(
        session,
        manual_id="galaga",
        tenant_id="t1",
        rows=[
            {
                "page_number": 4,
                "figure_type": "diagram",
                "caption_text": "Coin door assembly diagram",
                "storage_path": "galaga/p4.png",
            }
        ],
    )


@pytest.mark.asyncio
async def test_embedding_down_falls_back_to_lexical_and_still_reranks(session: AsyncSession) -> None:
    await _seed_galaga(session)
    ctx = PipelineContext.from_session(session)
    retriever = build_candidate_retriever(
        session=session,
        embedder=_DownEmbedder(),  # type: ignore[arg-type]
        milvus_repo=_MilvusStub(),  # type: ignore[arg-type]
        collection="manual_vectors",
    )

    outcome = await run_retrieval_pipeline(
        ctx=ctx,
        query_text="coin door",
        retriever=retriever,
        reranker=_ReverseReranker(),
        manual_id="galaga",
        tenant_id="t1",
    )
    results = outcome.results

    assert results.strategy == "text_search"
    assert results.reranked is True
    assert "vector_search_error" in outcome.errors
    assert outcome.attempts["vector_search"] == 0
    assert results.count > 0
    assert all(c.manual_id == "galaga" for c in results.all_results)  # docstring: pacman 不泄露
    assert all(c.manual_title == "Galaga Service Manual" for c in results.all_results)
    assert {"retrieve", "rerank", "score", "diversity", "assemble"}.issubset(outcome.timing_ms)


@pytest.mark.asyncio
async def test_retrieved_keeps_candidates_beyond_rerank_window(session: AsyncSession) -> None:
    await _seed_galaga(session)
    retriever = build_candidate_retriever(session=session, embedder=None, milvus_repo=None, collection="manual_vectors")

    outcome = await run_retrieval_pipeline(
        ctx=PipelineContext.from_session(session),
        query_text="coin door",
        retriever=retriever,
        reranker=_ReverseReranker(),
        manual_id="galaga",
        tenant_id="t1",
        config={"rerank_top_n": 1},
    )

    assert outcome.results.reranked is True
    assert len(outcome.pool) == 1  # docstring: rerank 窗口截断
    assert len(outcome.retrieved) == 3
    assert all(c.manual_id == "galaga" and c.rerank_score is None for c in outcome.retrieved)


@pytest.mark.asyncio
async def test_visual_query_surfaces_diagram(session: AsyncSession) -> None:
    await _seed_galaga(session)
    ctx = PipelineContext.from_session(session)
    retriever = build_candidate_retriever(session=session, embedder=None, milvus_repo=None, collection="unused")

    outcome = await run_retrieval_pipeline(
        ctx=ctx,
        query_text="show me the coin door diagram",
        retriever=retriever,
        manual_id="galaga",
        tenant_id="t1",
    )
    results = outcome.results

    assert results.visual_intent is True
    assert results.reranked is False
    assert len(results.figure_results) == 1
    fig = results.figure_results[0]
    assert fig.figure_type == "diagram"
    assert fig.score_details["intent_boost"] is True


@pytest.mark.asyncio
async def test_untyped_figure_on_anchor_page_is_surfaced(session: AsyncSession) -> None:
    await seed_manual(session, manual_id="galaga", tenant_id="t1", title="Galaga")
    await seed_chunks(
        session,
        manual_id="galaga",
        tenant_id="t1",
        rows=[
            {"content": f"The coin mechanism rejects slugs; step {i} of the cleaning routine.", "page_start": 12}
            for i in range(12)
        ],
    )
    await seed_figures(
        session,
        manual_id="galaga",
        tenant_id="t1",
        rows=[{"page_number": 12, "figure_type": None, "caption_text": "coin mechanism", "storage_path": "g/p12.png"}],
    )
    ctx = PipelineContext.from_session(session)
    retriever = build_candidate_retriever(session=session, embedder=None, milvus_repo=None, collection="unused")

    outcome = await run_retrieval_pipeline(
        ctx=ctx,
        query_text="show me the diagram for the coin mechanism",
        retriever=retriever,
        manual_id="galaga",
        tenant_id="t1",
    )
    results = outcome.results

    assert results.visual_intent is True
    assert len(results.figure_results) == 1
    fig = results.figure_results[0]
    assert fig.page_start == 12
    assert fig.score_details["anchor_boost"] is True
    assert len(results.text_results) == 10


@pytest.mark.asyncio
async def test_substring_is_last_resort(session: AsyncSession) -> None:
    await seed_manual(session, manual_id="galaga", tenant_id="t1")
    await seed_chunks(
        session,
        manual_id="galaga",
        tenant_id="t1",
        rows=[{"content": "Service lockouts prevent credit after a tilt.", "page_start": 7}],
    )
    ctx = PipelineContext.from_session(session)
    retriever = build_candidate_retriever(session=session, embedder=None, milvus_repo=None, collection="unused")

    outcome = await run_retrieval_pipeline(ctx=ctx, query_text="lockout", retriever=retriever, manual_id="galaga")

    assert outcome.results.strategy == "simple_search"
    assert outcome.attempts == {"text_search": 0, "simple_search": 1}
    assert outcome.results.text_results[0].score == pytest.approx(0.5)
    assert outcome.results.text_results[0].content_type == "text"


@pytest.mark.asyncio
async def test_unknown_manual_returns_empty_with_message(session: AsyncSession) -> None:
    await _seed_galaga(session)
    ctx = PipelineContext.from_session(session)
    retriever = build_candidate_retriever(session=session, embedder=None, milvus_repo=None, collection="unused")

    outcome = await run_retrieval_pipeline(ctx=ctx, query_text="coin door", retriever=retriever, manual_id="missing")

    assert outcome.results.count == 0
    assert outcome.results.strategy == "none"
    assert outcome.results.message == "No results found"


@pytest.mark.asyncio
async def test_invalid_inputs_are_bad_requests(session: AsyncSession) -> None:
    ctx = PipelineContext.from_session(session)
    retriever = build_candidate_retriever(session=session, embedder=None, milvus_repo=None, collection="unused")

    with pytest.raises(BadRequestError):
        await run_retrieval_pipeline(ctx=ctx, query_text="  ", retriever=retriever)
    with pytest.raises(BadRequestError):
        await run_retrieval_pipeline(ctx=ctx, query_text="coin", retriever=retriever, top_k=0)


@pytest.mark.asyncio
async def test_dense_strategy_only_when_embedder_present(session: AsyncSession) -> None:
    embedder = QueryEmbedder.from_provider(provider="hash", model="hash", dim=8)
    with_dense = build_candidate_retriever(session=session, embedder=embedder, milvus_repo=None, collection="c")
    without = build_candidate_retriever(session=session, embedder=None, milvus_repo=None, collection="c")

    assert with_dense.strategy_names == ["vector_search", "text_search", "simple_search"]
    assert without.strategy_names == ["text_search", "simple_search"]


def test_normalize_config_defaults_and_overrides() -> None:
    cfg = _normalize_config(None)
    assert cfg.top_k == DEFAULT_TOP_K
    assert cfg.mmr_target_count == MMR_TARGET_COUNT
    assert cfg.metric_type is None

    over = _normalize_config({"top_k": None, "mmr_lambda": "0.5", "text_cap": "3", "metric_type": " L2 "})
    assert over.top_k == DEFAULT_TOP_K
    assert over.mmr_lambda == pytest.approx(0.5)
    assert over.text_cap == 3
    assert over.metric_type == "L2"


@pytest.mark.asyncio
async def test_hash_embedder_is_deterministic() -> None:
    embedder = QueryEmbedder.from_provider(provider="hash", model="hash", dim=16)
    a = await embedder.embed_query("coin door")
    b = await embedder.embed_query("coin door")
    assert a == b and len(a) == 16
    with pytest.raises(BadRequestError):
        await embedder.embed_query("")
