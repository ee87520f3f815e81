# src/arcade_manual_rag/backend/services/search_service.py

"""
[职责] search_service：统一检索入口（/search-unified）的服务层，装配 embedder/Milvus/reranker，执行 retrieval pipeline，输出对外合同 dict。
[边界] 不处理 HTTP 语义；不提交事务（检索只读）；provider 缺失时降级（无 Milvus 则 dense 策略记错跳过，无 rerank key 则不 rerank）。
[上游关系] api/routers/search.py 与 services/rundown_service.py 调用。
[下游关系] retrieval pipeline 产出 RetrievalOutcome；本模块序列化为 textResults/figureResults/allResults。
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from arcade_manual_rag.backend.kb.repo import MilvusRepo
from arcade_manual_rag.backend.pipelines.base.context import PipelineContext
from arcade_manual_rag.backend.pipelines.retrieval.embedding import QueryEmbedder
from arcade_manual_rag.backend.pipelines.retrieval.pipeline import (
    RetrievalOutcome,
    build_candidate_retriever,
    run_retrieval_pipeline,
)
from arcade_manual_rag.backend.pipelines.retrieval.rerank import CohereReranker, Reranker
from arcade_manual_rag.backend.pipelines.retrieval.types import Candidate
from arcade_manual_rag.backend.utils.constants import REQUEST_ID_KEY, TIMING_MS_KEY, TRACE_ID_KEY
from arcade_manual_rag.backend.utils.errors import BadRequestError
from arcade_manual_rag.backend.utils.logging_ import get_logger, log_event
from arcade_manual_rag.config import settings


logger = get_logger("services.search")

DEBUG_KEY = "debug"


def build_query_embedder() -> Optional[QueryEmbedder]:
    """
    [职责] 按 settings 构造 QueryEmbedder。
    [边界] provider 配置错误时返回 None（dense 策略不装配，级联从全文检索开始）并记录 warning。
    """
    try:
        return QueryEmbedder.from_provider(
            provider=settings.EMBED_PROVIDER,
            model=settings.EMBED_MODEL,
            dim=settings.EMBED_DIM,
            embed_config={
                "api_key": settings.OPENAI_API_KEY,
                "api_base": settings.OPENAI_API_BASE,
                "base_url": settings.OLLAMA_BASE_URL,
                "request_timeout": settings.OLLAMA_REQUEST_TIMEOUT_S,
            },
        )
    except (BadRequestError, ValueError) as exc:  # docstring: llama-index 缺少凭据时抛 ValueError
        log_event(
            logger,
            logging.WARNING,
            "embedder not configured, dense search disabled",
            fields={"provider": settings.EMBED_PROVIDER, "error": str(exc)},
        )
        return None


def build_reranker() -> Optional[Reranker]:
    """无 key 或 provider=none 时返回 None（rerank 直通）。"""
    provider = str(settings.RERANK_PROVIDER or "").strip().lower()
    if provider != "cohere" or not settings.COHERE_API_KEY:
        return None
    return CohereReranker(model=settings.RERANK_MODEL, api_key=settings.COHERE_API_KEY)


def serialize_candidate(c: Candidate) -> Dict[str, Any]:
    return {
        "id": c.record_id,
        "content": c.content,
        "content_type": c.content_type,
        "manual_id": c.manual_id,
        "manual_title": c.manual_title or c.manual_id,
        "tenant_id": c.tenant_id,
        "page_start": c.page_start,
        "page_end": c.page_end,
        "figure_type": c.figure_type,
        "score": c.effective_score,
        "base_score": c.base_score,
        "rerank_score": c.rerank_score,
        "source": c.source,
        "score_details": dict(c.score_details),
        "meta": dict(c.meta),
    }


def serialize_outcome(outcome: RetrievalOutcome) -> Dict[str, Any]:
    r = outcome.results
    payload: Dict[str, Any] = {
        "textResults": [serialize_candidate(c) for c in r.text_results],
        "figureResults": [serialize_candidate(c) for c in r.figure_results],
        "allResults": [serialize_candidate(c) for c in r.all_results],
        "count": r.count,
        "total_candidates": r.total_candidates,
        "strategy": r.strategy,
        "reranked": r.reranked,
    }
    if r.message:
        payload["message"] = r.message
    return payload


async def run_search(
    *,
    session: AsyncSession,
    query: str,
    manual_id: Optional[str] = None,
    tenant_id: Optional[str] = None,
    top_k: Optional[int] = None,
    milvus_repo: Optional[MilvusRepo] = None,
    embedder: Optional[QueryEmbedder] = None,
    reranker: Optional[Reranker] = None,
    config: Optional[Mapping[str, Any]] = None,
    trace_id: Optional[str] = None,
    request_id: Optional[str] = None,
    use_settings_providers: bool = True,
) -> Tuple[PipelineContext, RetrievalOutcome]:
    """
    [职责] 执行一次统一检索，返回 (ctx, RetrievalOutcome)（rundown 复用候选与章节路径）。
    [边界] embedder/reranker 未注入且 use_settings_providers=True 时按 settings 构造；测试可注入 stub 并关闭。
    """
    ctx = PipelineContext.from_session(
        session,
        trace_id=trace_id,
        request_id=request_id,
        tenant_id=tenant_id,
        manual_id=manual_id,
    )

    if embedder is None and use_settings_providers:
        embedder = build_query_embedder()
    if reranker is None and use_settings_providers:
        reranker = build_reranker()
    if embedder is not None:
        ctx.with_provider("embed", embedder.snapshot())
    ctx.with_provider("rerank", {"provider": getattr(reranker, "name", None), "enabled": reranker is not None})

    effective_config = {
        "rerank_top_n": settings.RERANK_TOP_N,
        "rerank_max_chars": settings.RERANK_MAX_CHARS,
        **dict(config or {}),
    }  # docstring: per-request 覆盖优先于 settings

    outcome = await run_retrieval_pipeline(
        ctx=ctx,
        query_text=query,
        retriever=build_candidate_retriever(
            session=session,
            embedder=embedder,
            milvus_repo=milvus_repo,
            collection=settings.ARCADE_RAG_MILVUS_COLLECTION,
            config=effective_config,
        ),
        reranker=reranker,
        manual_id=manual_id,
        tenant_id=tenant_id,
        top_k=top_k,
        config=effective_config,
    )
    return ctx, outcome


async def search(
    *,
    session: AsyncSession,
    query: str,
    debug: bool = False,
    **kwargs: Any,
) -> Dict[str, Any]:
    """
    [职责] /search-unified 服务入口：执行检索并序列化为对外合同。
    [边界] debug=True 时附加 timing/策略计数/阶段错误/provider 快照。
    """
    ctx, outcome = await run_search(session=session, query=query, **kwargs)

    payload = serialize_outcome(outcome)
    payload[TRACE_ID_KEY] = str(ctx.trace_id)
    payload[REQUEST_ID_KEY] = str(ctx.request_id)
    if debug:
        payload[DEBUG_KEY] = {
            TIMING_MS_KEY: dict(outcome.timing_ms),
            "attempts": dict(outcome.attempts),
            "errors": dict(outcome.errors),
            "visual_intent": outcome.results.visual_intent,
            "forced_figure": outcome.results.forced_figure,
            "provider_snapshot": dict(ctx.provider_snapshot),
        }
    return payload
