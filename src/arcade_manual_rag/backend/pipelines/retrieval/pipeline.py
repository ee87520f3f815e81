# src/arcade_manual_rag/backend/pipelines/retrieval/pipeline.py

"""
[职责] retrieval pipeline：编排 级联检索 -> rerank -> 内容类型调整 -> 视觉意图提升 -> MMR -> 隔离过滤 -> 结果组装。
[边界] 单请求、顺序执行（每阶段完成后才进入下一阶段）；不提交事务；不落库；上游故障只降级不中止。
[上游关系] services/search_service 与 rundown_service 调用；依赖 PipelineContext、QueryEmbedder、MilvusRepo、Reranker。
[下游关系] 返回 RetrievalOutcome（AssembledResults + 各阶段计数/错误/耗时）供 HTTP 层序列化。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from arcade_manual_rag.backend.kb.repo import MilvusRepo
from arcade_manual_rag.backend.pipelines.base.context import PipelineContext
from arcade_manual_rag.backend.utils.constants import (
    ANCHOR_BOOST,
    ANCHOR_TEXT_WINDOW,
    COMBINED_RESULTS_CAP,
    DEFAULT_TOP_K,
    DENSE_MIN_SCORE,
    DENSE_SUFFICIENT_HITS,
    FIGURE_RESULTS_CAP,
    MMR_LAMBDA,
    MMR_TARGET_COUNT,
    RERANK_MAX_CHARS,
    RERANK_TOP_N,
    SUBSTRING_FLAT_SCORE,
    TEXT_FIGURE_PENALTY,
    TEXT_RESULTS_CAP,
    TIMING_TOTAL_KEY,
    VISUAL_FIGURE_BOOST,
    VISUAL_INTENT_BOOST,
)
from arcade_manual_rag.backend.utils.errors import BadRequestError
from arcade_manual_rag.backend.utils.logging_ import get_logger, hash_text, log_event

from . import assemble as assemble_mod
from . import diversity as diversity_mod
from . import isolation as isolation_mod
from . import rerank as rerank_mod
from . import scoring as scoring_mod
from .cascade import CandidateRetriever, RetrievalStrategy
from .embedding import QueryEmbedder
from .keyword import LexicalStrategy
from .substring import SubstringStrategy
from .types import Candidate, RetrievalConstraints
from .vector import DenseStrategy


logger = get_logger("retrieval.pipeline")


@dataclass(frozen=True)
class _RetrievalConfig:
    """Normalized retrieval config (per-request overrides over the tuned constants)."""

    top_k: int
    dense_min_score: float
    dense_sufficient_hits: int
    substring_flat_score: float
    rerank_top_n: int
    rerank_max_chars: int
    text_figure_penalty: float
    visual_figure_boost: float
    anchor_boost: float
    visual_intent_boost: float
    anchor_window: int
    mmr_lambda: float
    mmr_target_count: int
    text_cap: int
    figure_cap: int
    combined_cap: int
    metric_type: Optional[str]


def _normalize_config(config: Optional[Mapping[str, Any]]) -> _RetrievalConfig:
    """
    [职责] 归一化 retrieval config（补齐默认值并转换类型）。
    [边界] 不做业务策略校验；仅处理缺省与类型。
    """
    cfg = dict(config or {})

    def _as_int(key: str, default: int) -> int:
        v = cfg.get(key, default)
        return int(default if v is None else v)

    def _as_float(key: str, default: float) -> float:
        v = cfg.get(key, default)
        return float(default if v is None else v)

    metric = cfg.get("metric_type")
    return _RetrievalConfig(
        top_k=_as_int("top_k", DEFAULT_TOP_K),
        dense_min_score=_as_float("dense_min_score", DENSE_MIN_SCORE),
        dense_sufficient_hits=_as_int("dense_sufficient_hits", DENSE_SUFFICIENT_HITS),
        substring_flat_score=_as_float("substring_flat_score", SUBSTRING_FLAT_SCORE),
        rerank_top_n=_as_int("rerank_top_n", RERANK_TOP_N),
        rerank_max_chars=_as_int("rerank_max_chars", RERANK_MAX_CHARS),
        text_figure_penalty=_as_float("text_figure_penalty", TEXT_FIGURE_PENALTY),
        visual_figure_boost=_as_float("visual_figure_boost", VISUAL_FIGURE_BOOST),
        anchor_boost=_as_float("anchor_boost", ANCHOR_BOOST),
        visual_intent_boost=_as_float("visual_intent_boost", VISUAL_INTENT_BOOST),
        anchor_window=_as_int("anchor_window", ANCHOR_TEXT_WINDOW),
        mmr_lambda=_as_float("mmr_lambda", MMR_LAMBDA),
        mmr_target_count=_as_int("mmr_target_count", MMR_TARGET_COUNT),
        text_cap=_as_int("text_cap", TEXT_RESULTS_CAP),
        figure_cap=_as_int("figure_cap", FIGURE_RESULTS_CAP),
        combined_cap=_as_int("combined_cap", COMBINED_RESULTS_CAP),
        metric_type=str(metric).strip() if metric else None,
    )


@dataclass(frozen=True)
class RetrievalOutcome:
    results: assemble_mod.AssembledResults
    attempts: Dict[str, int] = field(default_factory=dict)  # docstring: 级联各策略命中数
    errors: Dict[str, str] = field(default_factory=dict)  # docstring: 阶段/策略错误摘要
    timing_ms: Dict[str, float] = field(default_factory=dict)
    pool: List[Candidate] = field(default_factory=list)  # docstring: 隔离过滤后的全部打分候选
    retrieved: List[Candidate] = field(default_factory=list)  # docstring: rerank 截断前、隔离过滤后的级联候选（rundown 聚类使用，规模随 top_k）


def build_candidate_retriever(
    *,
    session: AsyncSession,
    embedder: Optional[QueryEmbedder],
    milvus_repo: Optional[MilvusRepo],
    collection: str,
    config: Optional[Mapping[str, Any]] = None,
) -> CandidateRetriever:
    """
    [职责] 装配默认级联：dense -> lexical -> substring。
    [边界] 未提供 embedder 时不装配 dense 策略。
    """
    cfg = _normalize_config(config)
    strategies: List[RetrievalStrategy] = []
    if embedder is not None:
        strategies.append(
            DenseStrategy(
                embedder=embedder,
                milvus_repo=milvus_repo,
                collection=collection,
                min_score=cfg.dense_min_score,
                min_hits=cfg.dense_sufficient_hits,
                metric_type=cfg.metric_type,
            )
        )
    strategies.append(LexicalStrategy(session=session))
    strategies.append(SubstringStrategy(session=session, flat_score=cfg.substring_flat_score))
    return CandidateRetriever(strategies)


async def run_retrieval_pipeline(
    *,
    ctx: PipelineContext,
    query_text: str,
    retriever: CandidateRetriever,
    reranker: Optional[rerank_mod.Reranker] = None,
    manual_id: Optional[str] = None,
    tenant_id: Optional[str] = None,
    top_k: Optional[int] = None,
    config: Optional[Mapping[str, Any]] = None,
) -> RetrievalOutcome:
    """
    [职责] 执行检索全链路并返回组装结果。
    [边界] 空 query -> BadRequestError；manual_id 不存在 -> 空结果 + message；embedding/rerank 故障只降级。
    """
    query = str(query_text or "").strip()
    if not query:
        raise BadRequestError("Query is required")

    cfg = _normalize_config(config)
    constraints = RetrievalConstraints(
        manual_id=str(manual_id).strip() if manual_id else None,
        tenant_id=str(tenant_id).strip() if tenant_id else None,
        top_k=int(top_k) if top_k is not None else cfg.top_k,
    )
    if constraints.top_k <= 0:
        raise BadRequestError("top_k must be > 0", detail={"top_k": constraints.top_k})

    ctx.manual_id = constraints.manual_id or ctx.manual_id
    ctx.tenant_id = constraints.tenant_id or ctx.tenant_id
    errors: Dict[str, str] = {}

    with ctx.timing.stage("retrieve"):
        cascade = await retriever.retrieve(query, constraints, context=ctx)
    errors.update({f"{k}_error": v for k, v in cascade.errors.items()})

    reranked = False
    candidates: List[Candidate] = list(cascade.candidates)
    if candidates:
        with ctx.timing.stage("rerank"):
            outcome = await rerank_mod.rerank(
                query=query,
                candidates=candidates,
                reranker=reranker,
                top_n=cfg.rerank_top_n,
                max_chars=cfg.rerank_max_chars,
                context=ctx,
            )
        candidates = outcome.candidates
        reranked = outcome.reranked
        if outcome.error:
            errors["rerank_error"] = outcome.error

    with ctx.timing.stage("score"):
        candidates = scoring_mod.adjust_content_type(
            candidates,
            text_figure_penalty=cfg.text_figure_penalty,
            visual_figure_boost=cfg.visual_figure_boost,
        )
        visual_intent = scoring_mod.detect_visual_intent(query)
        candidates = scoring_mod.apply_visual_boost(
            candidates,
            visual_intent=visual_intent,
            anchor_boost=cfg.anchor_boost,
            intent_boost=cfg.visual_intent_boost,
            window=cfg.anchor_window,
        )

    with ctx.timing.stage("diversity"):
        selected = diversity_mod.mmr_select(candidates, target_count=cfg.mmr_target_count, lam=cfg.mmr_lambda)

    selected = isolation_mod.enforce_isolation(
        selected,
        manual_id=constraints.manual_id,
        tenant_id=constraints.tenant_id,
        stage="selected",
        context=ctx,
    )
    pool = isolation_mod.enforce_isolation(
        candidates,
        manual_id=constraints.manual_id,
        tenant_id=constraints.tenant_id,
        stage="pool",
        context=ctx,
    )

    retrieved = isolation_mod.enforce_isolation(
        list(cascade.candidates),
        manual_id=constraints.manual_id,
        tenant_id=constraints.tenant_id,
        stage="retrieved",
        context=ctx,
    )

    with ctx.timing.stage("assemble"):
        results = await assemble_mod.assemble_results(
            selected=selected,
            pool=pool,
            visual_intent=visual_intent,
            title_lookup=ctx.manual_repo.titles_for,
            total_candidates=len(cascade.candidates),
            strategy=cascade.strategy,
            reranked=reranked,
            text_cap=cfg.text_cap,
            figure_cap=cfg.figure_cap,
            combined_cap=cfg.combined_cap,
            context=ctx,
        )

    timing = ctx.timing.to_dict(include_total=True, total_key=TIMING_TOTAL_KEY)
    log_event(
        logger,
        logging.INFO,
        "retrieval completed",
        context=ctx,
        fields={
            "query_sha256": hash_text(query),
            "strategy": results.strategy,
            "attempts": dict(cascade.attempts),
            "errors": dict(errors) or None,
            "reranked": reranked,
            "visual_intent": visual_intent,
            "text_results": len(results.text_results),
            "figure_results": len(results.figure_results),
            "total_candidates": results.total_candidates,
            "timing_ms": timing,
        },
    )

    return RetrievalOutcome(
        results=results,
        attempts=dict(cascade.attempts),
        errors=errors,
        timing_ms=timing,
        pool=list(pool),
        retrieved=list(retrieved),
    )
