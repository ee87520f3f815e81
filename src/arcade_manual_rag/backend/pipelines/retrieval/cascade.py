# src/arcade_manual_rag/backend/pipelines/retrieval/cascade.py

"""
[职责] Candidate Retriever：按顺序尝试检索策略（dense -> lexical -> substring），首个“足够”的结果即停止。
[边界] 策略串行执行（不并发扇出）；不做 rerank/打分；策略异常按“该策略为空”处理并记录到 errors。
[上游关系] retrieval pipeline 传入 query 与 RetrievalConstraints；策略列表由 service 装配（顺序即优先级）。
[下游关系] 返回 CascadeResult（candidates + strategy 标签 + 各策略命中数/错误），供 rerank 与 debug 输出使用。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol, Sequence, Tuple

from sqlalchemy.exc import SQLAlchemyError

from arcade_manual_rag.backend.utils.constants import STRATEGY_NONE
from arcade_manual_rag.backend.utils.errors import BadRequestError, ExternalDependencyError
from arcade_manual_rag.backend.utils.logging_ import get_logger, log_event

from .types import Candidate, RetrievalConstraints


logger = get_logger("retrieval.cascade")


class RetrievalStrategy(Protocol):
    """
    检索策略协议：name 即对外的 strategy 标签。

    min_hits: 命中数达到该值即停止级联。
    last_resort: 为 True 时，只有此前所有策略都为空才执行。
    """

    name: str
    min_hits: int
    last_resort: bool

    async def retrieve(self, query: str, constraints: RetrievalConstraints) -> List[Candidate]: ...


@dataclass(frozen=True)
class CascadeResult:
    candidates: List[Candidate]
    strategy: str
    attempts: Dict[str, int] = field(default_factory=dict)  # docstring: 策略名 -> 命中数（未执行的策略不出现）
    errors: Dict[str, str] = field(default_factory=dict)  # docstring: 策略名 -> 错误摘要


class CandidateRetriever:
    """有序策略列表；调整顺序或增删策略只需改装配，不改控制流。"""

    def __init__(self, strategies: Sequence[RetrievalStrategy]) -> None:
        if not strategies:
            raise ValueError("at least one retrieval strategy is required")
        self._strategies = list(strategies)

    @property
    def strategy_names(self) -> List[str]:
        return [s.name for s in self._strategies]

    async def retrieve(
        self,
        query: str,
        constraints: RetrievalConstraints,
        *,
        context: Optional[object] = None,
    ) -> CascadeResult:
        """
        [职责] 执行级联。
        [边界] 空 query 为合同错误（BadRequestError）；manual_id 不存在只会得到空结果。
        """
        query_text = str(query or "").strip()
        if not query_text:
            raise BadRequestError("query text is required")

        attempts: Dict[str, int] = {}
        errors: Dict[str, str] = {}
        fallback: Optional[Tuple[str, List[Candidate]]] = None  # docstring: 首个非空但不足的结果

        for strategy in self._strategies:
            if strategy.last_resort and fallback is not None:
                continue

            try:
                hits = await strategy.retrieve(query_text, constraints)
            except (ExternalDependencyError, SQLAlchemyError) as exc:
                errors[strategy.name] = f"{exc.__class__.__name__}: {exc}"
                log_event(
                    logger,
                    logging.WARNING,
                    "retrieval strategy failed",
                    context=context,
                    fields={"strategy": strategy.name, "error": errors[strategy.name]},
                )
                hits = []

            attempts[strategy.name] = len(hits)
            if hits and len(hits) >= strategy.min_hits:
                return CascadeResult(candidates=hits, strategy=strategy.name, attempts=attempts, errors=errors)
            if hits and fallback is None:
                fallback = (strategy.name, hits)

        if fallback is not None:
            name, hits = fallback
            return CascadeResult(candidates=hits, strategy=name, attempts=attempts, errors=errors)
        return CascadeResult(candidates=[], strategy=STRATEGY_NONE, attempts=attempts, errors=errors)
