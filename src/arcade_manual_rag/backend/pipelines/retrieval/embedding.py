# src/arcade_manual_rag/backend/pipelines/retrieval/embedding.py

"""
[职责] Embedding Client：用 LlamaIndex Embedding 抽象把 query 文本转为定长向量。
[边界] 无内部状态（embedder 由 provider/model 构造后只读）；不做缓存、重试与超时（交由 provider SDK）。
[上游关系] services/search_service 根据 settings 构造 QueryEmbedder；测试可传入 hash provider 或 stub。
[下游关系] retrieval/vector.DenseStrategy 调用 embed_query；失败统一抛 ExternalDependencyError，由级联吸收。
"""

from __future__ import annotations

import hashlib
import inspect
from typing import Any, Dict, List, Optional

from llama_index.core.base.embeddings.base import BaseEmbedding

from arcade_manual_rag.backend.utils.errors import BadRequestError, ExternalDependencyError


def _filter_kwargs(fn: Any, kwargs: Dict[str, Any]) -> Dict[str, Any]:
    """仅保留目标构造函数支持的关键字参数。"""
    try:
        sig = inspect.signature(fn)
    except (TypeError, ValueError):
        return {}
    return {k: v for k, v in kwargs.items() if k in sig.parameters and v is not None}


class HashEmbedding(BaseEmbedding):
    """Deterministic sha256-based embedding for offline runs and tests (not semantic)."""

    def __init__(self, *, dim: int, model_name: str = "hash") -> None:
        super().__init__(model_name=model_name)
        self._dim = int(dim)

    def _hash_to_vec(self, text: str) -> List[float]:
        seed = hashlib.sha256(text.encode("utf-8")).digest()
        vals: List[float] = []
        while len(vals) < self._dim:
            for b in seed:
                vals.append((b / 255.0) * 2.0 - 1.0)  # docstring: 映射到 [-1, 1]
                if len(vals) >= self._dim:
                    break
            seed = hashlib.sha256(seed).digest()
        return vals

    def _get_text_embedding(self, text: str) -> List[float]:
        return self._hash_to_vec(text)

    def _get_query_embedding(self, query: str) -> List[float]:
        return self._hash_to_vec(query)

    async def _aget_query_embedding(self, query: str) -> List[float]:
        return self._hash_to_vec(query)

    async def _aget_text_embedding(self, text: str) -> List[float]:
        return self._hash_to_vec(text)


def resolve_embedder(
    *,
    provider: str,
    model: str,
    dim: Optional[int] = None,
    embed_config: Optional[Dict[str, Any]] = None,
) -> BaseEmbedding:
    """
    [职责] 根据 provider/model 构造 LlamaIndex BaseEmbedding。
    [边界] 支持 openai / ollama / hash；未知 provider 视为配置错误。
    """
    provider_key = str(provider or "").strip().lower()
    model_name = str(model or "").strip()
    cfg = dict(embed_config or {})

    if provider_key in {"hash", "mock", "local"}:
        return HashEmbedding(dim=int(dim or 128), model_name=model_name or "hash")

    if provider_key == "openai":
        from llama_index.embeddings.openai import OpenAIEmbedding

        kwargs = {"model": model_name, "model_name": model_name, "dimensions": dim, **cfg}
        return OpenAIEmbedding(**_filter_kwargs(OpenAIEmbedding.__init__, kwargs))

    if provider_key == "ollama":
        from llama_index.embeddings.ollama import OllamaEmbedding

        kwargs = {"model_name": model_name, **cfg}
        return OllamaEmbedding(**_filter_kwargs(OllamaEmbedding.__init__, kwargs))

    raise BadRequestError(f"unsupported embed provider: {provider}", detail={"provider": str(provider)})


class QueryEmbedder:
    """
    [职责] query -> 向量；所有 provider 异常包装为 ExternalDependencyError。
    [边界] 空 query 属于调用方合同错误（BadRequestError）。
    """

    def __init__(self, embedder: BaseEmbedding, *, provider: str, model: str, dim: Optional[int] = None) -> None:
        self._embedder = embedder
        self.provider = provider
        self.model = model
        self.dim = dim

    @classmethod
    def from_provider(
        cls,
        *,
        provider: str,
        model: str,
        dim: Optional[int] = None,
        embed_config: Optional[Dict[str, Any]] = None,
    ) -> "QueryEmbedder":
        embedder = resolve_embedder(provider=provider, model=model, dim=dim, embed_config=embed_config)
        return cls(embedder, provider=provider, model=model, dim=dim)

    def snapshot(self) -> Dict[str, Any]:
        return {"provider": self.provider, "model": self.model, "dim": self.dim}

    async def embed_query(self, text: str) -> List[float]:
        query = str(text or "").strip()
        if not query:
            raise BadRequestError("query text is required")
        try:
            vector = await self._embedder.aget_query_embedding(query)
        except Exception as exc:  # provider SDKs raise heterogeneous error types
            raise ExternalDependencyError(
                "embedding service unavailable",
                detail={"provider": self.provider, "model": self.model},
                cause=exc,
            ) from exc

        vec = [float(v) for v in vector]
        if self.dim is not None and len(vec) != int(self.dim):
            raise ExternalDependencyError(
                "embedding dim mismatch",
                detail={"expected": int(self.dim), "actual": len(vec)},
            )
        return vec
