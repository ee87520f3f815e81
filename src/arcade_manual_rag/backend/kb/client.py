# src/arcade_manual_rag/backend/kb/client.py

"""
[职责] MilvusClient：封装 pymilvus 连接与 collection 生命周期（healthcheck / create / index / load / get）。
[边界] 不做检索结果映射（由 kb/repo.py 负责）；不读写 SQL。
[上游关系] config.settings / 环境变量提供 MILVUS_URI 或 MILVUS_HOST+PORT。
[下游关系] MilvusRepo、health 路由、scripts/init_db.py 使用。
"""

from __future__ import annotations

import asyncio
import os
from typing import Any, Dict, Optional

from pymilvus import Collection, connections, utility

from arcade_manual_rag.backend.utils.errors import ExternalDependencyError

from .schema import CollectionSpec, EMBEDDING_FIELD, build_collection_schema


class MilvusClient:
    """Thin async facade over the pymilvus ORM API (blocking calls run in a worker thread)."""

    def __init__(self, *, alias: str = "default", uri: Optional[str] = None, host: Optional[str] = None,
                 port: Optional[str] = None, token: Optional[str] = None) -> None:
        self.alias = alias
        self._uri = uri
        self._host = host
        self._port = port
        self._token = token
        self._collections: Dict[str, Collection] = {}  # docstring: collection 句柄缓存

    @classmethod
    def from_env(cls, *, alias: str = "default", force_reconnect: bool = False) -> "MilvusClient":
        """从环境变量（config 已导出 .env）建立连接。"""
        uri = os.getenv("MILVUS_URI", "").strip() or None
        host = os.getenv("MILVUS_HOST", "").strip() or None
        port = os.getenv("MILVUS_PORT", "").strip() or None
        token = os.getenv("MILVUS_TOKEN", "").strip() or None
        if not uri and not (host and port):
            raise ExternalDependencyError(
                "Milvus is not configured",
                detail={"hint": "set MILVUS_URI or MILVUS_HOST/MILVUS_PORT"},
            )

        client = cls(alias=alias, uri=uri, host=host, port=port, token=token)
        if force_reconnect and connections.has_connection(alias):
            connections.disconnect(alias)
        if not connections.has_connection(alias):
            kwargs: Dict[str, Any] = {"uri": uri} if uri else {"host": host, "port": port}
            if token:
                kwargs["token"] = token
            connections.connect(alias=alias, **kwargs)
        return client

    async def healthcheck(self) -> str:
        """Return the server version; raises when Milvus is unreachable."""
        return await asyncio.to_thread(utility.get_server_version, using=self.alias)

    async def has_collection(self, name: str) -> bool:
        return bool(await asyncio.to_thread(utility.has_collection, name, using=self.alias))

    async def drop_collection(self, name: str) -> None:
        self._collections.pop(name, None)
        await asyncio.to_thread(utility.drop_collection, name, using=self.alias)

    async def create_collection(self, spec: CollectionSpec, *, drop_if_exists: bool = False) -> Collection:
        """幂等建表：已存在且不要求 drop 时直接返回句柄。"""
        exists = await self.has_collection(spec.name)
        if exists and drop_if_exists:
            await self.drop_collection(spec.name)
            exists = False
        if exists:
            return await self.get_collection(spec.name)

        schema = build_collection_schema(spec)
        col = await asyncio.to_thread(Collection, spec.name, schema, using=self.alias)
        self._collections[spec.name] = col
        return col

    async def ensure_index(self, spec: CollectionSpec) -> None:
        col = await self.get_collection(spec.name)
        if col.has_index():
            return
        await asyncio.to_thread(col.create_index, EMBEDDING_FIELD, spec.index_params())

    async def load_collection(self, name: str) -> None:
        col = await self.get_collection(name)
        await asyncio.to_thread(col.load)

    async def get_collection(self, name: str) -> Collection:
        col = self._collections.get(name)
        if col is None:
            col = await asyncio.to_thread(Collection, name, using=self.alias)
            self._collections[name] = col
        return col
