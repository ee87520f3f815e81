# playground/fastapi_gate/routers/test_search_router_gate.py

"""
[职责] Search router gate：/search-unified 的成功合同、debug 封装、400 错误体与 CORS 预检。
[边界] 关闭 settings provider（embedder/reranker -> None）；Milvus 依赖覆盖为 None；使用临时 SQLite。
[上游关系] backend/api/app.create_app + routers/search.py + services/search_service.py。
[下游关系] 前端检索面板依赖 textResults/figureResults/allResults 合同。
"""

from __future__ import annotations

from typing import AsyncIterator

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from arcade_manual_rag.backend.api.app import create_app
from arcade_manual_rag.backend.api.deps import get_milvus_repo, get_session
from arcade_manual_rag.backend.services import search_service
from conftest import seed_chunks, seed_figures, seed_manual


pytestmark = pytest.mark.fastapi_gate


@pytest.fixture
def app(session: AsyncSession, monkeypatch: pytest.MonkeyPatch) -> FastAPI:
    async def _override_session() -> AsyncIterator[AsyncSession]:
        yield session

    monkeypatch.setattr(search_service, "build_query_embedder", lambda: None)  # docstring: 不连 embedding 服务
    monkeypatch.setattr(search_service, "build_reranker", lambda: None)  # docstring: 不连 rerank 服务

    application = create_app()
    application.dependency_overrides[get_session] = _override_session
    application.dependency_overrides[get_milvus_repo] = lambda: None
    return application


async def _seed(session: AsyncSession) -> None:
    await seed_manual(session, manual_id="galaga", tenant_id="t1", title="Galaga Service Manual")
    await seed_chunks(
        session,
        manual_id="galaga",
        tenant_id="t1",
        rows=[
            {"content": "To open the coin door, turn the lock key clockwise.", "page_start": 4},
            {"content": "The coin door holds two coin mechanisms.", "page_start": 5},
        ],
    )
    await seed_figures(
        session,
        manual_id="galaga",
        tenant_id="t1",
        rows=[{"page_number": 4, "figure_type": "diagram", "caption_text": "Coin door diagram", "storage_path": "g/p4.png"}],
    )


@pytest.mark.asyncio
async def test_search_unified_returns_partitioned_results(app: FastAPI, session: AsyncSession) -> None:
    await _seed(session)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        resp = await client.post(
            "/search-unified",
            params={"debug": "true"},
            json={"query": "coin door", "manual_id": "galaga", "top_k": 20},
        )

    assert resp.status_code == 200
    data = resp.json()
    assert data["strategy"] == "text_search"
    assert data["reranked"] is False
    assert data["count"] == len(data["allResults"]) > 0
    assert {r["manual_title"] for r in data["textResults"]} == {"Galaga Service Manual"}
    assert [r["figure_type"] for r in data["figureResults"]] == ["diagram"]
    assert {r["content_type"] for r in data["allResults"]} == {"text", "figure"}
    assert data["trace_id"] == resp.headers["x-trace-id"]

    debug = data["debug"]
    assert debug["visual_intent"] is False
    assert debug["attempts"]["text_search"] > 0
    assert {"retrieve", "assemble"} <= set(debug["timing_ms"])


@pytest.mark.asyncio
async def test_search_without_debug_omits_envelope(app: FastAPI, session: AsyncSession) -> None:
    await _seed(session)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        resp = await client.post("/search-unified", json={"query": "coin door"})

    assert resp.status_code == 200
    assert "debug" not in resp.json()


@pytest.mark.asyncio
async def test_search_with_no_hits_reports_message(app: FastAPI, session: AsyncSession) -> None:
    await _seed(session)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        resp = await client.post("/search-unified", json={"query": "joystick", "manual_id": "galaga"})

    assert resp.status_code == 200
    data = resp.json()
    assert data["count"] == 0
    assert data["strategy"] == "none"
    assert data["message"] == "No results found"


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [{}, {"query": "   "}, {"query": "coin", "top_k": 0}])
async def test_search_bad_request_error_shape(app: FastAPI, body) -> None:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        resp = await client.post("/search-unified", json=body)

    assert resp.status_code == 400
    data = resp.json()
    assert data["code"] == "bad_request"
    assert isinstance(data["error"], str) and data["error"]
    assert data["trace_id"] == resp.headers["x-trace-id"]


@pytest.mark.asyncio
async def test_cors_preflight(app: FastAPI) -> None:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        resp = await client.options(
            "/search-unified",
            headers={
                "Origin": "https://kiosk.example.com",
                "Access-Control-Request-Method": "POST",
                "Access-Control-Request-Headers": "authorization, content-type",
            },
        )

    assert resp.status_code == 200
    assert resp.headers["access-control-allow-origin"] == "*"
    assert "POST" in resp.headers["access-control-allow-methods"]
    assert "authorization" in resp.headers["access-control-allow-headers"].lower()
