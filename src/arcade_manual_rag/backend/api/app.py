# src/arcade_manual_rag/backend/api/app.py

"""
[职责] FastAPI 应用工厂：注册 CORS、trace middleware、全局异常处理器与各路由。
[边界] 不创建表（由 scripts/init_db.py 负责）；不持有请求状态。
[上游关系] uvicorn `arcade_manual_rag.backend.api.app:app` 或测试调用 create_app()。
[下游关系] routers/{search,rundown,merge,health}。
"""

from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from arcade_manual_rag.backend.api.errors import register_exception_handlers
from arcade_manual_rag.backend.api.middleware import TraceContextMiddleware
from arcade_manual_rag.backend.api.routers.health import router as health_router
from arcade_manual_rag.backend.api.routers.merge import router as merge_router
from arcade_manual_rag.backend.api.routers.rundown import router as rundown_router
from arcade_manual_rag.backend.api.routers.search import router as search_router
from arcade_manual_rag.backend.utils.logging_ import configure_logging
from arcade_manual_rag.config import settings


CORS_ALLOW_HEADERS = ["authorization", "x-client-info", "apikey", "content-type"]
CORS_ALLOW_METHODS = ["POST", "OPTIONS", "GET"]


def create_app() -> FastAPI:
    configure_logging(level=logging.DEBUG if settings.DEBUG else logging.INFO)

    app = FastAPI(title="arcade-manual-rag", version="0.1.0")
    app.add_middleware(TraceContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=CORS_ALLOW_METHODS,
        allow_headers=CORS_ALLOW_HEADERS,
        expose_headers=["x-trace-id", "x-request-id"],
    )  # docstring: 最外层，预检请求不进入 trace middleware
    register_exception_handlers(app)

    app.include_router(search_router)
    app.include_router(rundown_router)
    app.include_router(merge_router)
    app.include_router(health_router)
    return app


app = create_app()
