# src/arcade_manual_rag/backend/api/middleware.py

"""
[职责] API Middleware：注入 trace_id/request_id 与请求耗时统计。
[边界] 不做业务逻辑与异常处理；不重算 pipeline timing。
[上游关系] app.create_app 注册本 middleware。
[下游关系] deps/routers 读取 request.state.trace_id / request_id / timing_ms。
"""

from __future__ import annotations

import time
from typing import Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from arcade_manual_rag.backend.schemas.ids import new_uuid
from arcade_manual_rag.backend.utils.constants import TIMING_TOTAL_MS_KEY

_TRACE_HEADER = "x-trace-id"  # docstring: trace header 约定
_REQUEST_HEADER = "x-request-id"  # docstring: request header 约定


def _resolve_header_id(value: Optional[str]) -> Optional[str]:
    raw = str(value or "").strip()
    return raw or None  # docstring: 空值回退 None


class TraceContextMiddleware(BaseHTTPMiddleware):
    """
    [职责] 注入 trace/request id，并记录 request 总耗时。
    [边界] 不捕获异常；不替代 api/errors.py。
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        start_ts = time.perf_counter()

        trace_id = _resolve_header_id(request.headers.get(_TRACE_HEADER)) or str(new_uuid())
        request_id = _resolve_header_id(request.headers.get(_REQUEST_HEADER)) or str(new_uuid())

        request.state.trace_id = trace_id
        request.state.request_id = request_id

        try:
            response = await call_next(request)
        finally:
            request.state.timing_ms = {TIMING_TOTAL_MS_KEY: (time.perf_counter() - start_ts) * 1000.0}

        response.headers[_TRACE_HEADER] = trace_id  # docstring: 回写 trace_id header
        response.headers[_REQUEST_HEADER] = request_id  # docstring: 回写 request_id header
        return response
