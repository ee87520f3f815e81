# src/arcade_manual_rag/backend/api/errors.py

"""
[职责] API 错误映射：将异常统一转换为扁平 ErrorResponse 与 HTTP status，并注册全局异常处理器。
[边界] 不负责 trace/request 注入（由 middleware 负责）；未知异常只记录类型，不外泄细节。
[上游关系] routers 捕获异常后调用 to_json_response；app.create_app 调用 register_exception_handlers。
[下游关系] 返回 {error, code, detail, trace_id} 供前端消费。
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from arcade_manual_rag.backend.api.schemas_http._common import ErrorResponse
from arcade_manual_rag.backend.schemas.ids import new_uuid
from arcade_manual_rag.backend.utils.errors import BadRequestError, DomainError, to_http_error
from arcade_manual_rag.backend.utils.logging_ import get_logger, log_event

_TRACE_HEADER = "x-trace-id"  # docstring: trace header 约定
_REQUEST_HEADER = "x-request-id"  # docstring: request header 约定

logger = get_logger("api.errors")


def _ensure_trace_id(trace_id: Optional[str]) -> str:
    raw = str(trace_id or "").strip()
    if raw:
        return raw  # docstring: 保留上游 trace_id
    return str(new_uuid())  # docstring: 无 trace_id 时生成兜底


def to_error_response(
    error: Exception,
    *,
    trace_id: Optional[str] = None,
) -> Tuple[int, ErrorResponse]:
    """将异常转换为 (status_code, ErrorResponse)。"""
    resolved_trace_id = _ensure_trace_id(trace_id)
    status_code, payload = to_http_error(error, trace_id=resolved_trace_id)
    return status_code, ErrorResponse.model_validate(payload)


def to_json_response(
    error: Exception,
    *,
    trace_id: Optional[str] = None,
    request_id: Optional[str] = None,
) -> JSONResponse:
    """
    [职责] 将异常转换为 JSONResponse（含 header 透传）。
    [边界] 非 DomainError 记录 error 日志（含异常类型）后降级为 500。
    """
    if not isinstance(error, DomainError):
        log_event(
            logger,
            logging.ERROR,
            "unhandled error",
            context={"trace_id": trace_id, "request_id": request_id},
            fields={"error_type": type(error).__name__},
            exc_info=error,
        )

    status_code, response = to_error_response(error, trace_id=trace_id)
    content: Dict[str, Any] = response.model_dump(exclude_none=True)

    headers: Dict[str, str] = {}
    if trace_id:
        headers[_TRACE_HEADER] = str(trace_id)
    if request_id:
        headers[_REQUEST_HEADER] = str(request_id)

    return JSONResponse(status_code=status_code, content=content, headers=headers)


def _request_ids(request: Request) -> Tuple[Optional[str], Optional[str]]:
    return getattr(request.state, "trace_id", None), getattr(request.state, "request_id", None)


def register_exception_handlers(app: FastAPI) -> None:
    """请求体校验失败 -> 400 bad_request；路由未捕获的 DomainError -> 对应 status。"""

    @app.exception_handler(RequestValidationError)
    async def _on_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        trace_id, request_id = _request_ids(request)
        fields = [".".join(str(p) for p in err.get("loc", ())) for err in exc.errors()]
        error = BadRequestError("invalid request body", detail={"fields": fields})
        return to_json_response(error, trace_id=trace_id, request_id=request_id)

    @app.exception_handler(DomainError)
    async def _on_domain_error(request: Request, exc: DomainError) -> JSONResponse:
        trace_id, request_id = _request_ids(request)
        return to_json_response(exc, trace_id=trace_id, request_id=request_id)
