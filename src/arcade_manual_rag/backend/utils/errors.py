# src/arcade_manual_rag/backend/utils/errors.py

"""
[职责] 领域错误合同（error_code/message/detail/cause）与 HTTP 映射提示（http_status/retryable）。
[边界] 不依赖 FastAPI；不记录日志；仅提供错误壳、错误分类与 to_http_error 转换。
[上游关系] services/pipelines 抛出 DomainError 子类（BadRequest/NotFound/Unauthorized/ExternalDependency 等）。
[下游关系] api/errors.py 将异常映射为 {"error": message, "code": ..., "trace_id": ...} 与 HTTP status。
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict, Optional, Tuple


ErrorDetail = Dict[str, Any]  # docstring: 错误细节类型（必须 JSON-safe）

ERROR_CODE_PATTERN_DOT = re.compile(r"^[a-z][a-z0-9]*(?:\.[a-z0-9_]+)+$")  # docstring: area.reason 规范

ERROR_HTTP_STATUS_BY_CODE = {  # docstring: 通用错误码 -> HTTP status
    "bad_request": 400,
    "unauthorized": 401,
    "not_found": 404,
    "partial_write": 500,
    "external_dependency": 503,
    "internal_error": 500,
}

ERROR_RETRYABLE_BY_CODE = {  # docstring: 通用错误码 -> retryable 默认值
    "bad_request": False,
    "unauthorized": False,
    "not_found": False,
    "partial_write": True,
    "external_dependency": True,
    "internal_error": False,
}

STANDARD_ERROR_CODES = frozenset(ERROR_HTTP_STATUS_BY_CODE)  # docstring: HTTP 层通用错误码集合

INTERNAL_ERROR_CODE = "internal_error"  # docstring: 未知异常统一错误码
INTERNAL_ERROR_MESSAGE = "internal error"  # docstring: 未知异常统一消息


def is_valid_error_code(error_code: str) -> bool:
    """
    [职责] 校验错误码：通用错误码或 area.reason 格式。
    [边界] 仅做格式校验，不保证全局唯一。
    """
    if not error_code:
        return False
    if error_code in STANDARD_ERROR_CODES:
        return True
    return bool(ERROR_CODE_PATTERN_DOT.match(error_code))


def ensure_json_safe_detail(detail: ErrorDetail) -> ErrorDetail:
    """
    [职责] 校验 detail 为 dict 且可 JSON 序列化。
    [边界] 不做裁剪或降级；失败直接抛 ValueError 交由调用方处理。
    """
    if not isinstance(detail, dict):
        raise ValueError("detail must be a dict")  # docstring: 强制 dict 结构
    try:
        json.dumps(detail)
    except TypeError as exc:
        raise ValueError("detail must be JSON-serializable") from exc
    return detail


class DomainError(Exception):
    """
    [职责] 领域错误最小合同：error_code/message/detail/cause + http_status/retryable 提示。
    [边界] 只表达语义；不负责日志、告警与 HTTP 输出。
    [上游关系] services/pipelines 抛出；必要时携带 cause 保留异常链。
    [下游关系] api/errors.py 读取字段完成 HTTP 映射。
    """

    default_code = INTERNAL_ERROR_CODE  # docstring: 子类默认错误码
    default_message = INTERNAL_ERROR_MESSAGE  # docstring: 子类默认消息

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        error_code: Optional[str] = None,
        detail: Optional[ErrorDetail] = None,
        cause: Optional[Exception] = None,
        http_status: Optional[int] = None,
        retryable: Optional[bool] = None,
    ) -> None:
        code = error_code or self.default_code
        if not is_valid_error_code(code):
            raise ValueError(f"invalid error_code: {code}")  # docstring: 防止不规范错误码泄露
        normalized_detail = ensure_json_safe_detail(detail or {})

        resolved_message = str(message or self.default_message)
        super().__init__(resolved_message)
        self.error_code = code  # docstring: 稳定错误码
        self.message = resolved_message  # docstring: 用户可读错误信息
        self.detail = normalized_detail  # docstring: JSON-safe 细节
        self.cause = cause  # docstring: 上游异常引用
        self.http_status = (
            http_status if http_status is not None else ERROR_HTTP_STATUS_BY_CODE.get(code, 500)
        )  # docstring: 显式值优先
        self.retryable = (
            retryable if retryable is not None else ERROR_RETRYABLE_BY_CODE.get(code, False)
        )  # docstring: 显式值优先

        if cause is not None:
            self.__cause__ = cause  # docstring: 保留异常链路

    def to_dict(self) -> Dict[str, Any]:
        """输出错误字段（不含 cause / trace_id）。"""  # docstring: api 层再注入 trace_id
        return {
            "code": self.error_code,
            "message": self.message,
            "detail": self.detail,
        }


class BadRequestError(DomainError):
    """InvalidArgument：缺失 query、merge 源/目标 ID 缺失或相同等输入错误（400，不重试）。"""

    default_code = "bad_request"
    default_message = "bad request"


class UnauthorizedError(DomainError):
    """Unauthorized：缺失 bearer token 或 token 无法解析到 tenant profile（401）。"""

    default_code = "unauthorized"
    default_message = "Unauthorized"


class NotFoundError(DomainError):
    """NotFound：引用的 manual 不存在（merge 致命；retrieval 不抛出，返回空结果）。"""

    default_code = "not_found"
    default_message = "not found"


class ExternalDependencyError(DomainError):
    """
    [职责] UpstreamUnavailable：embedding/rerank/向量库等外部依赖故障（503）。
    [边界] 不绑定具体 provider；不泄露密钥或 endpoint。
    [上游关系] embedding client / reranker / Milvus 适配层捕获第三方异常后抛出。
    [下游关系] retrieval cascade 吸收为“策略为空”；rerank 吸收为降级直通；不会中止整个请求。
    """

    default_code = "external_dependency"
    default_message = "external dependency error"


class PartialWriteError(DomainError):
    """PartialWriteFailure：merge 中单条写入失败；由 stage 记录并跳过，不向外抛出。"""

    default_code = "partial_write"
    default_message = "partial write failure"


class InternalError(DomainError):
    """未知异常的内部错误包装（500），不暴露原始堆栈。"""

    default_code = INTERNAL_ERROR_CODE
    default_message = INTERNAL_ERROR_MESSAGE


def as_domain_error(error: Exception) -> DomainError:
    """DomainError 原样返回；其他异常包装为 InternalError（保留 cause，消息不外泄）。"""
    if isinstance(error, DomainError):
        return error
    return InternalError(cause=error)


def to_http_error(
    error: Exception,
    *,
    trace_id: Optional[str] = None,
) -> Tuple[int, Dict[str, Any]]:
    """
    [职责] 将异常转换为 (HTTP status, payload)，payload 形如 {"error": message, "code": ..., "detail": ...}。
    [边界] 不耦合 FastAPI；不记录日志；未知异常统一降级为 internal_error/500。
    [上游关系] api/errors.py 捕获异常后调用。
    [下游关系] routers 返回统一错误体（保持 {error: string} 兼容形态）。
    """
    domain = as_domain_error(error)  # docstring: 未知异常统一为 InternalError，不外泄细节
    payload: Dict[str, Any] = {
        "error": domain.message,
        "code": domain.error_code,
        "detail": dict(domain.detail),
    }
    status_code = domain.http_status

    if trace_id:
        payload["trace_id"] = trace_id  # docstring: API 层注入 trace_id

    return status_code, payload
