# src/arcade_manual_rag/backend/utils/logging_.py

"""
[职责] 结构化日志：统一 logger 获取、JSON 格式化、trace 字段提取与安全文本 helper。
[边界] 不绑定日志后端；不触碰 root logger；不强制 trace_id 注入。
[上游关系] services/pipelines/api 通过 get_logger/log_event 输出日志。
[下游关系] stdout 收集端按 JSON 字段检索（tenant_id/manual_id/merge_id 等用于审计隔离事件）。
"""

from __future__ import annotations

import hashlib
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from arcade_manual_rag.backend.utils.constants import TRACE_FIELD_KEYS


DEFAULT_LOGGER_NAME = "arcade_manual_rag"  # docstring: 统一 logger 根名称
DEFAULT_LOG_LEVEL = logging.INFO  # docstring: 默认日志级别
DEFAULT_MAX_TEXT_LEN = 160  # docstring: 安全文本预览长度
_HANDLER_NAME = "structured_json"  # docstring: handler 标记，避免重复挂载

_LOG_RECORD_RESERVED = frozenset(
    logging.LogRecord("", 0, "", 0, "", None, None).__dict__.keys() | {"message", "asctime"}
)  # docstring: LogRecord 内置字段（不作为 extra 输出）


class StructuredLogFormatter(logging.Formatter):
    """
    [职责] LogRecord -> 单行 JSON（ts/level/logger/message + extra 字段）。
    [边界] 不识别敏感字段；调用方用 truncate_text/hash_text 处理用户输入。
    """

    def __init__(self, *, ensure_ascii: bool = True) -> None:
        super().__init__()
        self._ensure_ascii = ensure_ascii  # docstring: ASCII 输出便于终端/存储兼容

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key in _LOG_RECORD_RESERVED or value is None:
                continue  # docstring: 仅输出非空 extra
            payload[key] = value

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        if record.stack_info:
            payload["stack_info"] = record.stack_info

        return json.dumps(payload, ensure_ascii=self._ensure_ascii, default=str)


def configure_logging(
    *,
    logger_name: str = DEFAULT_LOGGER_NAME,
    level: int = DEFAULT_LOG_LEVEL,
    ensure_ascii: bool = True,
) -> logging.Logger:
    """
    [职责] 配置项目 base logger（单个 JSON StreamHandler）。
    [边界] 幂等；不修改 root logger；propagate=False。
    [上游关系] 进程入口（create_app）或 get_logger 首次调用。
    [下游关系] 所有 get_logger(name) 子 logger 复用该 handler。
    """
    logger = logging.getLogger(logger_name)
    logger.setLevel(level)

    if not any(getattr(h, "name", "") == _HANDLER_NAME for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.name = _HANDLER_NAME
        handler.setLevel(level)
        handler.setFormatter(StructuredLogFormatter(ensure_ascii=ensure_ascii))
        logger.addHandler(handler)

    logger.propagate = False  # docstring: 避免重复向 root 传播
    return logger


def get_logger(name: Optional[str] = None, *, level: Optional[int] = None) -> logging.Logger:
    """获取挂在项目根 logger 下的子 logger（自动确保 base logger 已配置）。"""
    configure_logging()
    full_name = name or DEFAULT_LOGGER_NAME
    if name and not name.startswith(DEFAULT_LOGGER_NAME):
        full_name = f"{DEFAULT_LOGGER_NAME}.{name}"  # docstring: 统一挂载在项目根 logger 下
    logger = logging.getLogger(full_name)
    if level is not None:
        logger.setLevel(level)
    return logger


def _read_context_value(context: Any, key: str) -> Optional[Any]:
    if isinstance(context, Mapping):
        return context.get(key)
    return getattr(context, key, None)


def build_log_fields(
    *,
    context: Optional[Any] = None,
    extra: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """
    [职责] 合成结构化日志字段：先从 context（PipelineContext/dict）提取 trace 字段，再叠加 extra。
    [边界] 不生成缺失 trace_id；None 值丢弃。
    """
    fields: Dict[str, Any] = {}
    if context is not None:
        for key in TRACE_FIELD_KEYS:
            value = _read_context_value(context, key)
            if value is not None:
                fields[key] = str(value)  # docstring: trace 字段统一为字符串

    for key, value in (extra or {}).items():
        if value is not None:
            fields[key] = value
    return fields


def log_event(
    logger: logging.Logger,
    level: int,
    message: str,
    *,
    context: Optional[Any] = None,
    fields: Optional[Mapping[str, Any]] = None,
    exc_info: Optional[Any] = None,
) -> None:
    """统一结构化日志入口（自动附加 context 中的 trace/tenant/manual 字段）。"""
    extra = build_log_fields(context=context, extra=fields)
    logger.log(level, message, extra=extra, exc_info=exc_info)


def truncate_text(text: Optional[str], *, max_len: int = DEFAULT_MAX_TEXT_LEN) -> Optional[str]:
    """截断长文本，避免把用户 query 或手册原文整段写进日志。"""
    if text is None:
        return None
    s = str(text)
    if len(s) <= max_len:
        return s
    return f"{s[:max_len]}...(truncated)"


def hash_text(text: Optional[str]) -> Optional[str]:
    """
    [职责] 生成 sha256 摘要（日志去重定位；bearer token 查找 profile 时同样使用）。
    [边界] 无盐；不作为密码存储方案。
    """
    if text is None:
        return None
    s = str(text)
    if not s:
        return ""
    return hashlib.sha256(s.encode("utf-8")).hexdigest()
