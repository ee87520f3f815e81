# src/arcade_manual_rag/backend/pipelines/merge/writes.py

"""
[职责] 单条写入保护：每条 insert/update 在 SAVEPOINT 内执行，失败时回滚该条并计数、记录 PartialWriteFailure。
[边界] 只吸收 SQLAlchemyError；其他异常（编程错误）照常上抛。不提交外层事务。
[上游关系] merge/chunks|figures|qa|metadata 对每条记录调用 guarded_write。
[下游关系] StageCounts.failed 汇总到 MergeReport.failed_items。
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

from sqlalchemy.exc import SQLAlchemyError

from arcade_manual_rag.backend.pipelines.base.context import PipelineContext
from arcade_manual_rag.backend.utils.errors import PartialWriteError
from arcade_manual_rag.backend.utils.logging_ import get_logger, log_event

from .types import StageCounts


logger = get_logger("merge.writes")


async def guarded_write(
    ctx: PipelineContext,
    counts: StageCounts,
    *,
    stage: str,
    record_id: str,
    write: Callable[[], Awaitable[Any]],
) -> bool:
    """返回 True 表示写入成功；False 表示已回滚并记为失败。"""
    try:
        async with ctx.session.begin_nested():
            await write()
    except SQLAlchemyError as exc:
        counts.failed += 1
        counts.failures.append(str(record_id))
        err = PartialWriteError(
            f"{stage}: write failed, item skipped",
            detail={"stage": stage, "record_id": str(record_id)},
            cause=exc,
        )
        log_event(
            logger,
            logging.WARNING,
            err.message,
            context=ctx,
            fields={
                "error_code": err.error_code,
                "stage": stage,
                "record_id": str(record_id),
                "error": type(exc).__name__,
            },
        )
        return False
    return True
