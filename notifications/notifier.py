from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from arq import ArqRedis, create_pool
from arq.connections import RedisSettings

from schemas.statement import Statement, StatementStatus
from settings.config import settings


logger = logging.getLogger(__name__)

NOTIFICATION_JOB = "send_statement_notification"


def notification_payload(statement: Statement) -> Dict[str, Any]:
    status = StatementStatus(statement.status)
    return {
        "statement_id": statement.id,
        "account_id": statement.account_id,
        "account_name": statement.account_name,
        "status": status.value,
        "transactions_imported": statement.transactions_imported,
        "errors": list(statement.processing_errors),
        "warnings": len(statement.processing_warnings),
        "title": "Statement processed" if status == StatementStatus.COMPLETED else "Statement processing failed",
    }


class ArqNotifier:
    """Enqueues completion notifications on the arq queue; delivery happens in the worker."""

    def __init__(self, redis: Optional[ArqRedis] = None, redis_settings: Optional[RedisSettings] = None) -> None:
        self._redis = redis
        self._redis_settings = redis_settings or RedisSettings.from_dsn(settings.REDIS_URL or "redis://localhost:6379")

    async def _pool(self) -> ArqRedis:
        if self._redis is None:
            self._redis = await create_pool(self._redis_settings)
        return self._redis

    async def enqueue_notification(self, statement: Statement) -> None:
        redis = await self._pool()
        job = await redis.enqueue_job(NOTIFICATION_JOB, notification_payload(statement))
        logger.info("Queued %s for statement %s (job %s)", NOTIFICATION_JOB, statement.id, job.job_id if job else "duplicate")

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.close()
            self._redis = None
