from __future__ import annotations

import logging
from typing import Any, Dict

from arq import cron, func
from arq.connections import RedisSettings

from db.postgres import close_postgres
from notifications.notifier import ArqNotifier
from pipeline.errors import InvalidTransition, StatementBusy, StatementNotFound
from pipeline.orchestrator import PipelineOrchestrator
from schemas.statement import StatementStatus
from settings.config import settings
from settings.logging_config import configure_logging
from statements.statement_service import build_orchestrator

logger = logging.getLogger(__name__)


async def startup(ctx: Dict[str, Any]) -> None:
    configure_logging()
    # Notifications go back onto the queue this worker already holds
    ctx["orchestrator"] = build_orchestrator(notifier=ArqNotifier(redis=ctx["redis"]))
    logger.info("Statement worker started")


async def shutdown(ctx: Dict[str, Any]) -> None:
    await close_postgres()
    logger.info("Statement worker stopped")


async def process_statement_job(ctx: Dict[str, Any], statement_id: str) -> str:
    orchestrator: PipelineOrchestrator = ctx["orchestrator"]
    try:
        statement = await orchestrator.repo.get(statement_id)
        if statement is None:
            raise StatementNotFound(statement_id)
        if StatementStatus(statement.status) != StatementStatus.PENDING:
            # Already picked up by another run; retries go through the API
            logger.info("Skipping statement %s in status %s", statement_id, statement.status)
            return StatementStatus(statement.status).value
        content = await orchestrator.store.get(statement.source_file.path)
        result = await orchestrator.process_statement(statement.id, content, statement.source_file.mime_type)
    except StatementNotFound:
        logger.warning("Statement %s vanished before processing", statement_id)
        return "missing"
    except (InvalidTransition, StatementBusy) as e:
        # Lost the race to another run of the same statement
        logger.info("Skipping statement %s: %s", statement_id, e)
        return "skipped"
    return StatementStatus(result.status).value


async def send_statement_notification(ctx: Dict[str, Any], payload: Dict[str, Any]) -> str:
    # Delivery channels (push, email) live outside this service
    logger.info(
        "Notify account %s: %s (statement %s, %s transactions, errors=%s)",
        payload.get("account_id") or payload.get("account_name"),
        payload.get("title"),
        payload.get("statement_id"),
        payload.get("transactions_imported"),
        payload.get("errors"),
    )
    return "delivered"


async def sweep_stale_statements(ctx: Dict[str, Any]) -> int:
    orchestrator: PipelineOrchestrator = ctx["orchestrator"]
    failed = await orchestrator.fail_stale_statements()
    if failed:
        logger.warning("Failed %d stale statements: %s", len(failed), ", ".join(failed))
    return len(failed)


class WorkerSettings:
    functions = [
        # keep_result=0 frees the per-statement job id once the run finishes
        func(process_statement_job, keep_result=0, timeout=settings.PIPELINE_TIMEOUT_SECONDS + 60),
        send_statement_notification,
    ]
    redis_settings = RedisSettings.from_dsn(settings.REDIS_URL or "redis://localhost:6379")
    on_startup = startup
    on_shutdown = shutdown
    cron_jobs = [
        cron(sweep_stale_statements, minute={0, 10, 20, 30, 40, 50}),
    ]
