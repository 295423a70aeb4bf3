from __future__ import annotations

import logging
from functools import lru_cache
from typing import List, Optional

from arq import ArqRedis, create_pool
from arq.connections import RedisSettings

from notifications.notifier import ArqNotifier
from pipeline.collaborators import DocumentStore, StatementRepository
from pipeline.errors import StatementNotFound
from pipeline.orchestrator import PipelineOrchestrator
from pipeline.text_extractor import is_image_mime, is_pdf_mime, normalize_mime
from repositories.statement_repo_pg import StatementRepositoryPg
from schemas.statement import SourceFile, Statement, Transaction
from settings.config import settings
from storage.s3_client import S3DocumentStore, statement_object_key


logger = logging.getLogger(__name__)

PROCESS_JOB = "process_statement_job"


def statement_job_id(statement_id: str) -> str:
    # One queued run per statement across all workers
    return f"statement:{statement_id}"


def is_supported_mime(mime_type: Optional[str]) -> bool:
    return is_pdf_mime(mime_type) or is_image_mime(mime_type)


class StatementService:
    def __init__(
        self,
        repo: StatementRepository,
        store: DocumentStore,
        orchestrator: PipelineOrchestrator,
        queue: Optional[ArqRedis] = None,
    ) -> None:
        self.repo = repo
        self.store = store
        self.orchestrator = orchestrator
        self._queue = queue

    async def create_statement(
        self,
        content: bytes,
        filename: str,
        mime_type: str,
        account_name: str,
        month: int,
        year: int,
        bank_name: Optional[str] = None,
        currency: Optional[str] = None,
        account_id: Optional[str] = None,
    ) -> Statement:
        """Store the raw bytes and record a pending statement pointing at them."""
        mime = normalize_mime(mime_type)
        statement = Statement(
            account_id=account_id,
            account_name=account_name,
            bank_name=bank_name,
            currency=currency or settings.DEFAULT_CURRENCY,
            month=month,
            year=year,
            source_file=SourceFile(path="", mime_type=mime, filename=filename, size=len(content)),
        )
        path = statement_object_key(statement.id, filename)
        statement.source_file.path = await self.store.put(path, content, mime)
        await self.repo.save(statement)
        logger.info("Created statement %s for %s (%s, %d bytes)", statement.id, account_name, mime, len(content))
        return statement

    async def get_statement(self, statement_id: str) -> Statement:
        statement = await self.repo.get(statement_id)
        if statement is None:
            raise StatementNotFound(statement_id)
        return statement

    async def list_transactions(self, statement_id: str) -> List[Transaction]:
        await self.get_statement(statement_id)
        return await self.repo.list_transactions(statement_id)

    async def process(self, statement_id: str, content: bytes, mime_type: str) -> Statement:
        return await self.orchestrator.process_statement(statement_id, content, mime_type)

    async def retry(self, statement_id: str) -> Statement:
        return await self.orchestrator.retry_statement(statement_id)

    async def enqueue_processing(self, statement_id: str) -> Optional[str]:
        if self._queue is None:
            self._queue = await create_pool(RedisSettings.from_dsn(settings.REDIS_URL or "redis://localhost:6379"))
        job = await self._queue.enqueue_job(PROCESS_JOB, statement_id, _job_id=statement_job_id(statement_id))
        if job is None:
            logger.info("Statement %s already queued", statement_id)
            return None
        return job.job_id


def build_orchestrator(
    repo: Optional[StatementRepository] = None,
    store: Optional[DocumentStore] = None,
    notifier: Optional[ArqNotifier] = None,
) -> PipelineOrchestrator:
    return PipelineOrchestrator(
        repo=repo or StatementRepositoryPg(),
        store=store or S3DocumentStore(),
        notifier=notifier or ArqNotifier(),
    )


@lru_cache(maxsize=1)
def get_statement_service() -> StatementService:
    repo = StatementRepositoryPg()
    store = S3DocumentStore()
    return StatementService(repo=repo, store=store, orchestrator=build_orchestrator(repo=repo, store=store))
