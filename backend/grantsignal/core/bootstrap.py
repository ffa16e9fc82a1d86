"""
Process bootstrap — builds every external client from Settings.

Nothing in the pipeline constructs its own clients; they are created here
and passed in. Async clients (SQLAlchemy engine, redis.asyncio, httpx,
AsyncOpenAI) are bound to the event loop they were created on, and each
Celery task runs in its own loop, so a Container is opened and closed
per task:

    async with open_container(settings, publisher) as c:
        result = await c.pipeline().run(event)

The FastAPI app opens one Container for its whole lifespan.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator

import aioboto3
import httpx
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from grantsignal.core.config import Settings, get_settings
from grantsignal.db.repositories import (
    DocumentRepository,
    NotificationRepository,
    WebhookRepository,
)
from grantsignal.db.session import create_engine, create_session_factory

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format=LOG_FORMAT,
    )
    # third-party clients are chatty at DEBUG
    for noisy in ("httpx", "botocore", "aiobotocore", "urllib3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


@dataclass
class Container:
    settings:        Settings
    engine:          AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    redis:           Redis
    http:            httpx.AsyncClient
    publisher:       object           # TaskPublisher (or a test double)

    documents:       DocumentRepository
    notifications:   NotificationRepository
    webhooks:        WebhookRepository

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def pipeline(self):
        from langchain_openai import ChatOpenAI
        from openai import AsyncOpenAI

        from grantsignal.compliance.extractor import CommitmentExtractor
        from grantsignal.pipeline.commitments import CommitmentStage
        from grantsignal.pipeline.notifier import NotificationDispatcher
        from grantsignal.pipeline.orchestrator import DocumentPipeline
        from grantsignal.pipeline.status_updater import StatusUpdater
        from grantsignal.pipeline.steps import RedisJobLock, RedisStepCache
        from grantsignal.pipeline.vectorizer import Vectorizer
        from grantsignal.processing.embeddings import OpenAIEmbedder
        from grantsignal.processing.parser import DocumentParser
        from grantsignal.storage.s3 import S3BlobStore
        from grantsignal.vectorstore.factory import get_vector_store
        from grantsignal.webhooks.emitter import WebhookEmitter

        s = self.settings

        session = aioboto3.Session(
            aws_access_key_id=s.aws_access_key_id or None,
            aws_secret_access_key=s.aws_secret_access_key or None,
            region_name=s.aws_region,
        )
        blob_store = S3BlobStore(session, s.aws_s3_bucket, s.aws_region, timeout_s=s.blob_fetch_timeout)

        vector_store = get_vector_store(s)
        embedder = (
            OpenAIEmbedder(AsyncOpenAI(api_key=s.openai_api_key), model=s.embedding_model)
            if vector_store is not None else None
        )

        extractor = None
        if s.openai_api_key:
            llm = ChatOpenAI(
                model=s.commitment_llm_model,
                api_key=s.openai_api_key,
                temperature=0,
                max_tokens=s.commitment_llm_max_tokens,
            )
            extractor = CommitmentExtractor(llm, self.documents)
        else:
            logger.warning("OPENAI_API_KEY not set; commitment extraction disabled")

        return DocumentPipeline(
            repo=self.documents,
            blob_store=blob_store,
            parser=DocumentParser(),
            status_updater=StatusUpdater(
                self.documents,
                WebhookEmitter(self.webhooks, self.publisher),
                timeout_s=s.db_write_timeout,
            ),
            vectorizer=Vectorizer(
                self.documents, embedder, vector_store, embed_timeout_s=s.embed_timeout,
            ),
            commitments=CommitmentStage(self.documents, extractor, timeout_s=s.extraction_timeout),
            notifier=NotificationDispatcher(self.notifications, self.publisher),
            step_cache=RedisStepCache(self.redis, ttl_seconds=s.step_cache_ttl_seconds),
            job_lock=RedisJobLock(self.redis, ttl_seconds=s.job_lock_ttl_seconds),
            parse_timeout_s=s.parse_timeout,
        )

    # ------------------------------------------------------------------
    # Consumers
    # ------------------------------------------------------------------

    def notifier(self):
        from grantsignal.notifications.consumer import DocumentProcessedNotifier
        from grantsignal.notifications.email import ResendEmailSender

        s = self.settings
        sender = ResendEmailSender(
            self.http,
            api_key=s.resend_api_key,
            from_email=s.email_from,
            api_url=s.resend_api_url,
            timeout_s=s.notify_timeout,
        )
        return DocumentProcessedNotifier(self.notifications, sender, app_url=s.app_url)

    def webhook_deliverer(self):
        from grantsignal.webhooks.delivery import WebhookDeliverer
        return WebhookDeliverer(
            self.webhooks, self.http, self.publisher, timeout_s=self.settings.webhook_timeout,
        )


@asynccontextmanager
async def open_container(
    settings:  Settings | None = None,
    publisher: object | None = None,
) -> AsyncIterator[Container]:
    settings = settings or get_settings()

    if publisher is None:
        from grantsignal.workers.celery_app import celery_app
        from grantsignal.workers.publisher import TaskPublisher
        publisher = TaskPublisher(celery_app)

    engine = create_engine(settings)
    factory = create_session_factory(engine)
    redis = Redis.from_url(settings.redis_url, decode_responses=True)
    http = httpx.AsyncClient(follow_redirects=False)

    try:
        yield Container(
            settings=settings,
            engine=engine,
            session_factory=factory,
            redis=redis,
            http=http,
            publisher=publisher,
            documents=DocumentRepository(factory),
            notifications=NotificationRepository(factory),
            webhooks=WebhookRepository(factory),
        )
    finally:
        await http.aclose()
        await redis.aclose()
        await engine.dispose()
