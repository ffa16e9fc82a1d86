"""
Integration Tests — repositories against a real PostgreSQL
═══════════════════════════════════════════════════════════
Requires the DATABASE_URL database to be reachable (docker-compose up);
the module is skipped otherwise. Tables are created and dropped per test.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.exc import DBAPIError, OperationalError

from grantsignal.core.config import get_settings
from grantsignal.db.repositories import (
    DocumentNotFoundError,
    DocumentRepository,
    NotificationRepository,
)
from grantsignal.db.session import create_engine, create_session_factory, session_scope
from grantsignal.models.documents import Base, Document, Grant, ProcessingStatus
from grantsignal.models.notifications import NotificationPreferences, User

pytestmark = pytest.mark.integration

ORG_A = "org_a"
ORG_B = "org_b"


@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator:
    engine = create_engine(get_settings())
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    except (OSError, OperationalError, DBAPIError) as exc:
        await engine.dispose()
        pytest.skip(f"PostgreSQL not available: {exc}")

    yield create_session_factory(engine)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


async def _seed_document(factory, organization_id: str = ORG_A, **values) -> str:
    async with session_scope(factory) as db:
        grant = Grant(organization_id=organization_id, title="Youth Programs", status="AWARDED")
        db.add(grant)
        await db.flush()
        doc = Document(
            organization_id=organization_id,
            grant_id=grant.id,
            name="award.pdf",
            type="AWARD_LETTER",
            mime_type="application/pdf",
            size=1024,
            s3_key=f"{organization_id}/award.pdf",
            **values,
        )
        db.add(doc)
        await db.flush()
        return doc.id


class TestDocumentRepository:

    async def test_update_after_parse_is_tenant_scoped(self, session_factory):
        doc_id = await _seed_document(session_factory)
        repo = DocumentRepository(session_factory)

        with pytest.raises(DocumentNotFoundError):
            await repo.update_after_parse(
                doc_id, ORG_B,
                extracted_text="x", confidence=90, metadata={}, warnings=None,
                status=ProcessingStatus.COMPLETED, processed_at=datetime.now(timezone.utc),
            )

        summary = await repo.update_after_parse(
            doc_id, ORG_A,
            extracted_text="Award text", confidence=90, metadata={"wordCount": 2}, warnings=None,
            status=ProcessingStatus.COMPLETED, processed_at=datetime.now(timezone.utc),
        )
        assert summary.id == doc_id
        assert summary.size == 1024

        context = await repo.get_context(doc_id, ORG_A)
        assert context.extracted_text == "Award text"
        assert context.grant_status == "AWARDED"

    async def test_merge_metadata_keeps_parse_fields(self, session_factory):
        doc_id = await _seed_document(session_factory, doc_metadata={"wordCount": 10})
        repo = DocumentRepository(session_factory)

        merged = await repo.merge_metadata(doc_id, ORG_A, {"vectorized": True, "chunkCount": 1})

        assert merged == {"wordCount": 10, "vectorized": True, "chunkCount": 1}

    async def test_mark_failed_in_other_org_changes_nothing(self, session_factory):
        doc_id = await _seed_document(session_factory)
        repo = DocumentRepository(session_factory)

        assert await repo.mark_failed(doc_id, ORG_B, "Failed to parse document: x") is False
        assert await repo.mark_failed(doc_id, ORG_A, "Failed to parse document: x") is True

    async def test_fail_stuck_pending(self, session_factory):
        old = datetime.now(timezone.utc) - timedelta(hours=3)
        stuck_id = await _seed_document(session_factory, created_at=old)
        await _seed_document(session_factory)
        repo = DocumentRepository(session_factory)

        now = datetime.now(timezone.utc)
        fixed = await repo.fail_stuck(ProcessingStatus.PENDING, now - timedelta(hours=2), ["stuck"], now)

        assert fixed == 1
        async with session_scope(session_factory) as db:
            doc = await db.get(Document, stuck_id)
            assert doc.status == "FAILED"
            assert doc.parse_warnings == ["stuck"]


class TestNotificationRepository:

    async def test_recipients_without_preferences_are_marked(self, session_factory):
        async with session_scope(session_factory) as db:
            opted_in = User(organization_id=ORG_A, email="in@example.org")
            no_prefs = User(organization_id=ORG_A, email="none@example.org")
            db.add_all([opted_in, no_prefs, User(organization_id=ORG_B, email="other@example.org")])
            await db.flush()
            db.add(NotificationPreferences(
                user_id=opted_in.id, document_processed_enabled=True, email_override="alt@example.org",
            ))

        recipients = {r.email: r for r in await NotificationRepository(session_factory).list_recipients(ORG_A)}

        assert set(recipients) == {"alt@example.org", "none@example.org"}
        assert recipients["alt@example.org"].document_processed_enabled is True
        assert recipients["none@example.org"].document_processed_enabled is None
