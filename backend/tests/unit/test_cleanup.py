"""Unit Tests — stuck-document sweep"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from grantsignal.models.documents import ProcessingStatus
from grantsignal.pipeline.cleanup import StuckDocumentSweeper

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.mark.unit
class TestStuckDocumentSweeper:

    async def test_pending_and_processing_use_their_own_cutoffs(self, mock_document_repo):
        mock_document_repo.fail_stuck.side_effect = [2, 1]

        result = await StuckDocumentSweeper(mock_document_repo).sweep(NOW)

        assert result == {
            "stuckPending":    2,
            "stuckProcessing": 1,
            "totalFixed":      3,
            "timestamp":       NOW.isoformat(),
        }
        pending_call, processing_call = mock_document_repo.fail_stuck.await_args_list
        assert pending_call.args[:2] == (ProcessingStatus.PENDING, NOW - timedelta(hours=2))
        assert processing_call.args[:2] == (ProcessingStatus.PROCESSING, NOW - timedelta(hours=1))
        assert pending_call.args[3] == NOW

    async def test_warnings_explain_the_failure(self, mock_document_repo):
        await StuckDocumentSweeper(mock_document_repo).sweep(NOW)

        pending_warnings = mock_document_repo.fail_stuck.await_args_list[0].args[2]
        processing_warnings = mock_document_repo.fail_stuck.await_args_list[1].args[2]
        assert pending_warnings[0] == "Document stuck in PENDING status for over 2 hours."
        assert processing_warnings[0] == "Document stuck in PROCESSING status for over 1 hour."
        assert pending_warnings[-1] == f"Marked as failed by cleanup job at: {NOW.isoformat()}"

    async def test_nothing_stuck(self, mock_document_repo):
        result = await StuckDocumentSweeper(mock_document_repo).sweep(NOW)
        assert result["totalFixed"] == 0
