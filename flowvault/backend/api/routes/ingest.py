"""
api/routes/ingest.py

GET /api/ingest/status — processed-file ledger size plus live ingestion counters
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from ...config import settings
from ...metrics import METRICS
from ...storage.repository import FlowRepository
from ..serializers import IngestStatusResponse

router = APIRouter(prefix="/ingest", tags=["ingest"])


def _get_repo() -> FlowRepository:
    from ..main import get_repository
    return get_repository()


@router.get("/status", response_model=IngestStatusResponse)
async def ingest_status(
    repo: FlowRepository = Depends(_get_repo),
) -> IngestStatusResponse:
    last = repo.last_processed_file()
    return IngestStatusResponse(
        enabled=settings.INGEST_ENABLED,
        directory=settings.NFCAPD_DIRECTORY,
        scan_interval_seconds=settings.SCAN_INTERVAL_SECONDS,
        processed_files=repo.processed_file_count(),
        last_processed_file=last["file_name"] if last else None,
        last_processed_at=last["processed_at"] if last else None,
        counters=METRICS.as_dict(),
    )
