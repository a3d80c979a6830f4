"""Read side of listing import batches, polled by the dashboard."""
from __future__ import annotations

from typing import Any, Dict, List

from sqlalchemy.orm import Session

from core.exceptions import ImportBatchNotFoundError
from core.logging_config import get_logger
from core.models import ImportBatch, ImportBatchStatus

LOGGER = get_logger(__name__)

FINISHED_STATUSES = (ImportBatchStatus.COMPLETED.value, ImportBatchStatus.FAILED.value)


def batch_to_dict(batch: ImportBatch) -> Dict[str, Any]:
    return {
        "batch_id": batch.id,
        "source_name": batch.source_name,
        "status": batch.status,
        "total_xml_records": batch.total_xml_records,
        "total_properties_created": batch.total_properties_created,
        "total_properties_matched_existing": batch.total_properties_matched_existing,
        "total_errors": batch.total_errors,
        "started_at": batch.started_at.isoformat() if batch.started_at else None,
        "completed_at": batch.completed_at.isoformat() if batch.completed_at else None,
        "finished": batch.status in FINISHED_STATUSES,
    }


class ImportBatchReader:
    """Lookups for import progress; the importer itself lives elsewhere."""

    def __init__(self, session: Session):
        self.session = session

    def get_batch(self, tenant_id: str, batch_id: int) -> ImportBatch:
        batch = self.session.get(ImportBatch, batch_id)
        if batch is None or batch.tenant_id != tenant_id:
            raise ImportBatchNotFoundError(f"Import batch {batch_id} not found")
        return batch

    def get_errors(self, tenant_id: str, batch_id: int) -> List[Any]:
        return list(self.get_batch(tenant_id, batch_id).errors or [])


def get_import_batch_reader(session: Session) -> ImportBatchReader:
    """Get an ImportBatchReader instance."""
    return ImportBatchReader(session)


__all__ = [
    "FINISHED_STATUSES",
    "ImportBatchReader",
    "batch_to_dict",
    "get_import_batch_reader",
]
