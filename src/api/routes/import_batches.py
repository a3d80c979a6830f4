"""Import batch polling routes."""
from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from api.auth_deps import StaffPrincipal, require_tenant_access
from api.deps import get_readonly_db
from domain.import_batches import ImportBatchReader, batch_to_dict

router = APIRouter()


@router.get("/batches/{batch_id}")
async def get_import_batch(
    tenant_id: str,
    batch_id: int,
    staff: StaffPrincipal = Depends(require_tenant_access),
    db: Session = Depends(get_readonly_db),
) -> Dict[str, Any]:
    """Progress of an import; poll until ``finished`` is true."""
    return batch_to_dict(ImportBatchReader(db).get_batch(tenant_id, batch_id))


@router.get("/batches/{batch_id}/errors")
async def get_import_batch_errors(
    tenant_id: str,
    batch_id: int,
    staff: StaffPrincipal = Depends(require_tenant_access),
    db: Session = Depends(get_readonly_db),
) -> Dict[str, Any]:
    errors = ImportBatchReader(db).get_errors(tenant_id, batch_id)
    return {"success": True, "errors": errors, "count": len(errors)}
