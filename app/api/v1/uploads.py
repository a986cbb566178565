from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, UploadFile, File, status

from app.core.dependencies import get_project_store
from app.schemas.project_schema import ProjectOut, UploadResult
from app.services.ingestion_service import UploadIngestionService
from app.services.project_store import ProjectStore

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/{project_id}/upload", response_model=UploadResult, status_code=status.HTTP_201_CREATED)
async def upload_project_file(
    project_id: int,
    file: UploadFile = File(...),
    store: ProjectStore = Depends(get_project_store),
):
    """
    Replace a project's columns and rows with the contents of a CSV or Excel file.
    Editors and admins only. Previously selected columns that still exist stay selected.
    """
    try:
        content = await file.read()
    finally:
        await file.close()

    result = await UploadIngestionService(store).ingest(project_id, file.filename, content)
    role = await store.effective_role(result.project.id)
    return UploadResult(
        project=ProjectOut.from_record(result.project, role),
        row_count=result.row_count,
        column_count=len(result.project.columns),
        dropped_columns=result.dropped_columns,
    )
