# app/services/ingestion_service.py
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Optional

from app.core.config import settings
from app.core.domain import ProjectRecord, ProjectRole
from app.core.errors import MalformedUpload
from app.services import access_scope, upload_parser
from app.services.project_store import ProjectStore

logger = logging.getLogger(__name__)


@dataclass
class IngestionResult:
    project: ProjectRecord
    row_count: int
    dropped_columns: int = 0


class UploadIngestionService:
    """Parse an uploaded file and replace the project's columns and rows with it."""

    def __init__(self, store: ProjectStore, max_bytes: Optional[int] = None):
        self.store = store
        self.max_bytes = max_bytes if max_bytes is not None else settings.MAX_UPLOAD_BYTES

    async def ingest(self, project_id: Any, filename: Optional[str], content: bytes) -> IngestionResult:
        project = await self.store.get_project(project_id)
        caller = self.store.snapshot.caller
        # Check rights before spending time parsing
        access_scope.require_project_role(caller, project, self.store.snapshot.assignments, ProjectRole.EDITOR)

        if len(content) > self.max_bytes:
            raise MalformedUpload(f"File exceeds the {self.max_bytes // (1024 * 1024)} MB upload limit")

        logger.info("Parsing upload %s (%d bytes) for project %s", filename, len(content), project.id)
        parsed = await asyncio.to_thread(upload_parser.parse, content, filename, project.data_source)

        previously_selected = set(project.selected_columns)
        ingested = await self.store.apply_ingestion(project.id, parsed.columns, parsed.rows)
        dropped = len(previously_selected - set(ingested.selected_columns))
        if dropped:
            logger.info("Upload for project %s dropped %d selected columns", project.id, dropped)

        return IngestionResult(project=ingested, row_count=len(parsed.rows), dropped_columns=dropped)
