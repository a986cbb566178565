# app/services/project_service.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
import logging

from app.core.config import settings
from app.core.domain import Caller, ProjectRecord, ProjectRole, Scalar
from app.core.errors import NotFound
from app.services import column_projection
from app.services.project_store import ProjectStore
from app.services.repository import RepositoryGateway

logger = logging.getLogger(__name__)


@dataclass
class ProjectDataPage:
    project_id: Any
    role: ProjectRole
    columns: List[str]
    rows: List[Dict[str, Scalar]] = field(default_factory=list)
    total_rows: int = 0
    limit: int = 0


def clamp_page_size(limit: Optional[int]) -> int:
    """Requested page size bounded by the configured ceiling."""
    if limit is None or limit <= 0:
        limit = settings.DATA_PAGE_SIZE
    return min(limit, settings.MAX_DATA_PAGE_SIZE)


async def list_projects_for_caller(store: ProjectStore) -> List[Tuple[ProjectRecord, ProjectRole]]:
    """Accessible projects paired with the caller's effective role on each."""
    projects = await store.accessible_projects()
    result = []
    for project in projects:
        result.append((project, await store.effective_role(project.id)))
    return result


async def get_project_data(store: ProjectStore, project_id: Any, limit: Optional[int] = None) -> ProjectDataPage:
    """
    Rows of a project restricted to the columns the caller may see.

    Raises MalformedUpload when the stored columns and rows are out of step
    (an upload was interrupted) instead of serving a mismatched table.
    """
    project = await store.get_project(project_id)
    role = await store.effective_role(project.id)
    columns = column_projection.visible_columns_for(project, role)
    page_size = clamp_page_size(limit)

    gateway = store.gateway
    total = await gateway.count_data_rows(project.id)
    column_projection.check_ingestion_consistency(project, total)

    if not columns:
        return ProjectDataPage(project_id=project.id, role=role, columns=[], total_rows=total, limit=page_size)

    records = await gateway.list_data_rows(project.id, page_size)
    rows = column_projection.project_rows((r.payload for r in records), columns)
    return ProjectDataPage(
        project_id=project.id,
        role=role,
        columns=columns,
        rows=rows,
        total_rows=total,
        limit=page_size,
    )


async def list_projects_for_user(gateway: RepositoryGateway, user_id: Any) -> List[Tuple[ProjectRecord, ProjectRole]]:
    """What a given user would see, resolved from that user's stored role."""
    user = await gateway.get_user(user_id)
    if user is None:
        raise NotFound("User not found")
    store = ProjectStore(gateway)
    await store.set_identity(Caller(id=user.id, role=user.role, email=user.email))
    return await list_projects_for_caller(store)
