# app/api/v1/project.py
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from app.schemas.project_schema import (
    ColumnSelectionRequest, ProjectColumnsOut, ProjectCreate, ProjectDataOut,
    ProjectMemberInvite, ProjectMemberOut, ProjectOut, ProjectUpdate,
)
from app.core.dependencies import get_project_store
from app.core.domain import ProjectRole
from app.services import project_service
from app.services.column_projection import MIN_VISIBLE_COLUMNS
from app.services.project_store import ProjectStore

router = APIRouter()


@router.get("", response_model=List[ProjectOut])
async def list_projects_endpoint(store: ProjectStore = Depends(get_project_store)):
    """
    Projects the caller can open, newest first, each with the caller's role.
    """
    pairs = await project_service.list_projects_for_caller(store)
    return [ProjectOut.from_record(p, role) for p, role in pairs]


@router.post("", response_model=ProjectOut, status_code=status.HTTP_201_CREATED)
async def create_project_endpoint(
    payload: ProjectCreate,
    store: ProjectStore = Depends(get_project_store),
):
    project = await store.create_project(payload.model_dump())
    return ProjectOut.from_record(project, await store.effective_role(project.id))


@router.get("/{project_id}", response_model=ProjectOut)
async def get_project_endpoint(project_id: int, store: ProjectStore = Depends(get_project_store)):
    project = await store.get_project(project_id)
    return ProjectOut.from_record(project, await store.effective_role(project.id))


@router.put("/{project_id}", response_model=ProjectOut)
async def update_project_endpoint(
    project_id: int,
    payload: ProjectUpdate,
    store: ProjectStore = Depends(get_project_store),
):
    project = await store.update_project(project_id, payload.model_dump(exclude_unset=True))
    return ProjectOut.from_record(project, await store.effective_role(project.id))


@router.delete("/{project_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_project_endpoint(project_id: int, store: ProjectStore = Depends(get_project_store)):
    await store.delete_project(project_id)
    return None


# ---------- Columns ----------

@router.get("/{project_id}/columns", response_model=ProjectColumnsOut)
async def list_project_columns_endpoint(project_id: int, store: ProjectStore = Depends(get_project_store)):
    """
    Every ingested column plus the current selection. Viewers only see the selection.
    """
    project = await store.get_project(project_id)
    role = await store.effective_role(project.id)
    visible = await store.visible_columns(project.id)
    columns = list(project.columns) if role.at_least(ProjectRole.EDITOR) else visible
    return ProjectColumnsOut(
        project_id=project.id,
        columns=columns,
        selected_columns=visible,
        min_selected=MIN_VISIBLE_COLUMNS,
    )


@router.put("/{project_id}/columns/selection", response_model=ProjectColumnsOut)
async def select_project_columns_endpoint(
    project_id: int,
    payload: ColumnSelectionRequest,
    store: ProjectStore = Depends(get_project_store),
):
    project = await store.select_columns(project_id, payload.columns)
    return ProjectColumnsOut(
        project_id=project.id,
        columns=list(project.columns),
        selected_columns=list(project.selected_columns),
        min_selected=MIN_VISIBLE_COLUMNS,
    )


# ---------- Data ----------

@router.get("/{project_id}/data", response_model=ProjectDataOut)
async def get_project_data_endpoint(
    project_id: int,
    limit: Optional[int] = Query(None, ge=1, description="Rows to return; capped by MAX_DATA_PAGE_SIZE"),
    store: ProjectStore = Depends(get_project_store),
):
    page = await project_service.get_project_data(store, project_id, limit)
    return ProjectDataOut(
        project_id=page.project_id,
        role=page.role,
        columns=page.columns,
        rows=page.rows,
        total_rows=page.total_rows,
        limit=page.limit,
    )


# ---------- Members ----------

@router.get("/{project_id}/members", response_model=List[ProjectMemberOut])
async def list_project_members_endpoint(project_id: int, store: ProjectStore = Depends(get_project_store)):
    """
    Users assigned to a project and their roles. Admins only.
    """
    members = await store.project_members(project_id)
    return [ProjectMemberOut.from_record(m) for m in members]


@router.post("/{project_id}/members", response_model=ProjectMemberOut, status_code=status.HTTP_201_CREATED)
async def add_project_member_endpoint(
    project_id: int,
    payload: ProjectMemberInvite,
    store: ProjectStore = Depends(get_project_store),
):
    """
    Assign a registered user to a project by email. Admins only.
    """
    assignment = await store.add_assignment(project_id, payload.email, payload.role)
    return ProjectMemberOut.from_record(assignment)


@router.delete("/{project_id}/members/{assignment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_project_member_endpoint(
    project_id: int,
    assignment_id: int,
    store: ProjectStore = Depends(get_project_store),
):
    await store.remove_assignment(assignment_id, project_id=project_id)
    return None
