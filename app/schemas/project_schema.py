# app/schemas/project_schema.py
from __future__ import annotations
from typing import Dict, List, Optional, Union
from datetime import datetime
from pydantic import BaseModel, EmailStr, Field

from app.core.domain import (
    AssignmentRecord, DataSource, IngestionStatus, ProjectRecord, ProjectRole, RefreshFrequency,
)

CellValue = Union[bool, int, float, str, None]


class ProjectCreate(BaseModel):
    """Schema for creating a new project"""
    name: str = Field(..., min_length=1, max_length=255, description="Project name")
    description: Optional[str] = Field("", description="Project description")
    category: str = Field("other", max_length=100)
    tags: List[str] = Field(default_factory=list)
    is_public: bool = False
    data_source: DataSource = Field(DataSource.EXCEL, description="excel, csv, api or database")
    refresh_frequency: RefreshFrequency = RefreshFrequency.MANUAL


class ProjectUpdate(BaseModel):
    """Schema for updating a project; omitted fields stay as they are"""
    name: Optional[str] = Field(None, min_length=1, max_length=255, description="Project name")
    description: Optional[str] = None
    category: Optional[str] = Field(None, max_length=100)
    tags: Optional[List[str]] = None
    is_public: Optional[bool] = None
    data_source: Optional[DataSource] = None
    refresh_frequency: Optional[RefreshFrequency] = None


class ProjectOut(BaseModel):
    """Schema for project response"""
    id: int
    name: str
    description: Optional[str] = None
    category: str = "other"
    tags: List[str] = Field(default_factory=list)
    is_public: bool = False
    data_source: DataSource
    refresh_frequency: RefreshFrequency
    ingestion_status: IngestionStatus
    created_by: Optional[int] = None
    role: ProjectRole = Field(..., description="Caller's effective role in the project (admin, editor, viewer)")
    column_count: int = 0
    selected_columns: List[str] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, project: ProjectRecord, role: ProjectRole) -> "ProjectOut":
        return cls(
            id=project.id,
            name=project.name,
            description=project.description,
            category=project.category,
            tags=list(project.tags),
            is_public=project.is_public,
            data_source=project.data_source,
            refresh_frequency=project.refresh_frequency,
            ingestion_status=project.ingestion_status,
            created_by=project.created_by,
            role=role,
            column_count=len(project.columns),
            selected_columns=list(project.selected_columns),
            created_at=project.created_at,
            updated_at=project.updated_at,
        )


class ColumnSelectionRequest(BaseModel):
    """Columns to show to viewers, in display order"""
    columns: List[str] = Field(..., description="Column names; more than three are required")


class ProjectColumnsOut(BaseModel):
    project_id: int
    columns: List[str]
    selected_columns: List[str]
    min_selected: int = Field(..., description="Selections must contain more than this many columns")


class ProjectDataOut(BaseModel):
    project_id: int
    role: ProjectRole
    columns: List[str]
    rows: List[Dict[str, CellValue]]
    total_rows: int
    limit: int


class ProjectMemberInvite(BaseModel):
    """Grant a registered user a role on a project"""
    email: EmailStr
    role: ProjectRole = ProjectRole.VIEWER


class ProjectMemberOut(BaseModel):
    id: int
    project_id: int
    user_id: str
    email: str
    role: ProjectRole
    created_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, assignment: AssignmentRecord) -> "ProjectMemberOut":
        return cls(
            id=assignment.id,
            project_id=assignment.project_id,
            user_id=assignment.user_id,
            email=assignment.email,
            role=assignment.role,
            created_at=assignment.created_at,
        )


class UploadResult(BaseModel):
    project: ProjectOut
    row_count: int
    column_count: int
    dropped_columns: int = Field(0, description="Previously selected columns missing from the new file")
    message: str = "File uploaded successfully"

