# app/models/project_model.py
from sqlalchemy import (
    Column, Integer, String, Text, Boolean, DateTime, ForeignKey, Index, UniqueConstraint, Enum, JSON,
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from app.db.base import Base


project_role_enum = Enum('viewer', 'editor', 'admin', name='project_role_enum', native_enum=False)
data_source_enum = Enum('excel', 'csv', 'api', 'database', name='data_source_enum', native_enum=False)
refresh_frequency_enum = Enum('manual', 'daily', 'weekly', 'monthly', name='refresh_frequency_enum', native_enum=False)
ingestion_status_enum = Enum('empty', 'pending', 'complete', name='ingestion_status_enum', native_enum=False)


class Project(Base):
    """
    A named dataset uploaded by an administrator.
    Columns and rows come from the last upload; the curated subset of columns
    is what members get to see.
    """
    __tablename__ = "projects"

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)

    # Basic info
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=False, server_default='')
    category = Column(String(100), nullable=False, server_default='other')
    tags = Column(JSON, nullable=False, default=list)
    is_public = Column(Boolean, nullable=False, default=False)
    data_source = Column(data_source_enum, nullable=False, server_default='excel')
    refresh_frequency = Column(refresh_frequency_enum, nullable=False, server_default='manual')

    # Set to 'pending' while an upload replaces columns and rows
    ingestion_status = Column(ingestion_status_enum, nullable=False, server_default='empty')

    # Ownership
    created_by = Column(Integer, ForeignKey('users.id', ondelete='SET NULL'), nullable=True, index=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    # Relations
    creator = relationship("User", back_populates="projects", lazy="selectin")
    project_columns = relationship(
        "ProjectColumn",
        back_populates="project",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ProjectColumn.position",
    )
    data_rows = relationship("ProjectData", back_populates="project", cascade="all, delete-orphan", passive_deletes=True)
    members = relationship("ProjectUser", back_populates="project", cascade="all, delete-orphan", passive_deletes=True)

    __table_args__ = (
        Index('idx_projects_created_by_created_at', 'created_by', 'created_at'),
    )


class ProjectColumn(Base):
    """
    One column of the last upload. is_selected marks the curated subset and
    selected_position keeps its display order.
    """
    __tablename__ = "project_columns"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(Integer, ForeignKey('projects.id', ondelete='CASCADE'), nullable=False, index=True)
    column_name = Column(String(255), nullable=False)
    position = Column(Integer, nullable=False, default=0)
    is_selected = Column(Boolean, nullable=False, default=False)
    selected_position = Column(Integer, nullable=True)

    project = relationship("Project", back_populates="project_columns")

    __table_args__ = (
        UniqueConstraint('project_id', 'column_name', name='uq_project_columns_project_column'),
    )


class ProjectData(Base):
    """One uploaded row, stored as a column-keyed JSON payload."""
    __tablename__ = "project_data"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(Integer, ForeignKey('projects.id', ondelete='CASCADE'), nullable=False, index=True)
    row_data = Column(JSON, nullable=False)
    created_by = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    project = relationship("Project", back_populates="data_rows")


class ProjectUser(Base):
    """
    Join table granting a user a role on a project.
    email is a snapshot taken when the grant was created.
    """
    __tablename__ = "project_users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(Integer, ForeignKey('projects.id', ondelete='CASCADE'), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    email = Column(String(255), nullable=False)

    # Role: viewer, editor or admin
    role = Column(project_role_enum, nullable=False, server_default='viewer')

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # Relations
    project = relationship("Project", back_populates="members")
    user = relationship("User", back_populates="assignments")

    __table_args__ = (
        Index('idx_project_users_project_id_role', 'project_id', 'role'),
        Index('idx_project_users_user_id', 'user_id'),
    )
