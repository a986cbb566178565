# app/services/repository.py
"""Repository gateway: CRUD access to users, projects, columns, rows and assignments.

``RepositoryGateway`` is the abstract async boundary the store and the
ingestion pipeline talk to. ``SqlAlchemyGateway`` implements it on top of the
application's SQLAlchemy models, running every blocking call in a worker
thread with a session of its own. No policy lives here: callers decide who may
do what, this layer only reads and writes.
"""
from __future__ import annotations

import abc
import asyncio
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from sqlalchemy import delete, func, select, text, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.domain import (
    AssignmentRecord, ColumnRecord, DataRowRecord, DataSource, IngestionStatus,
    ProjectRecord, ProjectRole, RefreshFrequency, UserRecord, UserRole, normalize_id,
)
from app.core.errors import Conflict, DashboardError, GatewayFailure, NotFound
from app.models.project_model import Project, ProjectColumn, ProjectData, ProjectUser
from app.models.user_model import User

logger = logging.getLogger(__name__)

PROJECT_FIELDS = (
    "name", "description", "category", "tags", "is_public",
    "data_source", "refresh_frequency", "created_by",
)


class RepositoryGateway(abc.ABC):
    """Abstract persistence boundary. Every method may raise ``GatewayFailure``."""

    # ---------- Users ----------

    @abc.abstractmethod
    async def list_users(self, email: Optional[str] = None) -> List[UserRecord]:
        ...

    @abc.abstractmethod
    async def get_user(self, user_id: Any) -> Optional[UserRecord]:
        ...

    @abc.abstractmethod
    async def create_user(self, email: str, password_hash: str, role: UserRole) -> UserRecord:
        ...

    @abc.abstractmethod
    async def delete_user(self, user_id: Any) -> None:
        ...

    # ---------- Projects ----------

    @abc.abstractmethod
    async def list_projects(self, ids: Optional[Sequence[Any]] = None) -> List[ProjectRecord]:
        """Newest first. Column lists are not populated here."""

    @abc.abstractmethod
    async def create_project(self, values: Mapping[str, Any]) -> ProjectRecord:
        ...

    @abc.abstractmethod
    async def update_project(self, project_id: Any, changes: Mapping[str, Any]) -> ProjectRecord:
        ...

    @abc.abstractmethod
    async def delete_project(self, project_id: Any) -> None:
        """Removes the project with its columns, rows and assignments."""

    @abc.abstractmethod
    async def set_ingestion_status(self, project_id: Any, status: IngestionStatus) -> None:
        ...

    # ---------- Columns ----------

    @abc.abstractmethod
    async def list_project_columns(self, project_id: Any) -> List[ColumnRecord]:
        ...

    @abc.abstractmethod
    async def replace_project_columns(
        self, project_id: Any, columns: Sequence[str], selected: Sequence[str] = ()
    ) -> List[ColumnRecord]:
        ...

    @abc.abstractmethod
    async def upsert_column_selection(
        self, project_id: Any, column_name: str, is_selected: bool, selected_position: Optional[int] = None
    ) -> None:
        ...

    async def set_column_selection(self, project_id: Any, columns: Sequence[str], selected: Sequence[str]) -> None:
        """Mark ``selected`` (in display order) and clear every other column.

        The default walks the columns one upsert at a time; implementations
        with transactions should override it to apply the whole selection at once.
        """
        order = {name: index for index, name in enumerate(selected)}
        for column in columns:
            await self.upsert_column_selection(project_id, column, column in order, order.get(column))

    # ---------- Data rows ----------

    @abc.abstractmethod
    async def list_data_rows(self, project_id: Any, limit: int) -> List[DataRowRecord]:
        ...

    @abc.abstractmethod
    async def count_data_rows(self, project_id: Any) -> int:
        ...

    @abc.abstractmethod
    async def replace_data_rows(
        self, project_id: Any, rows: Sequence[Mapping[str, Any]], created_by: Optional[Any] = None
    ) -> int:
        ...

    # ---------- Assignments ----------

    @abc.abstractmethod
    async def list_project_assignments(
        self, project_ids: Optional[Sequence[Any]] = None, user_id: Optional[Any] = None
    ) -> List[AssignmentRecord]:
        ...

    @abc.abstractmethod
    async def create_project_assignment(
        self, project_id: Any, user_id: Any, email: str, role: ProjectRole
    ) -> AssignmentRecord:
        ...

    @abc.abstractmethod
    async def delete_project_assignment(self, assignment_id: Any) -> None:
        ...

    async def ping(self) -> bool:
        return True


# ---------- ORM -> record mapping ----------

def _user_record(user: User) -> UserRecord:
    return UserRecord(
        id=user.id,
        email=user.email,
        role=UserRole(user.role),
        is_active=bool(user.is_active),
        created_at=user.created_at,
    )


def _project_record(project: Project) -> ProjectRecord:
    return ProjectRecord(
        id=project.id,
        name=project.name,
        description=project.description or "",
        created_by=project.created_by,
        is_public=bool(project.is_public),
        data_source=DataSource(project.data_source or DataSource.EXCEL.value),
        category=project.category or "other",
        tags=tuple(project.tags or ()),
        refresh_frequency=RefreshFrequency(project.refresh_frequency or RefreshFrequency.MANUAL.value),
        ingestion_status=IngestionStatus(project.ingestion_status or IngestionStatus.EMPTY.value),
        created_at=project.created_at,
        updated_at=project.updated_at,
    )


def _column_record(column: ProjectColumn) -> ColumnRecord:
    return ColumnRecord(
        column_name=column.column_name,
        position=column.position,
        is_selected=bool(column.is_selected),
        selected_position=column.selected_position,
    )


def _assignment_record(member: ProjectUser) -> AssignmentRecord:
    return AssignmentRecord(
        id=member.id,
        project_id=member.project_id,
        user_id=normalize_id(member.user_id),
        email=member.email,
        role=ProjectRole(member.role),
        created_at=member.created_at,
    )


def _enum_value(value: Any) -> Any:
    return getattr(value, "value", value)


def _as_int(value: Any) -> Optional[int]:
    """Database keys are integers; anything that does not parse cannot match."""
    try:
        return int(normalize_id(value))
    except (TypeError, ValueError):
        return None


class SqlAlchemyGateway(RepositoryGateway):
    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    async def _run(self, operation: str, fn: Callable[[Session], Any]) -> Any:
        return await asyncio.to_thread(self._run_sync, operation, fn)

    def _run_sync(self, operation: str, fn: Callable[[Session], Any]) -> Any:
        db = self._session_factory()
        try:
            result = fn(db)
            db.commit()
            return result
        except DashboardError:
            db.rollback()
            raise
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception("Gateway operation %s failed", operation)
            raise GatewayFailure(operation, cause=exc) from exc
        finally:
            db.close()

    # ---------- Users ----------

    async def list_users(self, email: Optional[str] = None) -> List[UserRecord]:
        def _list(db: Session) -> List[UserRecord]:
            stmt = select(User).order_by(User.created_at.desc(), User.id.desc())
            if email is not None:
                stmt = stmt.where(User.email == email.strip().lower())
            return [_user_record(u) for u in db.scalars(stmt).all()]

        return await self._run("list_users", _list)

    async def get_user(self, user_id: Any) -> Optional[UserRecord]:
        key = _as_int(user_id)
        if key is None:
            return None

        def _get(db: Session) -> Optional[UserRecord]:
            user = db.get(User, key)
            return _user_record(user) if user else None

        return await self._run("get_user", _get)

    async def create_user(self, email: str, password_hash: str, role: UserRole) -> UserRecord:
        def _create(db: Session) -> UserRecord:
            user = User(
                email=email.strip().lower(),
                password_hash=password_hash,
                role=_enum_value(role),
                is_active=True,
            )
            db.add(user)
            try:
                db.flush()
            except IntegrityError:
                raise Conflict("A user with this email already exists")
            db.refresh(user)
            return _user_record(user)

        return await self._run("create_user", _create)

    async def delete_user(self, user_id: Any) -> None:
        key = _as_int(user_id)

        def _delete(db: Session) -> None:
            user = db.get(User, key) if key is not None else None
            if not user:
                raise NotFound("User not found")
            db.execute(delete(ProjectUser).where(ProjectUser.user_id == key))
            db.execute(update(Project).where(Project.created_by == key).values(created_by=None))
            db.delete(user)

        await self._run("delete_user", _delete)

    # ---------- Projects ----------

    async def list_projects(self, ids: Optional[Sequence[Any]] = None) -> List[ProjectRecord]:
        def _list(db: Session) -> List[ProjectRecord]:
            stmt = select(Project).order_by(Project.created_at.desc(), Project.id.desc())
            if ids is not None:
                keys = [k for k in (_as_int(i) for i in ids) if k is not None]
                if not keys:
                    return []
                stmt = stmt.where(Project.id.in_(keys))
            return [_project_record(p) for p in db.scalars(stmt).all()]

        return await self._run("list_projects", _list)

    async def create_project(self, values: Mapping[str, Any]) -> ProjectRecord:
        def _create(db: Session) -> ProjectRecord:
            fields = {k: _enum_value(v) for k, v in values.items() if k in PROJECT_FIELDS}
            if "tags" in fields:
                fields["tags"] = list(fields["tags"] or [])
            if "created_by" in fields:
                fields["created_by"] = _as_int(fields["created_by"])
            project = Project(ingestion_status=IngestionStatus.EMPTY.value, **fields)
            db.add(project)
            db.flush()
            db.refresh(project)
            return _project_record(project)

        return await self._run("create_project", _create)

    async def update_project(self, project_id: Any, changes: Mapping[str, Any]) -> ProjectRecord:
        key = _as_int(project_id)

        def _update(db: Session) -> ProjectRecord:
            project = db.get(Project, key) if key is not None else None
            if not project:
                raise NotFound("Project not found")
            for field, value in changes.items():
                if field not in PROJECT_FIELDS or field == "created_by":
                    continue
                if field == "tags":
                    value = list(value or [])
                setattr(project, field, _enum_value(value))
            db.flush()
            db.refresh(project)
            return _project_record(project)

        return await self._run("update_project", _update)

    async def delete_project(self, project_id: Any) -> None:
        key = _as_int(project_id)

        def _delete(db: Session) -> None:
            project = db.get(Project, key) if key is not None else None
            if not project:
                raise NotFound("Project not found")
            # Explicit deletes so backends without FK enforcement still cascade
            db.execute(delete(ProjectUser).where(ProjectUser.project_id == key))
            db.execute(delete(ProjectColumn).where(ProjectColumn.project_id == key))
            db.execute(delete(ProjectData).where(ProjectData.project_id == key))
            db.delete(project)

        await self._run("delete_project", _delete)

    async def set_ingestion_status(self, project_id: Any, status: IngestionStatus) -> None:
        key = _as_int(project_id)

        def _set(db: Session) -> None:
            project = db.get(Project, key) if key is not None else None
            if not project:
                raise NotFound("Project not found")
            project.ingestion_status = _enum_value(status)

        await self._run("set_ingestion_status", _set)

    # ---------- Columns ----------

    async def list_project_columns(self, project_id: Any) -> List[ColumnRecord]:
        key = _as_int(project_id)

        def _list(db: Session) -> List[ColumnRecord]:
            stmt = (
                select(ProjectColumn)
                .where(ProjectColumn.project_id == key)
                .order_by(ProjectColumn.position, ProjectColumn.id)
            )
            return [_column_record(c) for c in db.scalars(stmt).all()]

        return await self._run("list_project_columns", _list)

    async def replace_project_columns(
        self, project_id: Any, columns: Sequence[str], selected: Sequence[str] = ()
    ) -> List[ColumnRecord]:
        key = _as_int(project_id)
        order = {name: index for index, name in enumerate(selected)}

        def _replace(db: Session) -> List[ColumnRecord]:
            if key is None or db.get(Project, key) is None:
                raise NotFound("Project not found")
            # Delete and insert share one transaction
            db.execute(delete(ProjectColumn).where(ProjectColumn.project_id == key))
            new_columns = [
                ProjectColumn(
                    project_id=key,
                    column_name=name,
                    position=position,
                    is_selected=name in order,
                    selected_position=order.get(name),
                )
                for position, name in enumerate(columns)
            ]
            db.add_all(new_columns)
            db.flush()
            return [_column_record(c) for c in new_columns]

        return await self._run("replace_project_columns", _replace)

    def _upsert_selection(
        self, db: Session, key: int, column_name: str, is_selected: bool, selected_position: Optional[int]
    ) -> None:
        column = db.scalars(
            select(ProjectColumn).where(
                ProjectColumn.project_id == key,
                ProjectColumn.column_name == column_name,
            )
        ).first()
        if column is None:
            next_position = db.scalar(
                select(func.coalesce(func.max(ProjectColumn.position) + 1, 0)).where(ProjectColumn.project_id == key)
            )
            column = ProjectColumn(project_id=key, column_name=column_name, position=next_position)
            db.add(column)
        column.is_selected = is_selected
        column.selected_position = selected_position if is_selected else None

    async def upsert_column_selection(
        self, project_id: Any, column_name: str, is_selected: bool, selected_position: Optional[int] = None
    ) -> None:
        key = _as_int(project_id)

        def _upsert(db: Session) -> None:
            if key is None or db.get(Project, key) is None:
                raise NotFound("Project not found")
            self._upsert_selection(db, key, column_name, is_selected, selected_position)

        await self._run("upsert_column_selection", _upsert)

    async def set_column_selection(self, project_id: Any, columns: Sequence[str], selected: Sequence[str]) -> None:
        key = _as_int(project_id)
        order = {name: index for index, name in enumerate(selected)}

        def _set(db: Session) -> None:
            if key is None or db.get(Project, key) is None:
                raise NotFound("Project not found")
            for column in columns:
                self._upsert_selection(db, key, column, column in order, order.get(column))

        await self._run("set_column_selection", _set)

    # ---------- Data rows ----------

    async def list_data_rows(self, project_id: Any, limit: int) -> List[DataRowRecord]:
        key = _as_int(project_id)

        def _list(db: Session) -> List[DataRowRecord]:
            stmt = (
                select(ProjectData)
                .where(ProjectData.project_id == key)
                .order_by(ProjectData.id)
                .limit(limit)
            )
            return [
                DataRowRecord(project_id=row.project_id, payload=dict(row.row_data or {}), id=row.id)
                for row in db.scalars(stmt).all()
            ]

        return await self._run("list_data_rows", _list)

    async def count_data_rows(self, project_id: Any) -> int:
        key = _as_int(project_id)

        def _count(db: Session) -> int:
            return int(db.scalar(
                select(func.count(ProjectData.id)).where(ProjectData.project_id == key)
            ) or 0)

        return await self._run("count_data_rows", _count)

    async def replace_data_rows(
        self, project_id: Any, rows: Sequence[Mapping[str, Any]], created_by: Optional[Any] = None
    ) -> int:
        key = _as_int(project_id)
        creator = normalize_id(created_by) or None

        def _replace(db: Session) -> int:
            if key is None or db.get(Project, key) is None:
                raise NotFound("Project not found")
            db.execute(delete(ProjectData).where(ProjectData.project_id == key))
            db.add_all([
                ProjectData(project_id=key, row_data=dict(row), created_by=creator)
                for row in rows
            ])
            return len(rows)

        return await self._run("replace_data_rows", _replace)

    # ---------- Assignments ----------

    async def list_project_assignments(
        self, project_ids: Optional[Sequence[Any]] = None, user_id: Optional[Any] = None
    ) -> List[AssignmentRecord]:
        def _list(db: Session) -> List[AssignmentRecord]:
            stmt = select(ProjectUser).order_by(ProjectUser.id)
            if project_ids is not None:
                keys = [k for k in (_as_int(i) for i in project_ids) if k is not None]
                if not keys:
                    return []
                stmt = stmt.where(ProjectUser.project_id.in_(keys))
            if user_id is not None:
                user_key = _as_int(user_id)
                if user_key is None:
                    return []
                stmt = stmt.where(ProjectUser.user_id == user_key)
            return [_assignment_record(m) for m in db.scalars(stmt).all()]

        return await self._run("list_project_assignments", _list)

    async def create_project_assignment(
        self, project_id: Any, user_id: Any, email: str, role: ProjectRole
    ) -> AssignmentRecord:
        project_key = _as_int(project_id)
        user_key = _as_int(user_id)

        def _create(db: Session) -> AssignmentRecord:
            if project_key is None or db.get(Project, project_key) is None:
                raise NotFound("Project not found")
            if user_key is None or db.get(User, user_key) is None:
                raise NotFound("User not found")
            member = ProjectUser(
                project_id=project_key,
                user_id=user_key,
                email=email,
                role=_enum_value(role),
            )
            db.add(member)
            db.flush()
            db.refresh(member)
            return _assignment_record(member)

        return await self._run("create_project_assignment", _create)

    async def delete_project_assignment(self, assignment_id: Any) -> None:
        key = _as_int(assignment_id)

        def _delete(db: Session) -> None:
            member = db.get(ProjectUser, key) if key is not None else None
            if not member:
                raise NotFound("Member not found")
            db.delete(member)

        await self._run("delete_project_assignment", _delete)

    async def ping(self) -> bool:
        def _ping(db: Session) -> bool:
            db.execute(text("SELECT 1"))
            return True

        return await self._run("ping", _ping)
