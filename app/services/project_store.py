# app/services/project_store.py
"""Per-session cache of projects and project assignments.

The store owns one immutable ``StoreSnapshot`` at a time. Every mutation
builds a new snapshot and swaps it in whole, so a reader never observes a
half-applied change. Derived views (accessible projects, effective role,
visible columns) are computed from the current snapshot on each call and are
never cached.

Lifecycle::

    uninitialized -> loading -> ready -> loading (refetch) -> ready
    ready -> stale (optimistic local change) -> ready (confirmed)
                                             -> previous snapshot (rejected)

Mutations run one at a time; a rejected one restores the snapshot it started
from, which by then holds every earlier confirmed change.

Changing identity bumps a generation counter. A fetch or mutation that
finishes under an older generation is dropped instead of being written into
the new caller's cache.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Awaitable, Callable, List, Mapping, Optional, Sequence, Tuple

from app.core.domain import (
    AssignmentRecord, Caller, ColumnRecord, DataSource, IngestionStatus, ProjectRecord, ProjectRole,
    RefreshFrequency, normalize_id, same_id,
)
from app.core.errors import DashboardError, GatewayFailure, NotAuthenticated, NotAuthorized, NotFound
from app.services import access_scope, column_projection
from app.services.repository import RepositoryGateway

logger = logging.getLogger(__name__)

Listener = Callable[["StoreSnapshot"], None]

# Fields an administrator may change on an existing project
EDITABLE_PROJECT_FIELDS = (
    "name", "description", "category", "tags", "is_public", "data_source", "refresh_frequency",
)


class StoreStatus(str, Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"
    STALE = "stale"


@dataclass(frozen=True)
class StoreSnapshot:
    status: StoreStatus = StoreStatus.UNINITIALIZED
    caller: Optional[Caller] = None
    projects: Tuple[ProjectRecord, ...] = ()
    assignments: Tuple[AssignmentRecord, ...] = ()
    generation: int = 0
    last_error: Optional[str] = None
    retryable: bool = False

    def evolve(self, **changes) -> "StoreSnapshot":
        return replace(self, **changes)

    def with_project(self, project: ProjectRecord) -> "StoreSnapshot":
        key = normalize_id(project.id)
        projects = tuple(project if normalize_id(p.id) == key else p for p in self.projects)
        return self.evolve(projects=projects)

    def without_project(self, project_id: Any) -> "StoreSnapshot":
        key = normalize_id(project_id)
        return self.evolve(
            projects=tuple(p for p in self.projects if normalize_id(p.id) != key),
            assignments=tuple(a for a in self.assignments if normalize_id(a.project_id) != key),
        )

    def without_assignment(self, assignment_id: Any) -> "StoreSnapshot":
        key = normalize_id(assignment_id)
        return self.evolve(assignments=tuple(a for a in self.assignments if normalize_id(a.id) != key))


def attach_columns(project: ProjectRecord, columns: Sequence[ColumnRecord]) -> ProjectRecord:
    """Fold stored column rows into a project's ordered column lists."""
    ordered = sorted(columns, key=lambda c: c.position)
    selected = sorted(
        (c for c in ordered if c.is_selected),
        key=lambda c: (c.selected_position is None, c.selected_position or 0, c.position),
    )
    return project.evolve(
        columns=tuple(c.column_name for c in ordered),
        selected_columns=tuple(c.column_name for c in selected),
    )


class ProjectStore:
    def __init__(self, gateway: RepositoryGateway):
        self._gateway = gateway
        self._snapshot = StoreSnapshot()
        self._generation = 0
        self._refresh_task: Optional[asyncio.Task] = None
        self._mutation_lock = asyncio.Lock()
        self._listeners: List[Listener] = []

    # ---------- Snapshot plumbing ----------

    @property
    def snapshot(self) -> StoreSnapshot:
        return self._snapshot

    @property
    def gateway(self) -> RepositoryGateway:
        return self._gateway

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener`` with every new snapshot. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _publish(self, snapshot: StoreSnapshot) -> None:
        self._snapshot = snapshot
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Store listener failed")

    # ---------- Identity & loading ----------

    async def set_identity(self, caller: Optional[Caller]) -> StoreSnapshot:
        """
        Switch the session to ``caller`` (None on logout).
        Cancels any in-flight fetch, clears the cache and loads the new caller's data.
        """
        self._generation += 1
        generation = self._generation
        previous = self._refresh_task
        if previous is not None and not previous.done():
            previous.cancel()
            logger.debug("Cancelled in-flight refresh for generation %d", generation - 1)
        self._refresh_task = None

        if caller is None:
            self._publish(StoreSnapshot(generation=generation))
            return self._snapshot

        self._publish(StoreSnapshot(status=StoreStatus.LOADING, caller=caller, generation=generation))
        await self.refresh()
        return self._snapshot

    async def refresh(self) -> StoreSnapshot:
        """
        Refetch projects and assignments for the current caller.
        On failure the previous snapshot stays, flagged retryable, and GatewayFailure is raised.
        """
        caller = self._snapshot.caller
        if caller is None:
            raise NotAuthenticated()

        task = self._refresh_task
        if task is None or task.done():
            generation = self._generation
            if self._snapshot.status != StoreStatus.LOADING:
                self._publish(self._snapshot.evolve(status=StoreStatus.LOADING))
            task = asyncio.create_task(self._load(caller, generation))
            self._refresh_task = task

        await asyncio.wait({task})
        if task.cancelled():
            # Identity changed underneath us; wait for whatever replaced it
            await self._settled()
            return self._snapshot
        error = task.exception()
        if error is not None:
            raise error
        return self._snapshot

    async def _settled(self) -> None:
        """Wait until no refresh is in flight. Failures were already reported by refresh()."""
        while True:
            task = self._refresh_task
            if task is None or task.done():
                return
            await asyncio.wait({task})

    async def _load(self, caller: Caller, generation: int) -> None:
        before = self._snapshot
        try:
            if caller.is_admin:
                projects = await self._gateway.list_projects()
                assignments = await self._gateway.list_project_assignments()
            else:
                mine = await self._gateway.list_project_assignments(user_id=caller.id)
                project_ids = list(dict.fromkeys(normalize_id(a.project_id) for a in mine))
                if project_ids:
                    projects = await self._gateway.list_projects(ids=project_ids)
                    assignments = await self._gateway.list_project_assignments(project_ids=project_ids)
                else:
                    projects, assignments = [], []

            column_sets = await asyncio.gather(
                *(self._gateway.list_project_columns(p.id) for p in projects)
            )
            projects = [attach_columns(p, cols) for p, cols in zip(projects, column_sets)]
        except DashboardError as exc:
            self._record_load_failure(before, generation, exc)
            raise
        except Exception as exc:
            failure = GatewayFailure("refresh", cause=exc)
            self._record_load_failure(before, generation, failure)
            raise failure from exc

        if generation != self._generation:
            logger.info("Discarding stale refresh for generation %d", generation)
            return

        self._publish(StoreSnapshot(
            status=StoreStatus.READY,
            caller=caller,
            projects=tuple(projects),
            assignments=tuple(assignments),
            generation=generation,
        ))
        logger.debug(
            "Store ready for caller %s: %d projects, %d assignments",
            caller.key, len(projects), len(assignments),
        )

    def _record_load_failure(self, before: StoreSnapshot, generation: int, exc: Exception) -> None:
        if generation != self._generation:
            return
        status = StoreStatus.READY if (before.projects or before.assignments) else StoreStatus.UNINITIALIZED
        logger.warning("Refresh failed for caller %s: %s", before.caller.key if before.caller else "-", exc)
        self._publish(before.evolve(
            status=status,
            last_error=str(getattr(exc, "detail", exc)),
            retryable=getattr(exc, "retryable", True),
        ))

    async def _require_caller(self) -> Caller:
        await self._settled()
        caller = self._snapshot.caller
        if caller is None:
            raise NotAuthenticated()
        return caller

    # ---------- Derived views ----------

    async def accessible_projects(self) -> List[ProjectRecord]:
        caller = await self._require_caller()
        snap = self._snapshot
        return access_scope.accessible_projects(caller, snap.projects, snap.assignments)

    async def get_project(self, project_id: Any) -> ProjectRecord:
        """A project the caller may open. NotFound for admins, NotAuthorized otherwise."""
        caller = await self._require_caller()
        for project in await self.accessible_projects():
            if same_id(project.id, project_id):
                return project
        if caller.is_admin:
            raise NotFound("Project not found")
        raise NotAuthorized("You do not have access to this project")

    async def effective_role(self, project_id: Any) -> ProjectRole:
        caller = await self._require_caller()
        project = await self.get_project(project_id)
        return access_scope.effective_role(caller, project, self._snapshot.assignments)

    async def visible_columns(self, project_id: Any) -> List[str]:
        project = await self.get_project(project_id)
        role = await self.effective_role(project_id)
        return column_projection.visible_columns_for(project, role)

    async def project_members(self, project_id: Any) -> List[AssignmentRecord]:
        """Admin only, like every other member operation."""
        caller = await self._require_caller()
        access_scope.require_admin(caller)
        project = await self.get_project(project_id)
        return access_scope.assignments_for_project(project.id, self._snapshot.assignments)

    # ---------- Mutations ----------

    async def _mutate(
        self,
        operation: str,
        call: Callable[[], Awaitable[Any]],
        optimistic: Optional[Callable[[StoreSnapshot], StoreSnapshot]] = None,
        confirm: Optional[Callable[[StoreSnapshot, Any], StoreSnapshot]] = None,
    ) -> Any:
        # One mutation at a time, so a rollback never discards another confirmed change
        async with self._mutation_lock:
            generation = self._generation
            before = self._snapshot
            staged = optimistic(before) if optimistic else before
            self._publish(staged.evolve(status=StoreStatus.STALE))
            try:
                result = await call()
            except DashboardError:
                self._rollback(operation, generation, before)
                raise
            except Exception as exc:
                self._rollback(operation, generation, before)
                raise GatewayFailure(operation, cause=exc) from exc

            if generation != self._generation:
                logger.info("Identity changed during %s; not applying result to cache", operation)
                return result
            current = self._snapshot
            confirmed = confirm(current, result) if confirm else current
            self._publish(confirmed.evolve(status=StoreStatus.READY, last_error=None, retryable=False))
            return result

    def _rollback(self, operation: str, generation: int, before: StoreSnapshot) -> None:
        if generation != self._generation:
            return
        logger.warning("Rolling back %s after gateway failure", operation)
        self._publish(before)

    async def create_project(self, values: Mapping[str, Any]) -> ProjectRecord:
        """Admin only. The new project shows up first in the list once the gateway confirms it."""
        caller = await self._require_caller()
        access_scope.require_admin(caller)
        payload = {k: v for k, v in values.items() if k in EDITABLE_PROJECT_FIELDS}
        payload["created_by"] = caller.id

        project = await self._mutate(
            "create_project",
            lambda: self._gateway.create_project(payload),
            confirm=lambda snap, created: snap.evolve(projects=(created,) + snap.projects),
        )
        logger.info("Project %s created by user %s", project.id, caller.key)
        return project

    async def update_project(self, project_id: Any, changes: Mapping[str, Any]) -> ProjectRecord:
        caller = await self._require_caller()
        access_scope.require_admin(caller)
        project = await self.get_project(project_id)
        patch = {k: v for k, v in changes.items() if k in EDITABLE_PROJECT_FIELDS and v is not None}
        if "tags" in patch:
            patch["tags"] = tuple(patch["tags"])
        if "data_source" in patch:
            patch["data_source"] = DataSource(patch["data_source"])
        if "refresh_frequency" in patch:
            patch["refresh_frequency"] = RefreshFrequency(patch["refresh_frequency"])

        def _merge(snap: StoreSnapshot, stored: ProjectRecord) -> StoreSnapshot:
            # The gateway does not return column lists; keep the cached ones
            return snap.with_project(stored.evolve(
                columns=project.columns, selected_columns=project.selected_columns,
            ))

        updated = await self._mutate(
            "update_project",
            lambda: self._gateway.update_project(project.id, patch),
            optimistic=lambda snap: snap.with_project(project.evolve(**patch)),
            confirm=_merge,
        )
        logger.info("Project %s updated by user %s: %s", project.id, caller.key, sorted(patch))
        return await self.get_project(updated.id)

    async def delete_project(self, project_id: Any) -> None:
        """Admin only. The project and its assignments leave the cache in one swap."""
        caller = await self._require_caller()
        access_scope.require_admin(caller)
        project = await self.get_project(project_id)
        await self._mutate(
            "delete_project",
            lambda: self._gateway.delete_project(project.id),
            optimistic=lambda snap: snap.without_project(project.id),
        )
        logger.info("Project %s deleted by user %s", project.id, caller.key)

    async def add_assignment(self, project_id: Any, email: str, role: ProjectRole) -> AssignmentRecord:
        """
        Grant ``role`` on a project to the user registered under ``email``.
        Raises NotFound when nobody has that email.
        """
        caller = await self._require_caller()
        access_scope.require_admin(caller)
        project = await self.get_project(project_id)
        role = ProjectRole(role)
        email = email.strip().lower()

        users = await self._gateway.list_users(email=email)
        if not users:
            raise NotFound(f"No user registered with email {email}")
        user = users[0]

        assignment = await self._mutate(
            "add_assignment",
            lambda: self._gateway.create_project_assignment(project.id, user.id, user.email, role),
            confirm=lambda snap, created: snap.evolve(assignments=snap.assignments + (created,)),
        )
        logger.info("User %s granted %s on project %s", user.email, role.value, project.id)
        return assignment

    async def remove_assignment(self, assignment_id: Any, project_id: Any = None) -> None:
        caller = await self._require_caller()
        access_scope.require_admin(caller)
        assignment = next(
            (a for a in self._snapshot.assignments
             if same_id(a.id, assignment_id) and (project_id is None or same_id(a.project_id, project_id))),
            None,
        )
        if assignment is None:
            raise NotFound("Member not found")
        await self._mutate(
            "remove_assignment",
            lambda: self._gateway.delete_project_assignment(assignment.id),
            optimistic=lambda snap: snap.without_assignment(assignment.id),
        )
        logger.info("Removed %s from project %s", assignment.email, assignment.project_id)

    async def select_columns(self, project_id: Any, requested: Sequence[Any]) -> ProjectRecord:
        """Editors and admins only. Validation errors leave cache and store untouched."""
        caller = await self._require_caller()
        project = await self.get_project(project_id)
        access_scope.require_project_role(caller, project, self._snapshot.assignments, ProjectRole.EDITOR)
        updated = column_projection.set_selected_columns(project, requested)

        await self._mutate(
            "select_columns",
            lambda: self._gateway.set_column_selection(project.id, updated.columns, updated.selected_columns),
            optimistic=lambda snap: snap.with_project(updated),
        )
        logger.info("Project %s now shows %d columns", project.id, len(updated.selected_columns))
        return updated

    async def apply_ingestion(
        self, project_id: Any, columns: Sequence[Any], rows: Sequence[Mapping[str, Any]]
    ) -> ProjectRecord:
        """
        Replace a project's columns and rows with a freshly parsed upload.

        The project is marked pending before the columns are replaced and
        complete after the rows are; a failure in between leaves it pending in
        the data store, which the read path reports as a malformed upload. The
        cache only changes once every step succeeded.
        """
        caller = await self._require_caller()
        project = await self.get_project(project_id)
        access_scope.require_project_role(caller, project, self._snapshot.assignments, ProjectRole.EDITOR)
        updated = column_projection.ingest_columns(project, columns)

        async def _replace() -> ProjectRecord:
            gateway = self._gateway
            await gateway.set_ingestion_status(project.id, IngestionStatus.PENDING)
            try:
                await gateway.replace_project_columns(project.id, updated.columns, updated.selected_columns)
                await gateway.replace_data_rows(project.id, rows, created_by=caller.id)
            except Exception:
                logger.error("Upload for project %s left partially applied", project.id)
                raise
            await gateway.set_ingestion_status(project.id, IngestionStatus.COMPLETE)
            return updated.evolve(ingestion_status=IngestionStatus.COMPLETE)

        ingested = await self._mutate(
            "apply_ingestion",
            _replace,
            confirm=lambda snap, result: snap.with_project(result),
        )
        logger.info(
            "Project %s ingested %d columns and %d rows", project.id, len(ingested.columns), len(rows),
        )
        return ingested
