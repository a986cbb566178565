# app/services/access_scope.py
"""Who can see which project, and with what role.

Pure functions over already-loaded projects and assignments. The caller's
global role comes from the user record (see ``app.core.dependencies``), never
from anything the client claims. Every identity comparison goes through
``normalize_id`` because ids arrive as ints from the database and as strings
from tokens.
"""
from __future__ import annotations

from typing import Iterable, List, Optional, Sequence
import logging

from app.core.domain import (
    AssignmentRecord, Caller, ProjectRecord, ProjectRole, most_permissive, normalize_id,
)
from app.core.errors import NotAMember, NotAuthorized

logger = logging.getLogger(__name__)


def _matching_assignments(caller: Caller, assignments: Iterable[AssignmentRecord]) -> List[AssignmentRecord]:
    key = caller.key
    if not key:
        return []
    return [a for a in assignments if normalize_id(a.user_id) == key]


def accessible_projects(
    caller: Caller,
    projects: Sequence[ProjectRecord],
    assignments: Iterable[AssignmentRecord],
) -> List[ProjectRecord]:
    """
    Projects the caller may open, in the order they were given.

    Admins see every project whether or not they hold an assignment.
    Everyone else sees the projects they have at least one assignment on.
    Assignments pointing at projects not in ``projects`` are ignored.
    """
    if caller.is_admin:
        return list(projects)

    granted = {normalize_id(a.project_id) for a in _matching_assignments(caller, assignments)}
    visible = [p for p in projects if normalize_id(p.id) in granted]
    logger.debug("Caller %s can access %d of %d projects", caller.key, len(visible), len(projects))
    return visible


def member_role(
    caller: Caller,
    project: ProjectRecord,
    assignments: Iterable[AssignmentRecord],
) -> Optional[ProjectRole]:
    """Effective role, or None when the caller holds no grant on the project."""
    if caller.is_admin:
        return ProjectRole.ADMIN
    project_key = normalize_id(project.id)
    return most_permissive(
        a.role for a in _matching_assignments(caller, assignments)
        if normalize_id(a.project_id) == project_key
    )


def effective_role(
    caller: Caller,
    project: ProjectRecord,
    assignments: Iterable[AssignmentRecord],
) -> ProjectRole:
    """
    Most permissive role the caller holds on ``project``.

    Raises NotAMember when a non-admin caller has no assignment on it; check
    membership with ``accessible_projects`` first.
    """
    role = member_role(caller, project, assignments)
    if role is None:
        raise NotAMember(project_id=project.id, user_id=caller.key)
    return role


def require_project_role(
    caller: Caller,
    project: ProjectRecord,
    assignments: Iterable[AssignmentRecord],
    minimum: ProjectRole,
) -> ProjectRole:
    role = effective_role(caller, project, assignments)
    if not role.at_least(minimum):
        raise NotAuthorized(f"{minimum.value.capitalize()} role required on this project")
    return role


def require_admin(caller: Caller) -> None:
    if not caller.is_admin:
        raise NotAuthorized("Administrator role required")


def assignments_for_project(project_id, assignments: Iterable[AssignmentRecord]) -> List[AssignmentRecord]:
    key = normalize_id(project_id)
    return [a for a in assignments if normalize_id(a.project_id) == key]
