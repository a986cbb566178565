"""Domain types shared by the access-scoping and column-projection layers.

Everything here is plain data: frozen dataclasses and closed enums. The ORM
models in ``app.models`` are mapped onto these records by the repository
gateway so the engines never touch a database session.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union

Scalar = Union[str, int, float, bool, None]


class UserRole(str, Enum):
    """Global role recorded on the user account."""
    ADMIN = "admin"
    USER = "user"


class ProjectRole(str, Enum):
    """Per-project grant. Ordered viewer < editor < admin."""
    VIEWER = "viewer"
    EDITOR = "editor"
    ADMIN = "admin"

    @property
    def rank(self) -> int:
        return _PROJECT_ROLE_RANK[self]

    def at_least(self, other: "ProjectRole") -> bool:
        return self.rank >= other.rank


_PROJECT_ROLE_RANK = {
    ProjectRole.VIEWER: 0,
    ProjectRole.EDITOR: 1,
    ProjectRole.ADMIN: 2,
}


def most_permissive(roles) -> Optional[ProjectRole]:
    """Return the highest-ranked role in ``roles``, or None when empty."""
    best: Optional[ProjectRole] = None
    for role in roles:
        role = ProjectRole(role)
        if best is None or role.rank > best.rank:
            best = role
    return best


class DataSource(str, Enum):
    EXCEL = "excel"
    CSV = "csv"
    API = "api"
    DATABASE = "database"


class RefreshFrequency(str, Enum):
    MANUAL = "manual"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class IngestionStatus(str, Enum):
    EMPTY = "empty"
    PENDING = "pending"
    COMPLETE = "complete"


def normalize_id(value: Any) -> str:
    """Normalize an identifier for equality tests.

    Ids reach us as ints from the database, strings from JWT subjects and
    floats from spreadsheets, so every identity comparison goes through here.
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return str(int(value))
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def same_id(left: Any, right: Any) -> bool:
    left_key = normalize_id(left)
    return left_key != "" and left_key == normalize_id(right)


@dataclass(frozen=True)
class Caller:
    """Identity of whoever is calling, as resolved from the user record."""
    id: Any
    role: UserRole
    email: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def key(self) -> str:
        return normalize_id(self.id)


@dataclass(frozen=True)
class UserRecord:
    id: int
    email: str
    role: UserRole
    is_active: bool = True
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class ProjectRecord:
    id: int
    name: str
    created_by: Any
    description: str = ""
    columns: Tuple[str, ...] = ()
    selected_columns: Tuple[str, ...] = ()
    is_public: bool = False
    data_source: DataSource = DataSource.EXCEL
    category: str = "other"
    tags: Tuple[str, ...] = ()
    refresh_frequency: RefreshFrequency = RefreshFrequency.MANUAL
    ingestion_status: IngestionStatus = IngestionStatus.EMPTY
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def evolve(self, **changes) -> "ProjectRecord":
        return replace(self, **changes)


@dataclass(frozen=True)
class AssignmentRecord:
    id: int
    project_id: Any
    user_id: str
    email: str
    role: ProjectRole
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class ColumnRecord:
    column_name: str
    position: int
    is_selected: bool = False
    selected_position: Optional[int] = None


@dataclass(frozen=True)
class DataRowRecord:
    project_id: Any
    payload: Dict[str, Scalar] = field(default_factory=dict)
    id: Optional[int] = None
