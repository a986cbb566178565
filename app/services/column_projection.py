# app/services/column_projection.py
"""Column visibility rules for a project.

``columns`` is everything the last upload produced, in upload order.
``selected_columns`` is the curated subset shown to members, in display
order. These helpers keep ``selected_columns ⊆ columns`` and enforce the
minimum-selection rule; they never touch storage.
"""
from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Sequence

from app.core.domain import IngestionStatus, ProjectRecord, ProjectRole, Scalar
from app.core.errors import MalformedUpload, TooFewColumns, UnknownColumn

# Members must be shown strictly more than this many columns
MIN_VISIBLE_COLUMNS = 3


def dedupe(names: Iterable[Any]) -> List[str]:
    """Stringify and drop repeats, keeping the first occurrence."""
    seen = set()
    result: List[str] = []
    for name in names:
        name = str(name)
        if name not in seen:
            seen.add(name)
            result.append(name)
    return result


def ingest_columns(project: ProjectRecord, new_columns: Sequence[Any]) -> ProjectRecord:
    """
    Replace the project's columns with a fresh upload's columns.
    Previously selected columns that still exist stay selected, in their old order.
    """
    columns = dedupe(new_columns)
    available = set(columns)
    selected = [c for c in project.selected_columns if c in available]
    return project.evolve(columns=tuple(columns), selected_columns=tuple(selected))


def set_selected_columns(project: ProjectRecord, requested: Sequence[Any]) -> ProjectRecord:
    """
    Validate and apply a new curated selection.

    Raises UnknownColumn if any name is not one of the project's columns and
    TooFewColumns unless more than MIN_VISIBLE_COLUMNS distinct names are given.
    """
    wanted = dedupe(requested)
    available = set(project.columns)
    unknown = [c for c in wanted if c not in available]
    if unknown:
        raise UnknownColumn(unknown)
    if len(wanted) <= MIN_VISIBLE_COLUMNS:
        raise TooFewColumns(needed=MIN_VISIBLE_COLUMNS + 1 - len(wanted), minimum=MIN_VISIBLE_COLUMNS)
    return project.evolve(selected_columns=tuple(wanted))


def visible_columns_for(project: ProjectRecord, role: ProjectRole) -> List[str]:
    """Every role sees the curated selection; roles differ only in what they may change."""
    return list(project.selected_columns)


def project_rows(rows: Iterable[Mapping[str, Scalar]], columns: Sequence[str]) -> List[Dict[str, Scalar]]:
    """Restrict row payloads to ``columns``, in that order."""
    return [{c: row.get(c) for c in columns} for row in rows]


def check_ingestion_consistency(project: ProjectRecord, row_count: int) -> None:
    """
    Raise MalformedUpload when columns and rows were left out of step by an
    interrupted upload.
    """
    if project.ingestion_status == IngestionStatus.PENDING:
        raise MalformedUpload(
            "The last upload for this project did not finish; upload the file again"
        )
    if project.columns and row_count == 0:
        raise MalformedUpload("Project has columns but no data rows; upload the file again")
    if not project.columns and row_count > 0:
        raise MalformedUpload("Project has data rows but no columns; upload the file again")
