"""Typed failures raised by the service layer.

They subclass ``HTTPException`` so routers can let them propagate and FastAPI
renders the status code and detail directly.
"""
from __future__ import annotations

from typing import Dict, Iterable, List, Optional

from fastapi import HTTPException, status


ALLOWED_VIEW_HEADER = "X-Allowed-View"
ALLOWED_VIEW = "/api/v1/projects"


class DashboardError(HTTPException):
    status_code_default: int = status.HTTP_400_BAD_REQUEST
    default_detail: str = "Request failed"

    def __init__(self, detail: Optional[str] = None, headers: Optional[Dict[str, str]] = None):
        super().__init__(
            status_code=self.status_code_default,
            detail=detail or self.default_detail,
            headers=headers,
        )


class NotAuthenticated(DashboardError):
    status_code_default = status.HTTP_401_UNAUTHORIZED
    default_detail = "Could not validate credentials"

    def __init__(self, detail: Optional[str] = None):
        super().__init__(detail, headers={"WWW-Authenticate": "Bearer"})


class NotAuthorized(DashboardError):
    status_code_default = status.HTTP_403_FORBIDDEN
    default_detail = "Permission denied"

    def __init__(self, detail: Optional[str] = None):
        super().__init__(detail, headers={ALLOWED_VIEW_HEADER: ALLOWED_VIEW})


class NotAMember(NotAuthorized):
    default_detail = "Caller is not a member of this project"

    def __init__(self, project_id=None, user_id=None):
        self.project_id = project_id
        self.user_id = user_id
        detail = None
        if project_id is not None:
            detail = f"User {user_id} is not a member of project {project_id}"
        super().__init__(detail)


class NotFound(DashboardError):
    status_code_default = status.HTTP_404_NOT_FOUND
    default_detail = "Not found"


class Conflict(DashboardError):
    status_code_default = status.HTTP_409_CONFLICT
    default_detail = "Conflict"


class UnknownColumn(DashboardError):
    status_code_default = 422

    def __init__(self, columns: Iterable[str]):
        self.columns: List[str] = list(columns)
        super().__init__(f"Unknown column(s): {', '.join(self.columns)}")


class TooFewColumns(DashboardError):
    status_code_default = 422

    def __init__(self, needed: int, minimum: int):
        self.needed = needed
        self.minimum = minimum
        noun = "column" if needed == 1 else "columns"
        super().__init__(
            f"You must select more than {minimum} columns; select {needed} more {noun}"
        )


class GatewayFailure(DashboardError):
    status_code_default = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = "Data store unavailable"

    def __init__(self, operation: str, cause: Optional[BaseException] = None, retryable: bool = True):
        self.operation = operation
        self.cause = cause
        self.retryable = retryable
        super().__init__(f"Data store operation '{operation}' failed")


class MalformedUpload(DashboardError):
    status_code_default = status.HTTP_400_BAD_REQUEST
    default_detail = "Uploaded document could not be ingested"


class UnsupportedFormat(MalformedUpload):
    default_detail = "Unsupported file format"


class EmptyDocument(MalformedUpload):
    default_detail = "No data found in the file"
