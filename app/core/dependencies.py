from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from typing import Optional

from app.db.session import get_db, SessionLocal
from app.core.domain import Caller
from app.core.errors import NotAuthenticated
from app.core.security import verify_token
from app.services import access_scope
from app.services.project_store import ProjectStore
from app.services.repository import RepositoryGateway, SqlAlchemyGateway
from app.services.user import get_user_by_id, to_caller

# Security scheme; missing credentials are reported as NotAuthenticated below
security = HTTPBearer(auto_error=False)


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db)
):
    """Get current authenticated user from JWT token"""
    if credentials is None:
        raise NotAuthenticated()

    # Verify token
    payload = verify_token(credentials.credentials, "access")
    if payload is None:
        raise NotAuthenticated("Could not validate credentials")

    # Get user ID from token
    user_id = payload.get("sub")
    if user_id is None:
        raise NotAuthenticated("Could not validate credentials")

    # Get user from database; inactive users are not returned
    user = get_user_by_id(db, user_id)
    if user is None:
        raise NotAuthenticated("Could not validate credentials")

    return user


def get_caller(current_user=Depends(get_current_user)) -> Caller:
    """Identity used for every scoping decision. The role comes from the database, never the token."""
    return to_caller(current_user)


def require_admin_caller(caller: Caller = Depends(get_caller)) -> Caller:
    access_scope.require_admin(caller)
    return caller


def get_gateway() -> RepositoryGateway:
    return SqlAlchemyGateway(SessionLocal)


async def get_project_store(
    caller: Caller = Depends(get_caller),
    gateway: RepositoryGateway = Depends(get_gateway),
) -> ProjectStore:
    """A store loaded for the calling user, scoped to this request."""
    store = ProjectStore(gateway)
    await store.set_identity(caller)
    return store
