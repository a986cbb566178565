from sqlalchemy.orm import Session
from typing import Any, Optional, List
from datetime import datetime, timezone
import logging

from app.core.domain import Caller, UserRecord, UserRole, normalize_id
from app.core.errors import Conflict, NotAuthorized, NotFound
from app.core.security import get_password_hash, verify_password, create_token_pair
from app.models.user_model import User
from app.schemas.user_schema import UserCreate, UserResponse
from app.services import access_scope
from app.services.repository import RepositoryGateway

logger = logging.getLogger(__name__)


def to_caller(user: User) -> Caller:
    """Caller identity taken from the stored user record."""
    return Caller(id=user.id, role=UserRole(user.role), email=user.email)


class UserService:
    def __init__(self, db: Session):
        self.db = db

    def authenticate_user(self, email: str, password: str) -> Optional[User]:
        """Authenticate user with email and password"""
        logger.debug("Authenticating user: %s", email)
        user = self.db.query(User).filter(
            User.email == email.strip().lower(),
            User.is_active == True
        ).first()

        if not user:
            logger.info("Auth failed: user not found or inactive for %s", email)
            return None

        if not verify_password(password, user.password_hash):
            logger.info("Auth failed: bad password for user_id=%s", user.id)
            return None

        # Update last login
        user.last_login = datetime.now(timezone.utc)
        self.db.commit()

        return user

    def authenticate_user_with_tokens(self, email: str, password: str) -> Optional[dict]:
        """Authenticate user and return user data with a JWT access token"""
        user = self.authenticate_user(email, password)
        if not user:
            return None
        tokens = create_token_pair(user.id)
        return {"user": UserResponse.model_validate(user), "tokens": tokens}

    def get_user_by_id(self, user_id: Any) -> Optional[User]:
        """Get active user by ID"""
        try:
            key = int(normalize_id(user_id))
        except ValueError:
            return None
        return self.db.query(User).filter(User.id == key, User.is_active == True).first()

    def ensure_admin(self, email: str, password: str) -> Optional[User]:
        """Create the first administrator when the user table is empty."""
        if self.db.query(User.id).first() is not None:
            return None
        admin = User(
            email=email.strip().lower(),
            password_hash=get_password_hash(password),
            role=UserRole.ADMIN.value,
            is_active=True,
        )
        try:
            self.db.add(admin)
            self.db.commit()
            self.db.refresh(admin)
        except Exception:
            logger.exception("Bootstrap admin creation failed for %s", email)
            self.db.rollback()
            raise
        logger.info("Bootstrap admin created: user_id=%s email=%s", admin.id, admin.email)
        return admin


# Convenience functions for backward compatibility
def get_user_by_id(db: Session, user_id: Any) -> Optional[User]:
    """Get user by ID"""
    service = UserService(db)
    return service.get_user_by_id(user_id)


def authenticate_user_with_tokens(db: Session, email: str, password: str) -> Optional[dict]:
    """Authenticate user and return tokens"""
    service = UserService(db)
    return service.authenticate_user_with_tokens(email, password)


# ---------- Administration (admin callers only) ----------

async def list_users(gateway: RepositoryGateway, caller: Caller) -> List[UserRecord]:
    access_scope.require_admin(caller)
    return await gateway.list_users()


async def get_user(gateway: RepositoryGateway, caller: Caller, user_id: Any) -> UserRecord:
    access_scope.require_admin(caller)
    user = await gateway.get_user(user_id)
    if user is None:
        raise NotFound("User not found")
    return user


async def create_user(gateway: RepositoryGateway, caller: Caller, payload: UserCreate) -> UserRecord:
    access_scope.require_admin(caller)
    email = payload.email.strip().lower()
    if await gateway.list_users(email=email):
        logger.info("Create user failed: email exists: %s", email)
        raise Conflict("A user with this email already exists")

    user = await gateway.create_user(email, get_password_hash(payload.password), payload.role)
    logger.info("User created successfully: user_id=%s email=%s role=%s", user.id, user.email, user.role.value)
    return user


async def delete_user(gateway: RepositoryGateway, caller: Caller, user_id: Any) -> None:
    """Delete a user. Their project assignments go with them."""
    access_scope.require_admin(caller)
    if normalize_id(user_id) == caller.key:
        raise NotAuthorized("Administrators cannot delete their own account")
    await gateway.delete_user(user_id)
    logger.info("User %s deleted by %s", user_id, caller.key)
