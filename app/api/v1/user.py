from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from typing import List

from app.db.session import get_db
from app.core.domain import Caller
from app.core.dependencies import get_current_user, get_gateway, require_admin_caller
from app.models.user_model import User
from app.schemas.project_schema import ProjectOut
from app.schemas.user_schema import UserCreate, UserLogin, UserLoginResponse, UserResponse
from app.services import project_service
from app.services import user as user_service
from app.services.repository import RepositoryGateway

router = APIRouter()
users_router = APIRouter()


@router.post("/login", response_model=UserLoginResponse)
async def login_user(login_data: UserLogin, db: Session = Depends(get_db)):
    """
    Login user with email and password, return a JWT access token
    """
    result = user_service.authenticate_user_with_tokens(db, login_data.email, login_data.password)

    if not result:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return UserLoginResponse(user=result["user"], **result["tokens"])


@router.get("/me", response_model=UserResponse)
async def get_current_user_profile(current_user: User = Depends(get_current_user)):
    """
    Get current user profile
    """
    return current_user


# ---------- Administration ----------

@users_router.get("", response_model=List[UserResponse])
async def list_users_endpoint(
    caller: Caller = Depends(require_admin_caller),
    gateway: RepositoryGateway = Depends(get_gateway),
):
    users = await user_service.list_users(gateway, caller)
    return [UserResponse.model_validate(u) for u in users]


@users_router.post("", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user_endpoint(
    payload: UserCreate,
    caller: Caller = Depends(require_admin_caller),
    gateway: RepositoryGateway = Depends(get_gateway),
):
    user = await user_service.create_user(gateway, caller, payload)
    return UserResponse.model_validate(user)


@users_router.get("/{user_id}", response_model=UserResponse)
async def get_user_endpoint(
    user_id: int,
    caller: Caller = Depends(require_admin_caller),
    gateway: RepositoryGateway = Depends(get_gateway),
):
    user = await user_service.get_user(gateway, caller, user_id)
    return UserResponse.model_validate(user)


@users_router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_user_endpoint(
    user_id: int,
    caller: Caller = Depends(require_admin_caller),
    gateway: RepositoryGateway = Depends(get_gateway),
):
    await user_service.delete_user(gateway, caller, user_id)
    return None


@users_router.get("/{user_id}/projects", response_model=List[ProjectOut])
async def list_user_projects_endpoint(
    user_id: int,
    caller: Caller = Depends(require_admin_caller),
    gateway: RepositoryGateway = Depends(get_gateway),
):
    """
    Projects the given user can open, with their effective role on each.
    """
    pairs = await project_service.list_projects_for_user(gateway, user_id)
    return [ProjectOut.from_record(p, role) for p, role in pairs]
