from fastapi import APIRouter
from app.api.v1.user import router as user_router, users_router
from app.api.v1.project import router as project_router
from app.api.v1.uploads import router as uploads_router

api_router = APIRouter()

# Include user routes
api_router.include_router(user_router, prefix="/auth", tags=["authentication"])
api_router.include_router(users_router, prefix="/users", tags=["users"])

# Include project routes
api_router.include_router(project_router, prefix="/projects", tags=["projects"])
api_router.include_router(uploads_router, prefix="/projects", tags=["uploads"])
