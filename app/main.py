import logging

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.v1 import api_router
from app.core.config import settings
from app.core.dependencies import get_gateway
from app.core.errors import GatewayFailure
from app.db.session import SessionLocal, init_db
from app.services.repository import RepositoryGateway
from app.services.user import UserService

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.APP_NAME,
    description="API for sharing uploaded datasets with assigned users",
    version="1.0.0"
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Allowed-View"],
)

# Include API routes
app.include_router(api_router, prefix="/api/v1")


@app.get("/")
async def root():
    return {"message": settings.APP_NAME, "version": "1.0.0"}


@app.get("/health")
async def health_check(gateway: RepositoryGateway = Depends(get_gateway)):
    try:
        await gateway.ping()
    except GatewayFailure:
        return {"status": "degraded", "database": "unreachable"}
    return {"status": "healthy", "database": "ok"}


@app.on_event("startup")
async def on_startup():
    # SQLite deployments have no migration step; create tables in place
    if settings.DATABASE_URL.startswith("sqlite"):
        init_db()

    if settings.BOOTSTRAP_ADMIN_EMAIL and settings.BOOTSTRAP_ADMIN_PASSWORD:
        db = SessionLocal()
        try:
            UserService(db).ensure_admin(settings.BOOTSTRAP_ADMIN_EMAIL, settings.BOOTSTRAP_ADMIN_PASSWORD)
        finally:
            db.close()
