# compliance_app/main.py
import logging

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# load .env before settings-dependent modules are imported
load_dotenv()

from compliance_app.config import settings
from compliance_app.db import close_client, create_indexes
from compliance_app.routes.auth.auth import router as auth_router
from compliance_app.routes.businesses import router as businesses_router
from compliance_app.routes.compliance_items import router as compliance_items_router
from compliance_app.routes.dashboard import router as dashboard_router
from compliance_app.routes.onboarding import router as onboarding_router
from compliance_app.routes.profile import router as profile_router
from compliance_app.services.remote_config_service import remote_config_service

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.app_name,
    description="Business compliance tracker: onboarding interview, compliance checklist and dashboard",
    version=settings.app_version,
)

# CORS - tighten in production
if settings.allowed_origins == "*":
    cors_origins = ["*"]
else:
    cors_origins = [o.strip() for o in settings.allowed_origins.split(",")]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth_router, prefix="/auth")
app.include_router(profile_router)
app.include_router(businesses_router)
app.include_router(compliance_items_router)
app.include_router(onboarding_router)
app.include_router(dashboard_router)


@app.on_event("startup")
async def on_startup():
    await create_indexes()
    await remote_config_service.initialize()
    logger.info("%s %s started (%s)", settings.app_name, settings.app_version, settings.environment)


@app.on_event("shutdown")
async def on_shutdown():
    close_client()


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": f"Welcome to {settings.app_name}",
        "status": "running",
        "version": settings.app_version,
    }
