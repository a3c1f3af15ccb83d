# Central API router include file
from fastapi import APIRouter

# Import domain routers
from app.verification.router import router as verification_router
from app.verification_monitor.router import router as verification_monitor_router
from app.webhooks.router import router as webhooks_router

# Create main API router
api_router = APIRouter()

# Include domain routers
api_router.include_router(verification_router, tags=["verifications"])
api_router.include_router(webhooks_router, tags=["webhooks"])
api_router.include_router(verification_monitor_router, tags=["verification-monitor"])
