"""
Verification monitor routes, triggered by the external scheduler.
"""

import logging

from fastapi import APIRouter, Depends, Header, HTTPException, status

from app.core.config import settings
from app.verification.providers import ProviderRegistry
from app.verification.router import get_provider_registry
from app.verification_monitor.service import VerificationMonitor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/verification-monitor", tags=["verification-monitor"])


def verify_scheduler_token(x_scheduler_token: str = Header(...)):
    """
    Verify the scheduler secret token from request header.

    Raises:
        HTTPException: If token is not configured or does not match
    """
    if not settings.SCHEDULER_SECRET_TOKEN:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Scheduler token not configured on server",
        )

    if x_scheduler_token != settings.SCHEDULER_SECRET_TOKEN:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid scheduler token",
        )

    return True


def get_verification_monitor(
    registry: ProviderRegistry = Depends(get_provider_registry),
) -> VerificationMonitor:
    return VerificationMonitor(registry)


@router.post("/run")
async def run_verification_monitor(
    _: bool = Depends(verify_scheduler_token),
    monitor: VerificationMonitor = Depends(get_verification_monitor),
):
    """
    Run expiring/expired sweeps and poll in-progress verifications.

    Authentication: Requires X-Scheduler-Token header.
    """
    logger.info("Verification monitor triggered via API")
    results = await monitor.run_all_tasks()
    return {"success": True, "results": results}


@router.post("/recheck-expired")
async def recheck_expired_verifications(
    force: bool = False,
    _: bool = Depends(verify_scheduler_token),
    monitor: VerificationMonitor = Depends(get_verification_monitor),
):
    """Weekly recheck of EXPIRED verifications. `force=true` ignores the weekday."""
    logger.info(f"Expired verification recheck triggered via API (force={force})")
    results = await monitor.recheck_expired_verifications(force=force)
    return {"success": True, "results": results}
