"""
API v1 routes.
"""

from fastapi import APIRouter

from orderflow.api.v1 import audit, notifications, orders, realtime, revisions, submissions

router = APIRouter()

# Submissions and revisions before orders so /orders/{id}/files etc. are matched explicitly
router.include_router(submissions.router, tags=["Submissions"])
router.include_router(revisions.router, tags=["Revisions"])
router.include_router(orders.router, prefix="/orders", tags=["Orders"])
router.include_router(notifications.router, prefix="/notifications", tags=["Notifications"])
router.include_router(audit.router, prefix="/audit", tags=["Audit"])
router.include_router(realtime.router, tags=["Real-time"])
