"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from tenapay.app.api.v1.endpoints import users, claims, payments, notifications, admin

router = APIRouter()

# Accounts
router.include_router(users.router)

# Wallet movements
router.include_router(claims.router)
router.include_router(payments.router)

# Notifications (REST + WebSocket)
router.include_router(notifications.router)

# Admin
router.include_router(admin.router)
