"""
Central API router that aggregates all route modules.
"""

from fastapi import APIRouter
from retreat_booking.api.routes import admin, bookings, payments, retreats

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(bookings.router)
api_router.include_router(retreats.router)
api_router.include_router(payments.router)
api_router.include_router(admin.router)
