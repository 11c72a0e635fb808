"""
Main API Router
Aggregates all API endpoints for v1
"""

from fastapi import APIRouter
from skypark.api.v1.endpoints import (
    parks,
    bookings,
    payments,
    tickets,
    gate,
    health
)

api_router = APIRouter()

# Include all routers
api_router.include_router(parks.router, prefix="/parks", tags=["parks"])
api_router.include_router(bookings.router, prefix="/bookings", tags=["bookings"])
api_router.include_router(payments.router, prefix="/payments", tags=["payments"])
api_router.include_router(tickets.router, prefix="/tickets", tags=["tickets"])
api_router.include_router(gate.router, prefix="/gate", tags=["gate"])
api_router.include_router(health.router, prefix="/health", tags=["health"])
