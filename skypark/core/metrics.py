"""
Prometheus metrics and health checks for the booking core
"""

import time
import logging
from typing import Dict, Any
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from prometheus_client import Counter, Histogram
from sqlalchemy import text

logger = logging.getLogger(__name__)


# HTTP layer
REQUEST_COUNT = Counter(
    "skypark_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"]
)
REQUEST_DURATION = Histogram(
    "skypark_request_duration_seconds",
    "HTTP request duration",
    ["method", "endpoint"]
)

# Domain
BOOKING_OPERATIONS = Counter(
    "skypark_booking_operations_total",
    "Booking lifecycle operations by outcome",
    ["operation", "outcome"]
)
BOOKING_DURATION = Histogram(
    "skypark_booking_operation_seconds",
    "Booking lifecycle operation duration",
    ["operation"]
)
PAYMENT_EVENTS = Counter(
    "skypark_payment_events_total",
    "Payment state changes",
    ["method", "status"]
)
TICKETS_ISSUED = Counter(
    "skypark_tickets_issued_total",
    "Tickets minted",
    ["ticket_type"]
)
GATE_VALIDATIONS = Counter(
    "skypark_gate_validations_total",
    "Gate scans by result code",
    ["gate", "result"]
)
BACKGROUND_TASKS = Counter(
    "skypark_background_tasks_total",
    "Fire-and-forget task outcomes",
    ["task", "outcome"]
)


@asynccontextmanager
async def track_booking_operation(operation: str):
    """Time a booking operation and count its outcome"""
    start_time = time.time()
    try:
        yield
    except Exception as e:
        BOOKING_OPERATIONS.labels(operation=operation, outcome=type(e).__name__).inc()
        raise
    else:
        BOOKING_OPERATIONS.labels(operation=operation, outcome="success").inc()
    finally:
        duration = time.time() - start_time
        BOOKING_DURATION.labels(operation=operation).observe(duration)
        if duration > 5.0:
            logger.warning(f"Slow {operation} operation: {duration:.2f}s")


class HealthChecker:
    """Health checking for booking system components"""

    def __init__(self, redis_manager, db_manager):
        self.redis_manager = redis_manager
        self.db_manager = db_manager

    async def check_redis_health(self) -> Dict[str, Any]:
        try:
            start_time = time.time()
            client = await self.redis_manager.get_client()
            await client.ping()
            return {
                "status": "healthy",
                "response_time_ms": (time.time() - start_time) * 1000,
                "error": None
            }
        except Exception as e:
            return {"status": "unhealthy", "response_time_ms": None, "error": str(e)}

    async def check_database_health(self) -> Dict[str, Any]:
        try:
            start_time = time.time()
            async with self.db_manager.session_factory() as session:
                await session.execute(text("SELECT 1"))
            return {
                "status": "healthy",
                "response_time_ms": (time.time() - start_time) * 1000,
                "error": None
            }
        except Exception as e:
            return {"status": "unhealthy", "response_time_ms": None, "error": str(e)}

    async def get_system_health(self) -> Dict[str, Any]:
        """Get overall system health"""
        redis_health = await self.check_redis_health()
        db_health = await self.check_database_health()

        # Redis only backs rate limiting, which fails open
        if db_health["status"] != "healthy":
            overall_status = "unhealthy"
        elif redis_health["status"] != "healthy":
            overall_status = "degraded"
        else:
            overall_status = "healthy"

        return {
            "status": overall_status,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "components": {
                "redis": redis_health,
                "database": db_health
            }
        }
