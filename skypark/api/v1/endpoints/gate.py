"""
Gate validation endpoint used by entrance scanners
"""

from typing import Any
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from skypark.core.database import get_session
from skypark.core.security import Principal, require_staff
from skypark.schemas.gate import GateValidateRequest, GateValidationResult
from skypark.services.gate_service import gate_service

router = APIRouter()


@router.post("/validate", response_model=GateValidationResult)
async def validate_ticket(
    request: GateValidateRequest,
    current_user: Principal = Depends(require_staff),
    db: AsyncSession = Depends(get_session)
) -> Any:
    """
    Redeem a scanned QR payload or typed validation code.
    Rejections are returned with accepted=false and a reason code.
    """
    return await gate_service.validate(db, request.code, request.gate_id)
