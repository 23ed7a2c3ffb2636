"""OTP HTTP endpoints.

Endpoints
---------
POST /otp/send     → issue a code and deliver it by SMS or email
POST /otp/verify   → check a code (single use, any outcome consumes it)
"""

from __future__ import annotations

import logging
from typing import Literal

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from clinic_otp.services.verification import OtpOutcome, VerificationGate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/otp", tags=["otp"])


# ── Request / response models ────────────────────────────

class OTPSendRequest(BaseModel):
    target: str = Field(min_length=1, max_length=320)
    method: Literal["phone", "email"]


class OTPVerifyRequest(BaseModel):
    target: str = Field(min_length=1, max_length=320)
    otp: str = Field(min_length=1, max_length=16)
    method: Literal["phone", "email"]


class OTPResponse(BaseModel):
    success: bool
    message: str


def get_gate(request: Request) -> VerificationGate:
    """The gate wired onto the application at startup."""
    return request.app.state.gate


def _respond(outcome: OtpOutcome) -> JSONResponse:
    body = OTPResponse(success=outcome.success, message=outcome.message)
    return JSONResponse(status_code=outcome.status_code, content=body.model_dump())


# ── Endpoints ────────────────────────────────────────────

@router.post(
    "/send",
    response_model=OTPResponse,
    responses={400: {"model": OTPResponse}, 500: {"model": OTPResponse}},
)
async def send_otp(body: OTPSendRequest, gate: VerificationGate = Depends(get_gate)):
    """Generate a code for the target and send it over the chosen method."""
    outcome = await gate.request_code(body.target, body.method)
    return _respond(outcome)


@router.post(
    "/verify",
    response_model=OTPResponse,
    responses={400: {"model": OTPResponse}},
)
async def verify_otp(body: OTPVerifyRequest, gate: VerificationGate = Depends(get_gate)):
    """Validate a code for the target."""
    outcome = await gate.verify_code(body.target, body.otp, body.method)
    if outcome.success:
        logger.info("OTP verified for %s", outcome.record.target)
    else:
        logger.info("OTP verification failed for %r: %s", body.target, outcome.message)
    return _respond(outcome)
