from __future__ import annotations

from fastapi import APIRouter, Request
from pydantic import BaseModel

from coworkhub.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from coworkhub.apps.api.response import SuccessEnvelope, success_response
from coworkhub.core.config import get_settings

router = APIRouter(tags=["health"], responses=DEFAULT_ERROR_RESPONSES)


class HealthResponse(BaseModel):
    status: str
    service: str


@router.get("/health", response_model=SuccessEnvelope[HealthResponse] | HealthResponse)
async def health(request: Request) -> dict:
    # Public liveness check; no auth and no database access.
    payload = HealthResponse(status="ok", service=get_settings().app_name)
    return success_response(request=request, data=payload)
