"""
Monitor API Endpoints

Manual scans plus the helpers the monitor editor calls while a tenant
types: boolean query validation/explanation and the keyword limit check.
"""
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from mentionradar.api.deps import get_tenant_id
from mentionradar.db.database import get_db
from mentionradar.services import plan_service, search_parser
from mentionradar.services.manual_scan_service import ManualScanService, get_manual_scan_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/monitors", tags=["monitors"])


class QueryRequest(BaseModel):
    query: str = Field("", max_length=1000)


class KeywordsRequest(BaseModel):
    keywords: List[str] = Field(default_factory=list)


class QueryValidationResponse(BaseModel):
    valid: bool
    error: Optional[str] = None
    explanation: str
    required: List[str]
    optional: List[str]
    excluded: List[str]
    filters: Dict[str, List[str]]


class KeywordLimitResponse(BaseModel):
    allowed: bool
    current: int
    limit: int
    message: str
    tier: str


def manual_scan_service(db: Session = Depends(get_db)) -> ManualScanService:
    return get_manual_scan_service(db)


@router.post("/{monitor_id}/scan")
async def trigger_manual_scan(
    monitor_id: str,
    tenant_id: str = Depends(get_tenant_id),
    service: ManualScanService = Depends(manual_scan_service),
) -> JSONResponse:
    """
    Start a scan of one monitor now.

    Returns 202 when accepted, 409 while a scan is running, 429 during the
    plan's cooldown, 400 for a paused monitor and 404 for an unknown one.
    """
    outcome = service.request_manual_scan(tenant_id, monitor_id)
    headers = {}
    if outcome.cooldown_remaining is not None:
        headers["Retry-After"] = str(max(int(outcome.cooldown_remaining.total_seconds()), 1))
    return JSONResponse(status_code=outcome.http_status, content=outcome.to_dict(), headers=headers)


@router.post("/query/validate", response_model=QueryValidationResponse)
async def validate_query(request: QueryRequest) -> Dict[str, Any]:
    validation = search_parser.validate(request.query)
    parsed = search_parser.parse(request.query)
    return {
        "valid": validation.valid,
        "error": validation.error,
        "explanation": parsed.explanation,
        "required": [t.display() for t in parsed.required],
        "optional": [t.display() for t in parsed.optional],
        "excluded": [t.display() for t in parsed.excluded],
        "filters": parsed.filters,
    }


@router.post("/keywords/check", response_model=KeywordLimitResponse)
async def check_keywords(
    request: KeywordsRequest,
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    tier = plan_service.PlanService(db).get_tenant_tier(tenant_id)
    result = plan_service.check_keywords_limit(request.keywords, tier)
    return {
        "allowed": result.allowed,
        "current": result.current,
        "limit": result.limit,
        "message": result.message,
        "tier": tier,
    }
