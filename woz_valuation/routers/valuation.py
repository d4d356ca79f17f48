import json

from fastapi import APIRouter, Depends, Header, HTTPException, Request, Response

from ..schemas import HealthResponse, PropertyRequest, PropertyResponse, ValuationResponse
from ..services.property_service import PropertyService
from ..core.config import settings
from ..core.errors import InvalidInput, SourceUnavailable
from ..core.security import require_api_key, rate_limit
from ..core.utils import weak_etag
from ..data.base import PropertyRecord, Source

router = APIRouter()

DISCLAIMER = "This valuation is an estimate and not a financial appraisal."

def service_dep(request: Request) -> PropertyService:
    # Built once in the app lifespan; owns the browser session and cache.
    return request.app.state.service

def _property_payload(record: PropertyRecord) -> dict:
    payload = record.to_dict()
    payload["estimated"] = record.data_source == Source.ESTIMATE.value
    return payload

async def _property_or_error(svc: PropertyService, body: PropertyRequest) -> PropertyRecord:
    try:
        return await svc.get_property_data(body.address, body.postal_code)
    except InvalidInput as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SourceUnavailable:
        raise HTTPException(status_code=503, detail="Assessed value source unavailable, try again later")

@router.post("/property", response_model=PropertyResponse)
async def post_property(
    body: PropertyRequest,
    _auth = Depends(require_api_key),
    _lim  = Depends(rate_limit),
    svc: PropertyService = Depends(service_dep),
):
    record = await _property_or_error(svc, body)
    return _property_payload(record)

@router.post("/valuation", response_model=ValuationResponse)
async def post_valuation(
    body: PropertyRequest,
    response: Response,
    if_none_match: str | None = Header(default=None, alias="if-none-match"),
    _auth = Depends(require_api_key),     # API key guard
    _lim  = Depends(rate_limit),          # Rate limiting
    svc: PropertyService = Depends(service_dep),
):
    record = await _property_or_error(svc, body)
    valuation = await svc.calculate_valuation(record)

    payload = valuation.to_dict()
    payload.update(
        address=record.address,
        postal_code=record.postal_code,
        currency=settings.DEFAULT_CURRENCY,
        estimated=record.data_source == Source.ESTIMATE.value,
        disclaimer=DISCLAIMER,
    )
    etag = weak_etag(json.dumps(payload, separators=(',',':'), sort_keys=True, default=str).encode("utf-8"))
    if if_none_match and if_none_match == etag:
        return Response(status_code=304, headers={"ETag": etag})
    payload["etag"] = etag
    response.headers["ETag"] = etag
    return payload

@router.get("/valuation/health", response_model=HealthResponse)
async def valuation_health(svc: PropertyService = Depends(service_dep)):
    return await svc.health_check()
