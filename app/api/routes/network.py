from fastapi import APIRouter, Depends, HTTPException, Request

from app.core.config import settings
from app.network.client_ip import describe_ip_headers
from app.network.models import Classification
from app.api.routes.deps import get_classification
from app.schemas.unlock import CarrierOut, NetworkOut


router = APIRouter(tags=["network"])


def _network_out(classification: Classification) -> NetworkOut:
    carrier = classification.carrier
    return NetworkOut(
        network_type=classification.network_type.value,
        is_mobile=classification.is_mobile,
        carrier=CarrierOut(**carrier.model_dump()) if carrier else None,
        ip=classification.ip,
    )


@router.get("/network/detect", response_model=NetworkOut)
def detect_network(classification: Classification = Depends(get_classification)) -> NetworkOut:
    """Whether the caller is on mobile data (the only billable network type)."""
    return _network_out(classification)


@router.get("/debug/ip")
def debug_ip(request: Request, classification: Classification = Depends(get_classification)) -> dict:
    """Raw IP headers plus classification. Not available in production."""
    if settings.is_production:
        raise HTTPException(status_code=404, detail="Not Found")
    return {
        "headers": describe_ip_headers(request),
        "resolved_ip": classification.ip,
        "classification": _network_out(classification).model_dump(),
    }
