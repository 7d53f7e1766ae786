from fastapi import APIRouter, Depends

from ridedispatch.api.auth import verify_api_key
from ridedispatch.api.dependencies import ServiceDep
from ridedispatch.api.models import FareEstimateRequest, FareEstimateResponse

router = APIRouter(dependencies=[Depends(verify_api_key)])


@router.post("/estimate", response_model=FareEstimateResponse)
def estimate_fare(body: FareEstimateRequest, service: ServiceDep) -> FareEstimateResponse:
    """Quote a ride before requesting it."""
    estimate = service.estimate(
        body.ride_type, body.pickup.to_domain(), body.destination.to_domain()
    )
    return FareEstimateResponse.from_estimate(estimate)
