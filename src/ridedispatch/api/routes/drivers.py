from typing import Annotated

from fastapi import APIRouter, Depends, Query

from ridedispatch.api.auth import verify_api_key
from ridedispatch.api.dependencies import ActorDep, ServiceDep
from ridedispatch.api.models import (
    DriverRegisterRequest,
    DriverResponse,
    NearbyDriverResponse,
    OpenRequestResponse,
    RideResponse,
)
from ridedispatch.core.exceptions import PermissionDeniedError
from ridedispatch.driver import ActorRole

router = APIRouter(dependencies=[Depends(verify_api_key)])


@router.get("/nearby", response_model=list[NearbyDriverResponse])
def nearby_drivers(
    service: ServiceDep,
    lat: Annotated[float, Query()],
    lon: Annotated[float, Query()],
    radius_km: Annotated[float | None, Query(gt=0, le=50)] = None,
) -> list[NearbyDriverResponse]:
    """Idle, verified drivers around a point, nearest first."""
    return [
        NearbyDriverResponse(driver_id=driver_id, distance_km=distance)
        for driver_id, distance in service.dispatch.find_nearby_drivers(lat, lon, radius_km)
    ]


@router.put("/{driver_id}", response_model=DriverResponse)
def register_driver(
    driver_id: str, body: DriverRegisterRequest, service: ServiceDep
) -> DriverResponse:
    """Create or update a driver's onboarding record."""
    profile = service.register_driver(driver_id, body.verified, set(body.ride_types))
    return DriverResponse.from_profile(profile)


@router.get("/{driver_id}", response_model=DriverResponse)
def get_driver(driver_id: str, service: ServiceDep) -> DriverResponse:
    return DriverResponse.from_profile(service.get_driver(driver_id))


@router.get("/{driver_id}/open-requests", response_model=list[OpenRequestResponse])
def open_requests(
    driver_id: str,
    actor: ActorDep,
    service: ServiceDep,
    radius_km: Annotated[float | None, Query(gt=0, le=50)] = None,
) -> list[OpenRequestResponse]:
    """Searching requests near the driver, nearest pickup first."""
    if actor.role != ActorRole.DRIVER or actor.actor_id != driver_id:
        raise PermissionDeniedError(
            "Drivers may only list their own open requests",
            details={"driver_id": driver_id, "actor_id": actor.actor_id},
        )
    return [
        OpenRequestResponse(ride=RideResponse.from_ride(ride), distance_km=distance)
        for ride, distance in service.dispatch.find_open_requests(driver_id, radius_km)
    ]
