from fastapi import APIRouter, Depends

from ridedispatch.api.auth import verify_api_key
from ridedispatch.api.dependencies import ActorDep, ServiceDep
from ridedispatch.api.models import (
    CancelRequest,
    CandidateResponse,
    ProgressResponse,
    RatingRequest,
    RideCreateRequest,
    RideResponse,
)
from ridedispatch.core.exceptions import PermissionDeniedError
from ridedispatch.driver import Actor, ActorRole
from ridedispatch.ride import RideRequest, RideStatus

router = APIRouter(dependencies=[Depends(verify_api_key)])


def require_role(actor: Actor, role: ActorRole) -> None:
    if actor.role != role:
        raise PermissionDeniedError(
            f"Only {role.value}s may do this", details={"actor_id": actor.actor_id}
        )


def check_can_view(ride: RideRequest, actor: Actor) -> None:
    """Parties may always view a ride; drivers may also view open requests."""
    if actor.role == ActorRole.RIDER and actor.actor_id == ride.rider_id:
        return
    if actor.role == ActorRole.DRIVER and (
        actor.actor_id == ride.driver_id or ride.status == RideStatus.SEARCHING
    ):
        return
    raise PermissionDeniedError(
        f"Actor {actor.actor_id} may not view ride {ride.id}",
        details={"ride_id": ride.id, "actor_id": actor.actor_id},
    )


@router.post("", response_model=RideResponse, status_code=201)
def request_ride(body: RideCreateRequest, actor: ActorDep, service: ServiceDep) -> RideResponse:
    """Request a ride; it starts out searching for a driver."""
    require_role(actor, ActorRole.RIDER)
    ride = service.request_ride(
        actor.actor_id,
        body.pickup.to_domain(),
        body.destination.to_domain(),
        body.ride_type,
        body.destination_address,
    )
    return RideResponse.from_ride(ride)


@router.get("", response_model=list[RideResponse])
def list_rides(actor: ActorDep, service: ServiceDep) -> list[RideResponse]:
    """The caller's rides, newest first."""
    if actor.role == ActorRole.RIDER:
        rides = service.rides_for_rider(actor.actor_id)
    else:
        rides = service.rides_for_driver(actor.actor_id)
    return [RideResponse.from_ride(ride) for ride in rides]


@router.get("/{ride_id}", response_model=RideResponse)
def get_ride(ride_id: str, actor: ActorDep, service: ServiceDep) -> RideResponse:
    ride = service.get_ride(ride_id)
    check_can_view(ride, actor)
    return RideResponse.from_ride(ride)


@router.get("/{ride_id}/candidates", response_model=list[CandidateResponse])
def get_candidates(ride_id: str, actor: ActorDep, service: ServiceDep) -> list[CandidateResponse]:
    """Idle drivers near the pickup, nearest first."""
    ride = service.get_ride(ride_id)
    if actor.role != ActorRole.RIDER or actor.actor_id != ride.rider_id:
        raise PermissionDeniedError(
            "Only the ride's rider may list candidates",
            details={"ride_id": ride_id, "actor_id": actor.actor_id},
        )
    return [
        CandidateResponse(driver_id=driver_id, distance_km=distance)
        for driver_id, distance in service.dispatch.find_candidates(ride_id)
    ]


@router.post("/{ride_id}/accept", response_model=RideResponse)
def accept_ride(ride_id: str, actor: ActorDep, service: ServiceDep) -> RideResponse:
    require_role(actor, ActorRole.DRIVER)
    return RideResponse.from_ride(service.dispatch.accept(ride_id, actor.actor_id))


@router.post("/{ride_id}/arrived", response_model=RideResponse)
def mark_arrived(ride_id: str, actor: ActorDep, service: ServiceDep) -> RideResponse:
    return RideResponse.from_ride(service.lifecycle.mark_arrived(ride_id, actor))


@router.post("/{ride_id}/start", response_model=RideResponse)
def start_ride(ride_id: str, actor: ActorDep, service: ServiceDep) -> RideResponse:
    return RideResponse.from_ride(service.lifecycle.start_ride(ride_id, actor))


@router.post("/{ride_id}/complete", response_model=RideResponse)
def complete_ride(ride_id: str, actor: ActorDep, service: ServiceDep) -> RideResponse:
    return RideResponse.from_ride(service.lifecycle.complete_ride(ride_id, actor))


@router.post("/{ride_id}/cancel", response_model=RideResponse)
def cancel_ride(
    ride_id: str, actor: ActorDep, service: ServiceDep, body: CancelRequest | None = None
) -> RideResponse:
    reason = body.reason if body else None
    return RideResponse.from_ride(service.lifecycle.cancel(ride_id, actor, reason))


@router.post("/{ride_id}/rating", response_model=RideResponse)
def rate_ride(
    ride_id: str, body: RatingRequest, actor: ActorDep, service: ServiceDep
) -> RideResponse:
    return RideResponse.from_ride(service.lifecycle.rate_driver(ride_id, actor, body.stars))


@router.get("/{ride_id}/progress", response_model=ProgressResponse)
def get_progress(ride_id: str, actor: ActorDep, service: ServiceDep) -> ProgressResponse:
    return ProgressResponse.from_progress(service.lifecycle.progress(ride_id, actor))
