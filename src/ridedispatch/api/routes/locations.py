from fastapi import APIRouter, Depends, Response

from ridedispatch.api.auth import verify_api_key
from ridedispatch.api.dependencies import ActorDep, ServiceDep
from ridedispatch.api.models import LocationReportRequest, LocationResponse
from ridedispatch.driver import ActorRole

router = APIRouter(dependencies=[Depends(verify_api_key)])


@router.post("", response_model=LocationResponse)
def report_location(
    body: LocationReportRequest, actor: ActorDep, service: ServiceDep
) -> LocationResponse:
    """Record the caller's position; the response says when to report next."""
    location = service.telemetry.report(actor.actor_id, body.lat, body.lon, actor.role)
    in_ride = False
    if actor.role == ActorRole.DRIVER:
        in_ride = service.get_driver(actor.actor_id).current_ride_id is not None
    return LocationResponse(
        actor_id=location.actor_id,
        role=location.role,
        lat=location.lat,
        lon=location.lon,
        updated_at=location.updated_at,
        next_report_in_seconds=service.telemetry.report_interval(actor.role, in_ride),
    )


@router.delete("", status_code=204)
def go_offline(actor: ActorDep, service: ServiceDep) -> Response:
    service.telemetry.mark_offline(actor.actor_id, actor.role)
    return Response(status_code=204)
