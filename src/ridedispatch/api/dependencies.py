"""FastAPI dependency injection providers."""

from typing import Annotated, Any

from fastapi import Depends, Header, Request

from ridedispatch.driver import Actor, ActorRole


def get_service(request: Request) -> Any:
    """Retrieve RideService from app state."""
    return request.app.state.service


def get_actor(
    x_actor_id: Annotated[str, Header(min_length=1)],
    x_actor_role: Annotated[ActorRole, Header()],
) -> Actor:
    """Caller identity as asserted by the gateway."""
    return Actor(actor_id=x_actor_id, role=x_actor_role)


ServiceDep = Annotated[Any, Depends(get_service)]
ActorDep = Annotated[Actor, Depends(get_actor)]
