from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST

from ridedispatch.metrics import render_metrics

router = APIRouter()


@router.get("/metrics")
def prometheus_metrics() -> Response:
    """Prometheus scrape endpoint (unauthenticated for infrastructure)."""
    return Response(content=render_metrics(), media_type=CONTENT_TYPE_LATEST)
