from .drivers import (
    DriverRegisterRequest,
    DriverResponse,
    LocationReportRequest,
    LocationResponse,
    NearbyDriverResponse,
    OpenRequestResponse,
)
from .rides import (
    CancelRequest,
    CandidateResponse,
    Coordinates,
    FareEstimateRequest,
    FareEstimateResponse,
    ProgressResponse,
    RatingRequest,
    RideCreateRequest,
    RideResponse,
)

__all__ = [
    "CancelRequest",
    "CandidateResponse",
    "Coordinates",
    "DriverRegisterRequest",
    "DriverResponse",
    "FareEstimateRequest",
    "FareEstimateResponse",
    "LocationReportRequest",
    "LocationResponse",
    "NearbyDriverResponse",
    "OpenRequestResponse",
    "ProgressResponse",
    "RatingRequest",
    "RideCreateRequest",
    "RideResponse",
]
