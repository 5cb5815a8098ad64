"""Main API router aggregating all module routers."""

from fastapi import APIRouter

from app.api.v1.endpoints import analytics, courses, students, uploads
from app.schemas.common import ErrorResponse

# Every route needs an institutional bearer token
AUTH_RESPONSES = {
    401: {"model": ErrorResponse, "description": "Missing or invalid bearer token"},
    403: {"model": ErrorResponse, "description": "Not an institutional account"},
}

api_router = APIRouter(responses=AUTH_RESPONSES)

# Grade spreadsheet uploads and upload history
api_router.include_router(
    uploads.router,
    prefix="/uploads",
    tags=["Uploads"],
    responses={400: {"model": ErrorResponse, "description": "Rejected file"}},
)

api_router.include_router(
    students.router,
    prefix="/students",
    tags=["Students"],
)

api_router.include_router(
    courses.router,
    prefix="/courses",
    tags=["Courses"],
)

# Dashboard charts
api_router.include_router(
    analytics.router,
    prefix="/analytics",
    tags=["Analytics"],
)
