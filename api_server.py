from __future__ import annotations

import hmac
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Literal, Optional

from fastapi import Body, Depends, FastAPI, Header, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from availability.assignment import MAX_BATCH_ASSIGNMENTS, auto_assign_room, batch_assign_facilities
from availability.categories import upsert_facility_type
from availability.holds import (
    cancel_temporary_reservation,
    cleanup_expired_temporary_reservations,
    confirm_temporary_reservation,
    create_temporary_reservation,
    get_temporary_reservation,
    get_temporary_reservations_by_session,
)
from availability.overlap import check_facility_availability, to_utc
from availability.pricing import quote_reservation_pricing
from availability.rules import update_reservation_status
from availability.scheduler import shutdown_sweep_scheduler, start_sweep_scheduler
from availability.schema import (
    AvailabilitySearchRequest,
    BatchAssignmentItem,
    DateOverrides,
    ErrorCode,
    HoldRequest,
    OperationResult,
    PricingQuoteRequest,
    ReservationOverrides,
    StatusChangeRequest,
    SweepResult,
)
from availability.service import get_available_facility_types, search_availability
from config import get_settings
from db.session import validate_db_compatibility

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

APP_NAME = settings.app_name
APP_VERSION = settings.app_version
API_KEY_HEADER = "X-API-Key"
ADMIN_API_KEY_HEADER = "X-Admin-API-Key"

ERROR_STATUS_CODES = {
    ErrorCode.VALIDATION_ERROR: 422,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.INVALID_STATE: 400,
    ErrorCode.NO_AVAILABILITY: 409,
    ErrorCode.CONFLICT: 409,
    ErrorCode.EXPIRED: 409,
    ErrorCode.TIMEOUT: 504,
    ErrorCode.DATABASE_ERROR: 500,
}


def verify_api_key(x_api_key: Optional[str] = Header(default=None, alias=API_KEY_HEADER)):
    if not x_api_key or not hmac.compare_digest(x_api_key, settings.availability_api_key):
        raise HTTPException(status_code=401, detail="Invalid or missing API key.")


def verify_admin_api_key(x_admin_api_key: Optional[str] = Header(default=None, alias=ADMIN_API_KEY_HEADER)):
    if not x_admin_api_key or not hmac.compare_digest(x_admin_api_key, settings.admin_api_key):
        raise HTTPException(status_code=401, detail="Invalid or missing admin API key.")


def respond(result: OperationResult) -> JSONResponse:
    status_code = 200
    if not result.success:
        status_code = ERROR_STATUS_CODES.get(result.error_code, 400)
    return JSONResponse(status_code=status_code, content=result.model_dump(mode="json"))


class HealthResponse(BaseModel):
    status: Literal["ok", "error"]
    service: str
    version: str


class BatchAssignmentRequest(BaseModel):
    assignments: list[BatchAssignmentItem] = Field(min_length=1, max_length=MAX_BATCH_ASSIGNMENTS)


class AvailableTypesResponse(BaseModel):
    facility_types: list[str]


@asynccontextmanager
async def lifespan(_app: FastAPI):
    validate_db_compatibility()
    start_sweep_scheduler(interval_minutes=settings.hold_sweep_interval_minutes)
    yield
    shutdown_sweep_scheduler()


app = FastAPI(title=APP_NAME, version=APP_VERSION, lifespan=lifespan)


@app.get("/health/live", response_model=HealthResponse)
def health_live():
    return HealthResponse(status="ok", service=APP_NAME, version=APP_VERSION)


@app.get("/health/ready", response_model=HealthResponse)
def health_ready():
    try:
        validate_db_compatibility()
    except Exception as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return HealthResponse(status="ok", service=APP_NAME, version=APP_VERSION)


@app.post("/v1/availability/search", dependencies=[Depends(verify_api_key)])
def availability_search(request: AvailabilitySearchRequest):
    return respond(search_availability(request.model_dump(mode="json")))


@app.get("/v1/availability/types", response_model=AvailableTypesResponse, dependencies=[Depends(verify_api_key)])
def available_types(start: datetime, end: datetime, organization_id: Optional[str] = None):
    start_utc, end_utc = to_utc(start), to_utc(end)
    if end_utc < start_utc:
        raise HTTPException(status_code=422, detail="Reservation end date cannot be before reservation start date.")
    return AvailableTypesResponse(
        facility_types=get_available_facility_types(start_utc, end_utc, organization_id=organization_id)
    )


@app.get("/v1/facilities/{facility_id}/availability", dependencies=[Depends(verify_api_key)])
def facility_availability(facility_id: str, start: datetime, end: datetime):
    return respond(check_facility_availability(facility_id, start, end))


@app.post("/v1/reservations/assign-batch", dependencies=[Depends(verify_api_key)])
def assign_batch(request: BatchAssignmentRequest):
    return respond(batch_assign_facilities(request.assignments))


@app.post("/v1/reservations/{reservation_id}/assign", dependencies=[Depends(verify_api_key)])
def assign_reservation(reservation_id: str, request: Optional[DateOverrides] = None):
    overrides = request or DateOverrides()
    return respond(
        auto_assign_room(
            reservation_id,
            check_in_date=overrides.check_in_date,
            check_out_date=overrides.check_out_date,
        )
    )


@app.post("/v1/reservations/{reservation_id}/status", dependencies=[Depends(verify_api_key)])
def change_reservation_status(reservation_id: str, request: StatusChangeRequest):
    return respond(update_reservation_status(reservation_id, request.status))


@app.post("/v1/pricing/quote", dependencies=[Depends(verify_api_key)])
def pricing_quote(request: PricingQuoteRequest):
    return respond(
        quote_reservation_pricing(
            request.facility_type_id,
            request.reservation_date,
            request.reservation_end_date,
            rate_type_id=request.rate_type_id,
            base_price_override=request.base_price_override,
            unit=request.unit,
        )
    )


@app.post("/v1/holds", dependencies=[Depends(verify_api_key)])
def create_hold(request: HoldRequest):
    return respond(create_temporary_reservation(request.model_dump(mode="json")))


@app.get("/v1/holds/session/{session_id}", dependencies=[Depends(verify_api_key)])
def holds_for_session(session_id: str):
    return respond(get_temporary_reservations_by_session(session_id))


@app.get("/v1/holds/{hold_id}", dependencies=[Depends(verify_api_key)])
def get_hold(hold_id: str):
    return respond(get_temporary_reservation(hold_id))


@app.post("/v1/holds/{hold_id}/confirm", dependencies=[Depends(verify_api_key)])
def confirm_hold(hold_id: str, request: Optional[ReservationOverrides] = None):
    return respond(confirm_temporary_reservation(hold_id, request))


@app.post("/v1/holds/{hold_id}/cancel", dependencies=[Depends(verify_api_key)])
def cancel_hold(hold_id: str):
    return respond(cancel_temporary_reservation(hold_id))


@app.post("/v1/admin/holds/sweep", response_model=SweepResult, dependencies=[Depends(verify_admin_api_key)])
def admin_sweep_holds():
    return cleanup_expired_temporary_reservations()


@app.post("/v1/admin/facility-types", dependencies=[Depends(verify_admin_api_key)])
def admin_upsert_facility_type(payload: dict[str, Any] = Body(...)):
    return respond(upsert_facility_type(payload))
