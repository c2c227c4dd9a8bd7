from __future__ import annotations

import functools
import logging
from threading import Lock
from typing import Any, Callable, TypeVar

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse

from .clock import SystemClock
from .config import settings
from .exports import MEDIA_TYPES, export_trips
from .ledger import LedgerError, LedgerResult, TripLedger
from .reports import LOCAL_TZ, private_cost_analysis, summarize_all, summarize_month, summarize_week
from .schemas import (
    ActiveTripResponse,
    LedgerStateResponse,
    OdometerRequest,
    PrivateCostResponse,
    SettingsResponse,
    SettingsUpdateRequest,
    SummaryResponse,
    TripEndRequest,
    TripResponse,
    TripStartRequest,
    TripTypeRequest,
    TripUpdateRequest,
)
from .state import RuntimeState
from .storage import build_store

logger = logging.getLogger(__name__)

_ERROR_STATUS = {
    LedgerError.TRIP_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    LedgerError.NO_ACTIVE_TRIP: status.HTTP_404_NOT_FOUND,
    LedgerError.TRIP_ALREADY_ACTIVE: status.HTTP_409_CONFLICT,
    LedgerError.STORAGE_ERROR: status.HTTP_503_SERVICE_UNAVAILABLE,
}


trip_ledger = TripLedger(build_store(settings), SystemClock(), RuntimeState(settings))
trip_ledger.initialize()

app = FastAPI(title=settings.app_name)
app.state.ledger = trip_ledger
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://127.0.0.1:5173", "http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"]
)

_ledger_lock = Lock()

Route = TypeVar("Route", bound=Callable[..., Any])


def get_ledger(request: Request) -> TripLedger:
    return request.app.state.ledger


def serialized(func: Route) -> Route:
    """Run a route body under the ledger lock, inside the worker thread that runs it."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        with _ledger_lock:
            return func(*args, **kwargs)

    return wrapper  # type: ignore[return-value]


def _raise_for(result: LedgerResult) -> None:
    if result:
        return
    status_code = _ERROR_STATUS.get(result.error, status.HTTP_400_BAD_REQUEST)
    raise HTTPException(
        status_code=status_code,
        detail={"error": result.error.value if result.error else "", "detail": result.detail},
    )


def _state_response(ledger: TripLedger) -> LedgerStateResponse:
    return LedgerStateResponse(
        current_km=ledger.current_km,
        has_baseline=ledger.has_baseline,
        selected_type=ledger.selected_type,
        active_trip=ActiveTripResponse.model_validate(ledger.active_trip) if ledger.active_trip else None,
    )


def _settings_response(ledger: TripLedger) -> SettingsResponse:
    snapshot = ledger.state.snapshot()
    return SettingsResponse(
        environment=settings.environment,
        timezone=settings.timezone,
        locale=settings.locale,
        storage=settings.storage_backend,
        private_price=snapshot["private_price"],
        start_date=snapshot["start_date"],
    )


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/state", response_model=LedgerStateResponse)
@serialized
def read_state(ledger: TripLedger = Depends(get_ledger)) -> LedgerStateResponse:
    return _state_response(ledger)


@app.put("/odometer/baseline", response_model=LedgerStateResponse)
@serialized
def set_baseline(payload: OdometerRequest, ledger: TripLedger = Depends(get_ledger)) -> LedgerStateResponse:
    _raise_for(ledger.set_baseline(payload.km))
    return _state_response(ledger)


@app.put("/odometer", response_model=LedgerStateResponse)
@serialized
def update_odometer(payload: OdometerRequest, ledger: TripLedger = Depends(get_ledger)) -> LedgerStateResponse:
    _raise_for(ledger.update_odometer(payload.km))
    return _state_response(ledger)


@app.put("/trip-type", response_model=LedgerStateResponse)
@serialized
def select_trip_type(payload: TripTypeRequest, ledger: TripLedger = Depends(get_ledger)) -> LedgerStateResponse:
    ledger.select_type(payload.type)
    return _state_response(ledger)


@app.post("/trips/start", response_model=ActiveTripResponse, status_code=status.HTTP_201_CREATED)
@serialized
def start_trip(payload: TripStartRequest, ledger: TripLedger = Depends(get_ledger)) -> ActiveTripResponse:
    result = ledger.start_trip(payload.note)
    _raise_for(result)
    return ActiveTripResponse.model_validate(result.trip)


@app.post("/trips/end", response_model=TripResponse)
@serialized
def end_trip(payload: TripEndRequest, ledger: TripLedger = Depends(get_ledger)) -> TripResponse:
    result = ledger.end_trip(payload.end_km)
    _raise_for(result)
    return TripResponse.model_validate(result.trip)


@app.get("/trips", response_model=list[TripResponse])
@serialized
def list_trips(ledger: TripLedger = Depends(get_ledger)) -> list[TripResponse]:
    return [TripResponse.model_validate(trip) for trip in ledger.trips]


@app.delete("/trips", status_code=status.HTTP_204_NO_CONTENT)
@serialized
def clear_trips(ledger: TripLedger = Depends(get_ledger)) -> Response:
    _raise_for(ledger.clear_all_trips())
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.get("/trips/{trip_id}", response_model=TripResponse)
@serialized
def read_trip(trip_id: int, ledger: TripLedger = Depends(get_ledger)) -> TripResponse:
    trip = ledger.find_by_id(trip_id)
    if trip is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": LedgerError.TRIP_NOT_FOUND.value, "detail": f"no trip with id {trip_id}"},
        )
    return TripResponse.model_validate(trip)


@app.patch("/trips/{trip_id}", response_model=TripResponse)
@serialized
def update_trip(
    trip_id: int,
    payload: TripUpdateRequest,
    ledger: TripLedger = Depends(get_ledger),
) -> TripResponse:
    result = ledger.update_trip(trip_id, payload.type, payload.start_km, payload.end_km, payload.note)
    _raise_for(result)
    return TripResponse.model_validate(result.trip)


@app.delete("/trips/{trip_id}", status_code=status.HTTP_204_NO_CONTENT)
@serialized
def delete_trip(trip_id: int, ledger: TripLedger = Depends(get_ledger)) -> Response:
    _raise_for(ledger.delete_trip(trip_id))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.post("/reset", response_model=LedgerStateResponse)
@serialized
def reset_all(ledger: TripLedger = Depends(get_ledger)) -> LedgerStateResponse:
    _raise_for(ledger.reset_all())
    return _state_response(ledger)


@app.get("/summary", response_model=SummaryResponse)
@serialized
def read_summary(ledger: TripLedger = Depends(get_ledger)) -> SummaryResponse:
    now = ledger.now()
    return SummaryResponse(
        all=summarize_all(ledger.trips).as_dict(),
        week=summarize_week(ledger.trips, now).as_dict(),
        month=summarize_month(ledger.trips, now).as_dict(),
    )


@app.get("/analysis/private-cost", response_model=PrivateCostResponse)
@serialized
def read_private_cost(ledger: TripLedger = Depends(get_ledger)) -> PrivateCostResponse:
    snapshot = ledger.state.snapshot()
    today = ledger.now().astimezone(LOCAL_TZ).date()
    analysis = private_cost_analysis(ledger.trips, snapshot["private_price"], snapshot["start_date"], today)
    return PrivateCostResponse.model_validate(analysis)


@app.get("/exports/{kind}")
@serialized
def download_export(
    kind: str,
    export_format: str = Query("csv", alias="format"),
    ledger: TripLedger = Depends(get_ledger),
) -> Response:
    path = export_trips(ledger.trips, kind, export_format, ledger.now())
    return FileResponse(path, media_type=MEDIA_TYPES[export_format], filename=path.name)


@app.get("/settings", response_model=SettingsResponse)
@serialized
def read_settings(ledger: TripLedger = Depends(get_ledger)) -> SettingsResponse:
    return _settings_response(ledger)


@app.put("/settings", response_model=SettingsResponse)
@serialized
def write_settings(payload: SettingsUpdateRequest, ledger: TripLedger = Depends(get_ledger)) -> SettingsResponse:
    updates = payload.model_dump(exclude_unset=True)
    _raise_for(ledger.update_settings(updates.get("private_price"), updates.get("start_date")))
    return _settings_response(ledger)
