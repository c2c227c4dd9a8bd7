from __future__ import annotations

import datetime as dt
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict

from .ledger import TripType


class TripResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    type: TripType
    start_km: int
    end_km: int
    distance: int
    start_time: str
    end_time: str
    note: str


class ActiveTripResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    type: TripType
    start_km: int
    start_time: str
    note: str


class LedgerStateResponse(BaseModel):
    current_km: int
    has_baseline: bool
    selected_type: TripType
    active_trip: Optional[ActiveTripResponse] = None


class OdometerRequest(BaseModel):
    km: int


class TripTypeRequest(BaseModel):
    type: TripType


class TripStartRequest(BaseModel):
    note: str = ""


class TripEndRequest(BaseModel):
    end_km: int


class TripUpdateRequest(BaseModel):
    type: TripType
    start_km: int
    end_km: int
    note: Optional[str] = ""


class SummaryBlock(BaseModel):
    business: int
    private: int
    total: int


class SummaryResponse(BaseModel):
    all: SummaryBlock
    week: SummaryBlock
    month: SummaryBlock


class PrivateCostResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    start_date: dt.date
    months: int
    private_km: int
    price: Decimal
    total_cost: Decimal
    cost_per_km: Optional[Decimal]


class SettingsResponse(BaseModel):
    environment: str
    timezone: str
    locale: str
    storage: str
    private_price: Decimal
    start_date: dt.date


class SettingsUpdateRequest(BaseModel):
    private_price: Optional[Decimal] = None
    start_date: Optional[dt.date] = None

