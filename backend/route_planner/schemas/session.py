from typing import Literal

from pydantic import BaseModel, Field


class LatLngModel(BaseModel):
    lat: float
    lng: float


class SessionOpen(BaseModel):
    company_key: str
    order_id: int


class StopInfo(BaseModel):
    id: int
    name: str
    address: str
    location: LatLngModel
    role: Literal["pickup", "dropoff"]
    depends_on: list[int] = []


class SegmentInfo(BaseModel):
    from_id: int
    to_id: int
    waypoints: list[LatLngModel] = []
    distance_m: float
    duration_s: float
    static_duration_s: float
    geometry: list[list[float]] = []  # [[lat, lng], ...], simplified for display


class SessionDetail(BaseModel):
    company_key: str
    order_id: int
    state: str
    origin: StopInfo | None = None
    destination: StopInfo | None = None
    stops: list[StopInfo] = []
    segments: list[SegmentInfo] = []
    dirty: list[int] = []
    editing_id: int | None = None


class ReorderRequest(BaseModel):
    stop_id: int
    new_index: int = Field(ge=0)


class MoveRequest(BaseModel):
    stop_id: int
    direction: Literal["up", "down"]


class EditRequest(BaseModel):
    waypoints: list[LatLngModel] = []


class Viewport(BaseModel):
    low: LatLngModel
    high: LatLngModel


class FinalizeResponse(BaseModel):
    encoded_polyline: str
    ordered_points: list[LatLngModel]
    distance_m: float
    duration_s: float
    viewport: Viewport
    saved: bool
