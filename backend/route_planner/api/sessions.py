"""Route planning session REST API endpoints."""

import logging

from fastapi import APIRouter, HTTPException, Response

from route_planner.config import settings
from route_planner.core.engine import RouteOrderingEngine
from route_planner.core.models import LatLng, SessionConfig, Stop
from route_planner.core.simplifier import simplify
from route_planner.schemas.session import (
    EditRequest,
    FinalizeResponse,
    LatLngModel,
    MoveRequest,
    ReorderRequest,
    SegmentInfo,
    SessionDetail,
    SessionOpen,
    StopInfo,
    Viewport,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sessions", tags=["sessions"])

# Will be set by main.py
planner = None


def _planner():
    if planner is None:
        raise HTTPException(status_code=503, detail="Planner not initialized")
    return planner


def _latlng(p: LatLng) -> LatLngModel:
    return LatLngModel(lat=p.lat, lng=p.lng)


def _stop_info(stop: Stop | None) -> StopInfo | None:
    if stop is None:
        return None
    return StopInfo(
        id=stop.id,
        name=stop.name,
        address=stop.address,
        location=_latlng(stop.location),
        role=stop.role,
        depends_on=sorted(stop.depends_on),
    )


def _detail(config: SessionConfig, engine: RouteOrderingEngine) -> SessionDetail:
    segments = []
    for seg in engine.segments:
        shown = simplify(seg.geometry, settings.display_simplify_tolerance)
        segments.append(SegmentInfo(
            from_id=seg.from_id,
            to_id=seg.to_id,
            waypoints=[_latlng(p) for p in seg.waypoints],
            distance_m=seg.distance_m,
            duration_s=seg.duration_s,
            static_duration_s=seg.static_duration_s,
            geometry=[[p.lat, p.lng] for p in shown],
        ))
    return SessionDetail(
        company_key=config.company_key,
        order_id=config.order_id,
        state=engine.state.value,
        origin=_stop_info(engine.origin),
        destination=_stop_info(engine.destination),
        stops=[_stop_info(s) for s in engine.stops],
        segments=segments,
        dirty=sorted(engine.dirty),
        editing_id=engine.editing_id,
    )


@router.post("", response_model=SessionDetail, status_code=201)
async def open_session(body: SessionOpen):
    """Load an order's stops and resolve its initial route."""
    config = SessionConfig(body.company_key, body.order_id)
    engine = await _planner().open_session(config)
    return _detail(config, engine)


@router.get("/{company_key}/{order_id}", response_model=SessionDetail)
async def get_session(company_key: str, order_id: int):
    config = SessionConfig(company_key, order_id)
    return _detail(config, _planner().get_session(config))


@router.delete("/{company_key}/{order_id}", status_code=204)
async def close_session(company_key: str, order_id: int):
    _planner().close_session(SessionConfig(company_key, order_id))
    return Response(status_code=204)


@router.post("/{company_key}/{order_id}/reorder", response_model=SessionDetail)
async def reorder(company_key: str, order_id: int, body: ReorderRequest):
    """Drag-and-drop a stop to a new position (validated, not yet committed)."""
    config = SessionConfig(company_key, order_id)
    p = _planner()
    engine = p.get_session(config)
    engine.propose_reorder(body.stop_id, body.new_index)
    p.notify(config)
    return _detail(config, engine)


@router.post("/{company_key}/{order_id}/commit", response_model=SessionDetail)
async def commit(company_key: str, order_id: int):
    """Resolve paths for every pair of stops that became adjacent."""
    config = SessionConfig(company_key, order_id)
    p = _planner()
    engine = p.get_session(config)
    try:
        await engine.commit_reorder()
    finally:
        p.notify(config)
    return _detail(config, engine)


@router.post("/{company_key}/{order_id}/move", response_model=SessionDetail)
async def move(company_key: str, order_id: int, body: MoveRequest):
    """Swap a stop with its neighbour above or below."""
    config = SessionConfig(company_key, order_id)
    p = _planner()
    engine = p.get_session(config)
    try:
        await engine.move_point(body.direction, body.stop_id)
    finally:
        p.notify(config)
    return _detail(config, engine)


@router.post("/{company_key}/{order_id}/reset", response_model=SessionDetail)
async def reset(company_key: str, order_id: int):
    """Drop all changes and reload the upstream-optimized order."""
    config = SessionConfig(company_key, order_id)
    engine = await _planner().reset_session(config)
    return _detail(config, engine)


@router.post("/{company_key}/{order_id}/segments/{stop_id}/edit", response_model=SessionDetail)
async def begin_edit(company_key: str, order_id: int, stop_id: int):
    config = SessionConfig(company_key, order_id)
    p = _planner()
    engine = p.get_session(config)
    engine.begin_edit(stop_id)
    p.notify(config)
    return _detail(config, engine)


@router.put("/{company_key}/{order_id}/segments/{stop_id}/edit", response_model=SessionDetail)
async def end_edit(company_key: str, order_id: int, stop_id: int, body: EditRequest):
    """Re-resolve the path to a stop through the dispatcher's waypoints."""
    config = SessionConfig(company_key, order_id)
    p = _planner()
    engine = p.get_session(config)
    await engine.end_edit(stop_id, [LatLng(w.lat, w.lng) for w in body.waypoints])
    p.notify(config)
    return _detail(config, engine)


@router.delete("/{company_key}/{order_id}/segments/{stop_id}/edit", response_model=SessionDetail)
async def cancel_edit(company_key: str, order_id: int, stop_id: int):
    config = SessionConfig(company_key, order_id)
    p = _planner()
    engine = p.get_session(config)
    engine.cancel_edit(stop_id)
    p.notify(config)
    return _detail(config, engine)


@router.delete("/{company_key}/{order_id}/segments/{stop_id}/waypoints", response_model=SessionDetail)
async def clear_waypoints(company_key: str, order_id: int, stop_id: int):
    config = SessionConfig(company_key, order_id)
    p = _planner()
    engine = p.get_session(config)
    await engine.clear_waypoints(stop_id)
    p.notify(config)
    return _detail(config, engine)


@router.post("/{company_key}/{order_id}/finalize", response_model=FinalizeResponse)
async def finalize(company_key: str, order_id: int):
    """Concatenate, encode and save the route."""
    config = SessionConfig(company_key, order_id)
    route, saved = await _planner().finalize_and_save(config)
    low, high = route.viewport
    return FinalizeResponse(
        encoded_polyline=route.encoded_polyline,
        ordered_points=[_latlng(p) for p in route.ordered_locations],
        distance_m=route.distance_m,
        duration_s=route.duration_s,
        viewport=Viewport(low=_latlng(low), high=_latlng(high)),
        saved=saved,
    )
