# geotrack/routers/tracking.py
from fastapi import APIRouter, Depends, HTTPException, Request

from ..core.errors import PermissionDenied
from ..schemas.location import LocationSample
from ..schemas.tracking import TrackingState
from ..services.tracker import LocationTracker

router = APIRouter(prefix="/tracking", tags=["tracking"])


def get_tracker(request: Request) -> LocationTracker:
    return request.app.state.tracker


@router.get("", response_model=TrackingState)
async def tracking_state(tracker: LocationTracker = Depends(get_tracker)):
    return tracker.snapshot()


@router.post("/start", response_model=TrackingState)
async def start_tracking(tracker: LocationTracker = Depends(get_tracker)):
    try:
        return await tracker.start()
    except PermissionDenied as e:
        raise HTTPException(status_code=403, detail=e.message)


@router.post("/stop", response_model=TrackingState)
async def stop_tracking(tracker: LocationTracker = Depends(get_tracker)):
    return await tracker.stop()


@router.get("/last-known", response_model=LocationSample)
async def last_known(tracker: LocationTracker = Depends(get_tracker)):
    sample = await tracker.last_known()
    if sample is None:
        raise HTTPException(status_code=404, detail="No location known yet")
    return sample
