# geotrack/routers/permissions.py
from fastapi import APIRouter, Depends, HTTPException

from ..schemas.tracking import Capability, PermissionDecision
from ..services.permissions import PendingPrompter
from ..services.tracker import LocationTracker
from .tracking import get_tracker

router = APIRouter(prefix="/permissions", tags=["permissions"])


@router.get("")
async def permission_statuses(tracker: LocationTracker = Depends(get_tracker)):
    return tracker.gate.statuses()


@router.get("/pending")
async def pending_prompts(tracker: LocationTracker = Depends(get_tracker)):
    prompter = tracker.gate.prompter
    if not isinstance(prompter, PendingPrompter):
        return []
    return [cap.value for cap in prompter.pending()]


@router.post("/{capability}")
async def answer_prompt(
    capability: Capability,
    decision: PermissionDecision,
    tracker: LocationTracker = Depends(get_tracker),
):
    """Answer the open prompt for `capability`, like tapping Allow/Deny on the system dialog."""
    prompter = tracker.gate.prompter
    if not isinstance(prompter, PendingPrompter) or not prompter.resolve(capability, decision.granted):
        raise HTTPException(status_code=409, detail=f"No pending prompt for {capability.value}")
    return {"capability": capability.value, "granted": decision.granted}
