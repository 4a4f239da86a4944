"""FastAPI routes"""

import logging
from typing import Optional, TYPE_CHECKING

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ..models.errors import (
    AuthError,
    InvalidOAuthState,
    MissingAuthorizationCode,
    OAuthRequestError,
    UpstreamError,
)
from ..services.camera_registry import CameraOwnershipError

if TYPE_CHECKING:
    from ..orchestrator import MonitoringEngine

logger = logging.getLogger(__name__)

VERSION = "1.0.0"

router = APIRouter()

# Global engine reference (set by main.py)
engine: Optional["MonitoringEngine"] = None


def set_engine(eng: Optional["MonitoringEngine"]) -> None:
    """Set global engine reference"""
    global engine
    engine = eng


def _require_engine() -> "MonitoringEngine":
    if not engine:
        raise HTTPException(status_code=503, detail="Service not ready")
    return engine


class MonitoringRequest(BaseModel):
    """Body of PUT /users/{user_id}/cameras/{camera_id}"""
    enabled: bool
    display_name: Optional[str] = None


@router.get("/health")
async def health_check():
    """Health check endpoint"""
    if not engine:
        return JSONResponse(
            status_code=503,
            content={"status": "initializing", "version": VERSION}
        )

    status = engine.get_status()

    if not status["running"]:
        state = "stopped"
    elif status["storage_degraded"]:
        state = "degraded"
    else:
        state = "ok"

    return {"status": state, "version": VERSION, **status}


@router.get("/errors")
async def get_recent_errors(
    limit: int = Query(10, le=50),
    camera_id: Optional[str] = None,
    user_id: Optional[str] = None,
):
    """
    Get recent error logs (for debugging)

    Args:
        limit: Maximum number of errors to return (max 50)
        camera_id: Only errors for this camera
        user_id: Only errors for this user
    """
    eng = _require_engine()
    errors = eng.error_logger.get_recent_errors(limit=limit, camera_id=camera_id, user_id=user_id)

    return {
        "count": len(errors),
        "errors": errors
    }


@router.get("/auth/{user_id}/url")
async def authorization_url(user_id: str):
    """Start the OAuth consent flow for a user"""
    eng = _require_engine()
    return {"user_id": user_id, "authorization_url": await eng.begin_authorization(user_id)}


@router.get("/auth/callback")
async def oauth_callback(code: Optional[str] = None, state: Optional[str] = None):
    """OAuth redirect target"""
    eng = _require_engine()

    try:
        user_id = await eng.complete_authorization(code, state)
    except (InvalidOAuthState, MissingAuthorizationCode) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except OAuthRequestError as e:
        logger.error(f"Authorization code exchange failed: {e}")
        raise HTTPException(status_code=502, detail="Token exchange failed")

    return {"user_id": user_id, "status": "authorized"}


@router.delete("/auth/{user_id}")
async def deauthorize(user_id: str):
    """Revoke a user's credential"""
    eng = _require_engine()
    await eng.deauthorize(user_id)
    return {"user_id": user_id, "status": "revoked"}


@router.get("/users/{user_id}/status")
async def user_status(user_id: str):
    """Per-user status, including the degraded (re-authorization needed) flag"""
    eng = _require_engine()
    credential = eng.vault.get_credential(user_id)
    status = await eng.registry.user_status(user_id)
    return {
        **status,
        "authorized": credential is not None and not credential.invalid,
    }


@router.get("/users/{user_id}/cameras")
async def list_cameras(user_id: str, monitored_only: bool = False):
    """Cameras registered by a user"""
    eng = _require_engine()
    if monitored_only:
        cameras = sorted(await eng.registry.list_monitored(user_id), key=lambda c: c.camera_id)
    else:
        cameras = await eng.registry.list_cameras(user_id)
    return {"count": len(cameras), "cameras": [c.model_dump(mode="json") for c in cameras]}


@router.get("/users/{user_id}/cameras/available")
async def available_cameras(user_id: str):
    """Cameras discovered upstream for the user"""
    eng = _require_engine()

    try:
        cameras = await eng.discover_cameras(user_id)
    except AuthError as e:
        raise HTTPException(status_code=401, detail=str(e))
    except UpstreamError as e:
        logger.error(f"Camera discovery failed for {user_id}: {e}")
        raise HTTPException(status_code=502, detail=str(e))

    return {"count": len(cameras), "cameras": [c.model_dump(mode="json") for c in cameras]}


@router.put("/users/{user_id}/cameras/{camera_id}")
async def set_monitoring(user_id: str, camera_id: str, request: MonitoringRequest):
    """Enable or pause monitoring for a camera"""
    eng = _require_engine()

    try:
        camera = await eng.set_monitoring(user_id, camera_id, request.enabled, request.display_name)
    except CameraOwnershipError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return camera.model_dump(mode="json")


@router.get("/cameras/{camera_id}/state")
async def camera_state(camera_id: str):
    """Latest cycle state of a camera"""
    eng = _require_engine()
    state = await eng.camera_state(camera_id)
    if state is None:
        raise HTTPException(status_code=404, detail=f"No state for camera {camera_id}")
    return state


@router.get("/cameras/{camera_id}/transitions")
async def camera_transitions(camera_id: str, limit: int = Query(50, le=500)):
    """Transition history of a camera, newest last"""
    eng = _require_engine()
    transitions = await eng.camera_history(camera_id)
    return {
        "camera_id": camera_id,
        "count": len(transitions),
        "transitions": [t.model_dump(mode="json") for t in transitions[-limit:]],
    }
