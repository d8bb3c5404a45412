from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import Response, StreamingResponse

from errors import LiveClassifierError
from models.status import SessionState
from runtime.controller import SessionController, describe_error
from ..api_models import (
    AggregatedResultResponse,
    DiagnosticMessage,
    HealthResponse,
    ResultMessage,
    SessionStatusResponse,
    StateMessage,
)
from ..services.camera_service import CameraService
from ..services.health_service import HealthService
from ..state import SharedState

logger = logging.getLogger(__name__)

router = APIRouter()

_WS_MESSAGES = {
    "state": StateMessage,
    "result": ResultMessage,
    "diagnostic": DiagnosticMessage,
}


def _controller(request: Request) -> SessionController:
    return request.app.state.controller


def _shared(request: Request) -> SharedState:
    return request.app.state.shared


def _start_error_status(error: BaseException) -> int:
    """
    HTTP status for a failed session start.

    Timeouts (camera open or model load) => 504; everything else => 503.
    """
    if isinstance(error, asyncio.TimeoutError):
        return 504
    return 503


def _ws_payload(message: Dict[str, Any]) -> Dict[str, Any]:
    """Validate an outgoing WebSocket message against its model."""
    model = _WS_MESSAGES[message["type"]]
    return model.model_validate(message).model_dump()


@router.post("/session/start", response_model=SessionStatusResponse)
async def start_session(request: Request, reload_model: bool = False):
    """
    Start a detection session (model load + camera open).

    Idempotent while starting or running. On failure the session is left in
    `failed` and the cause is returned as the error detail.
    """
    controller = _controller(request)
    try:
        await controller.start(reload_model=reload_model)
    except (LiveClassifierError, asyncio.TimeoutError) as e:
        raise HTTPException(status_code=_start_error_status(e), detail=describe_error(e))
    return controller.status().to_dict()


@router.post("/session/stop", response_model=SessionStatusResponse)
async def stop_session(request: Request):
    controller = _controller(request)
    await controller.stop()
    return controller.status().to_dict()


@router.get("/session", response_model=SessionStatusResponse)
def session_status(request: Request):
    return _controller(request).status().to_dict()


@router.get("/results/latest", response_model=Optional[AggregatedResultResponse])
def latest_result(request: Request):
    result = _shared(request).get_latest_result()
    return result.to_dict() if result is not None else None


@router.get("/snapshot.jpg")
def snapshot(request: Request):
    capture = _controller(request).capture
    jpg = CameraService.snapshot_jpeg(capture.current_frame) if capture is not None else None
    if jpg is None:
        raise HTTPException(status_code=404, detail="No frame available")
    return Response(content=jpg, media_type="image/jpeg")


@router.get("/stream.mjpg")
def stream(request: Request, fps: int = 10):
    """
    MJPEG stream of the running session's camera.

    Ends when the session stops.
    """
    controller = _controller(request)
    if controller.state is not SessionState.RUNNING or controller.capture is None:
        raise HTTPException(status_code=404, detail="No session running")
    capture = controller.capture

    return StreamingResponse(
        CameraService.mjpeg_stream(
            capture.current_frame,
            fps=fps,
            is_active=lambda: controller.capture is capture,
        ),
        media_type="multipart/x-mixed-replace; boundary=frame",
    )


@router.get("/health", response_model=HealthResponse)
def health(request: Request):
    shared = _shared(request)
    cfg = request.app.state.config
    service = HealthService(cfg=cfg, start_time=shared.start_time)
    return service.get_health_summary(
        session_state=_controller(request).state.value,
        diagnostics=shared.get_diagnostics_copy(),
    )


@router.websocket("/ws")
async def events(websocket: WebSocket):
    """
    Push session events to the client.

    Sends the current state (and latest result, if any) on connect, then
    every state/result/diagnostic message as it happens.
    """
    await websocket.accept()
    shared: SharedState = websocket.app.state.shared
    controller: SessionController = websocket.app.state.controller
    queue = shared.subscribe()

    async def sender() -> None:
        await websocket.send_json(_ws_payload({"type": "state", "state": controller.state.value}))
        latest = shared.get_latest_result()
        if latest is not None:
            await websocket.send_json(_ws_payload({"type": "result", **latest.to_dict()}))
        while True:
            message = await queue.get()
            await websocket.send_json(_ws_payload(message))

    send_task = asyncio.create_task(sender())
    try:
        # Client messages are ignored; receiving only detects disconnects.
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        shared.unsubscribe(queue)
        send_task.cancel()
        try:
            await send_task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.debug(f"WebSocket sender ended: {e}")
