"""Real-time appointment change stream over WebSocket."""

import asyncio
from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, Query, WebSocket

from clinic_scheduler.dependencies import Services, get_ws_services
from clinic_scheduler.schemas.events import AppointmentChangeEvent

router = APIRouter()
logger = structlog.get_logger(__name__)


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return


@router.websocket("/stream")
async def stream_appointment_changes(
    websocket: WebSocket,
    services: Annotated[Services, Depends(get_ws_services)],
    user_id: str | None = Query(None),
    doctor_id: str | None = Query(None),
    appointment_id: str | None = Query(None),
) -> None:
    """
    Push classified appointment changes to the client as JSON.

    Query parameters narrow the stream to one user, doctor or appointment.
    """
    options = {
        name: value
        for name, value in (("user_id", user_id), ("doctor_id", doctor_id), ("id", appointment_id))
        if value
    }
    queue: asyncio.Queue[AppointmentChangeEvent] = asyncio.Queue()
    # Listen before accepting so no change after the handshake is missed
    handle = services.hub.subscribe_to_appointments(queue.put_nowait, options or None)
    receiver: asyncio.Task[None] | None = None
    try:
        await websocket.accept()
        logger.info("change_stream_opened", handle=handle, filters=options)

        receiver = asyncio.create_task(_wait_for_disconnect(websocket))
        while True:
            getter = asyncio.create_task(queue.get())
            done, _ = await asyncio.wait({getter, receiver}, return_when=asyncio.FIRST_COMPLETED)
            if getter not in done:
                getter.cancel()
                break
            await websocket.send_json(getter.result().model_dump(mode="json"))
    finally:
        if receiver is not None:
            receiver.cancel()
        services.hub.unsubscribe(handle)
        logger.info("change_stream_closed", handle=handle)
