"""Duplex event stream from the telephony edge."""
import asyncio
import logging
from typing import Optional, Set

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from supportline.core.errors import InvalidRequest
from supportline.core.security import verify_stream_signature
from supportline.services.call_session.channel import WebSocketChannel
from supportline.services.call_session.manager import CallSessionManager

logger = logging.getLogger(__name__)
router = APIRouter()


async def _dispatch(
    manager: CallSessionManager,
    channel: WebSocketChannel,
    call_sid: Optional[str],
    event: dict,
    pending: Set[asyncio.Task],
) -> Optional[str]:
    """Apply one inbound event. Returns the call id bound to the stream."""
    kind = event.get("event")

    if kind == "start":
        started = event.get("call_sid")
        if not started:
            raise InvalidRequest("start event without call_sid")
        if call_sid is not None:
            if started == call_sid:
                logger.info(f"[STREAM] Ignoring repeated start for call {call_sid}")
                return call_sid
            raise InvalidRequest(f"stream bound to {call_sid} cannot start {started}")
        await manager.handle_incoming_call(started, event.get("from"))
        # Raises ChannelConflict when another open stream owns the call
        manager.attach_channel(started, channel)
        return started

    if call_sid is None:
        raise InvalidRequest(f"'{kind}' event before start")

    if kind == "utterance":
        text = (event.get("text") or "").strip()
        if not text:
            return call_sid
        # Answered in the background so duplicate deliveries are seen while the first is pending
        task = asyncio.create_task(
            manager.handle_utterance_event(call_sid, event.get("request_id"), text)
        )
        pending.add(task)
        task.add_done_callback(pending.discard)
    elif kind == "status":
        await manager.handle_call_status(call_sid, event.get("status", ""))
    else:
        logger.debug(f"[STREAM] Ignoring event '{kind}' for call {call_sid}")
    return call_sid


@router.websocket("/voice/stream")
async def voice_stream(websocket: WebSocket):
    """
    JSON event stream for one call.

    Inbound events: ``start`` (call_sid, from), ``utterance`` (request_id,
    text) and ``status`` (status). Outbound events are written by the session
    manager through the attached channel.

    The upgrade request must carry a valid Twilio signature, and a stream
    binds to exactly one call.
    """
    manager: CallSessionManager = websocket.app.state.session_manager
    if not verify_stream_signature(websocket):
        await websocket.close(code=1008)
        return
    await websocket.accept()
    channel = WebSocketChannel(websocket)
    call_sid: Optional[str] = None
    pending: Set[asyncio.Task] = set()

    try:
        while True:
            event = await websocket.receive_json()
            call_sid = await _dispatch(manager, channel, call_sid, event, pending)
    except WebSocketDisconnect:
        logger.info(f"[STREAM] Edge disconnected - CallSid: {call_sid}")
        if call_sid:
            await manager.handle_channel_closed(call_sid)
    except InvalidRequest as e:
        logger.warning(f"[STREAM] Rejected stream: {e}")
        await websocket.close(code=1008)
        if call_sid:
            await manager.handle_channel_error(call_sid, e)
    except Exception as e:
        logger.error(f"[STREAM] Stream failure - CallSid: {call_sid}: {e}", exc_info=True)
        if call_sid:
            await manager.handle_channel_error(call_sid, e)
