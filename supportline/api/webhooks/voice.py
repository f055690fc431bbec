"""Twilio voice webhook endpoints."""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, Form, Header, Query, Request
from fastapi.responses import Response

from supportline.core.config import settings
from supportline.core.dependencies import get_session_manager
from supportline.core.security import verify_twilio_signature
from supportline.services.call_session.manager import CallSessionManager
from supportline.services.speech import twiml

router = APIRouter(dependencies=[Depends(verify_twilio_signature)])
logger = logging.getLogger(__name__)

NO_SPEECH_MESSAGE = "I didn't catch that. Could you say it again?"
ERROR_MESSAGE = "I'm sorry, I encountered an error. Could you say that again?"
DUPLICATE_MESSAGE = "I'm still working on that. One moment."
ENDED_MESSAGE = "This call has ended. Please call back any time. Goodbye."


def get_base_url(request: Request) -> str:
    """
    Get the base URL for constructing absolute URLs.

    Uses BASE_URL if set, otherwise constructs from request.
    """
    if settings.base_url:
        return settings.base_url.rstrip('/')
    return str(request.base_url).rstrip('/')


def gather_url(request: Request, call_sid: str) -> str:
    return f"{get_base_url(request)}/webhooks/voice/gather?CallSid={call_sid}"


def greeting() -> str:
    return (
        f"Thank you for calling {settings.support_line_name}. This call is confidential. "
        "If you are in immediate danger, please hang up and call 911. How can I help you today?"
    )


def xml_response(content: str) -> Response:
    return Response(content=content, media_type="application/xml")


@router.post("/voice/incoming")
async def handle_incoming_call(
    request: Request,
    CallSid: str = Form(...),
    From: Optional[str] = Form(None),
    session_manager: CallSessionManager = Depends(get_session_manager),
):
    """
    Handle incoming call from Twilio.

    Registers the session and greets the caller.
    """
    logger.info(
        f"[INCOMING CALL] Received incoming call webhook - CallSid: {CallSid}, "
        f"Client: {request.client.host if request.client else 'unknown'}"
    )
    await session_manager.handle_incoming_call(CallSid, From)
    return xml_response(twiml.say_and_gather(greeting(), gather_url(request, CallSid)))


@router.post("/voice/gather")
async def handle_gather(
    request: Request,
    CallSid: str = Query(...),
    SpeechResult: Optional[str] = Form(None),
    idempotency_token: Optional[str] = Header(None, alias="I-Twilio-Idempotency-Token"),
    session_manager: CallSessionManager = Depends(get_session_manager),
):
    """
    Handle gathered speech from Twilio.

    Twilio retries a webhook with the same idempotency token, which doubles as
    the request id for duplicate suppression.
    """
    logger.info(
        f"[GATHER] Received speech input - CallSid: {CallSid}, "
        f"SpeechResult length: {len(SpeechResult) if SpeechResult else 0}"
    )

    if not SpeechResult or not SpeechResult.strip():
        logger.warning(f"[GATHER] No speech result provided - CallSid: {CallSid}")
        return xml_response(twiml.say_and_gather(NO_SPEECH_MESSAGE, gather_url(request, CallSid)))

    try:
        turn = await session_manager.handle_utterance(CallSid, idempotency_token, SpeechResult)
    except Exception as e:
        logger.error(
            f"[GATHER] Error processing speech input - CallSid: {CallSid}, "
            f"Error: {type(e).__name__}: {str(e)}",
            exc_info=True,
        )
        return xml_response(twiml.say_and_gather(ERROR_MESSAGE, gather_url(request, CallSid)))

    if turn is None:
        if session_manager.get_session(CallSid) is None:
            return xml_response(twiml.say_and_hangup(ENDED_MESSAGE))
        # Retried delivery of a request that is still being answered
        return xml_response(twiml.say_and_gather(DUPLICATE_MESSAGE, gather_url(request, CallSid)))
    if turn.end_call:
        return xml_response(twiml.say_and_hangup(turn.text))
    return xml_response(twiml.say_and_gather(turn.text, gather_url(request, CallSid)))


@router.post("/voice/status")
async def handle_call_status(
    request: Request,
    CallSid: str = Form(...),
    CallStatus: str = Form(...),
    session_manager: CallSessionManager = Depends(get_session_manager),
):
    """
    Handle call status updates from Twilio.

    Terminal statuses start the consent and summary flow.
    """
    logger.info(f"[CALL STATUS] Received status update - CallSid: {CallSid}, CallStatus: {CallStatus}")
    try:
        await session_manager.handle_call_status(CallSid, CallStatus)
    except Exception as e:
        logger.error(
            f"[CALL STATUS] Error handling call status update - CallSid: {CallSid}, "
            f"CallStatus: {CallStatus}, Error: {type(e).__name__}: {str(e)}",
            exc_info=True,
        )
    # Always OK so Twilio does not retry
    return Response(content="OK", media_type="text/plain")
