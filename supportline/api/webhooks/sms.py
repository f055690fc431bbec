"""Twilio inbound SMS webhook."""
import logging
from fastapi import APIRouter, Depends, Form
from fastapi.responses import Response

from supportline.core.dependencies import get_session_manager
from supportline.core.security import verify_twilio_signature
from supportline.services.call_session.consent import (
    CONSENT_DECLINED_MESSAGE,
    ConsentDecision,
    classify_consent,
)
from supportline.services.call_session.manager import CallSessionManager
from supportline.services.speech import twiml

router = APIRouter(dependencies=[Depends(verify_twilio_signature)])
logger = logging.getLogger(__name__)

DEFAULT_SMS_REPLY = (
    "Thank you for your message. If you are in danger, call 911. "
    "For support, call the National Domestic Violence Hotline at {hotline}."
)


@router.post("/sms/incoming")
async def handle_incoming_sms(
    From: str = Form(...),
    Body: str = Form(""),
    session_manager: CallSessionManager = Depends(get_session_manager),
):
    """
    Handle an inbound text message.

    Replies to a pending consent prompt are applied to the call waiting on
    them; anything else gets a short informational reply.
    """
    logger.info(f"[SMS] Received SMS - From: {From}, Length: {len(Body)}")

    turn = await session_manager.handle_consent_reply(From, Body)
    if turn is not None:
        return Response(content=twiml.message(turn.text), media_type="application/xml")

    if classify_consent(Body) == ConsentDecision.DECLINED:
        return Response(content=twiml.message(CONSENT_DECLINED_MESSAGE), media_type="application/xml")

    reply = DEFAULT_SMS_REPLY.format(hotline=session_manager.config.hotline_number)
    return Response(content=twiml.message(reply), media_type="application/xml")
