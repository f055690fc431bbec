"""Twilio SMS messaging."""
import asyncio
import logging

from twilio.rest import Client

from supportline.services.backends.base import MessagingService

logger = logging.getLogger(__name__)


class TwilioMessagingService(MessagingService):
    """Sends follow-up text messages through the Twilio REST API."""

    def __init__(self, client: Client, from_number: str):
        self.client = client
        self.from_number = from_number

    async def send_message(self, to: str, body: str) -> str:
        # The Twilio client is synchronous
        message = await asyncio.to_thread(
            self.client.messages.create,
            body=body,
            to=to,
            from_=self.from_number,
        )
        if not message.sid:
            raise RuntimeError("SMS SID not received")
        logger.info(f"[SMS] Message {message.sid} queued to {to} (status: {message.status})")
        return message.sid
