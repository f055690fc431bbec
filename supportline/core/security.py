"""Twilio webhook signature verification."""
import logging
from urllib.parse import urlparse

from fastapi import HTTPException, Request, WebSocket
from starlette.requests import HTTPConnection
from twilio.request_validator import RequestValidator

from supportline.core.config import settings

logger = logging.getLogger(__name__)

WEBSOCKET_SCHEMES = {"http": "ws", "https": "wss"}


def get_validation_url(connection: HTTPConnection) -> str:
    """
    URL Twilio signed the request with.

    Behind a proxy the URL the app sees differs from the public one, so the
    configured ``base_url`` replaces scheme and host when set. Stream
    connections keep a websocket scheme.
    """
    if not settings.base_url:
        return str(connection.url)
    parsed = urlparse(str(connection.url))
    path = parsed.path
    if parsed.query:
        path += f"?{parsed.query}"
    base = settings.base_url.rstrip("/")
    if parsed.scheme in WEBSOCKET_SCHEMES.values():
        scheme, _, rest = base.partition("://")
        base = f"{WEBSOCKET_SCHEMES.get(scheme, scheme)}://{rest}"
    return base + path


async def verify_twilio_signature(request: Request) -> None:
    """Dependency rejecting webhook requests that were not signed by Twilio."""
    if not settings.validate_twilio_signature:
        return

    signature = request.headers.get("X-Twilio-Signature", "")
    if not signature:
        logger.warning("[TWILIO SECURITY] No X-Twilio-Signature header provided")
        raise HTTPException(status_code=403, detail="Missing Twilio signature")

    form = await request.form()
    params = {key: value for key, value in form.items()}
    url = get_validation_url(request)

    validator = RequestValidator(settings.twilio_auth_token)
    if not validator.validate(url, params, signature):
        logger.warning(f"[TWILIO SECURITY] Invalid signature for URL: {url}")
        raise HTTPException(status_code=403, detail="Invalid Twilio signature")


def verify_stream_signature(websocket: WebSocket) -> bool:
    """Check the signature Twilio puts on a stream's upgrade request."""
    if not settings.validate_twilio_signature:
        return True

    signature = websocket.headers.get("X-Twilio-Signature", "")
    if not signature:
        logger.warning("[TWILIO SECURITY] Stream connection without X-Twilio-Signature header")
        return False

    url = get_validation_url(websocket)
    if not RequestValidator(settings.twilio_auth_token).validate(url, {}, signature):
        logger.warning(f"[TWILIO SECURITY] Invalid stream signature for URL: {url}")
        return False
    return True
