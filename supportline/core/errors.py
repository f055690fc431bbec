"""Error taxonomy for the support line core."""
from typing import Optional


class SupportLineError(Exception):
    """Base class for all support line errors."""


class TransientBackendError(SupportLineError):
    """A backend failure worth retrying (network, timeout, 5xx)."""


class BackendUnavailable(SupportLineError):
    """Raised by the gateway once every retry has failed."""

    def __init__(
        self,
        backend: str,
        attempts: int,
        last_exception: Optional[BaseException] = None,
    ):
        super().__init__(
            f"{backend} unavailable after {attempts} attempt(s): "
            f"{type(last_exception).__name__ if last_exception else 'unknown error'}"
        )
        self.backend = backend
        self.attempts = attempts
        self.last_exception = last_exception


class SessionTimeout(SupportLineError):
    """No caller activity within the inactivity window."""


class DuplicateSession(SupportLineError):
    """A session already exists for this call."""

    def __init__(self, call_sid: str):
        super().__init__(f"Session already exists for call {call_sid}")
        self.call_sid = call_sid


class DuplicateEvent(SupportLineError):
    """An utterance event repeats a request that is still being answered."""

    def __init__(self, call_sid: str, request_id: str):
        super().__init__(f"Duplicate request {request_id} for call {call_sid}")
        self.call_sid = call_sid
        self.request_id = request_id


class SessionNotFound(SupportLineError):
    """No session is registered for the call."""


class InvalidRequest(SupportLineError):
    """Missing call identifier or unauthenticated telephony signal."""


class ChannelConflict(InvalidRequest):
    """Another open channel is already bound to the call."""
