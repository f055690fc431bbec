"""Call session models."""
import asyncio
from enum import Enum
from typing import List, Optional, Set

from supportline.services.call_session.channel import DuplexChannel
from supportline.services.call_session.timers import SessionTimers

TERMINAL_STATUSES = {"completed", "failed", "busy", "no-answer", "canceled"}


class CallState(str, Enum):
    """Call lifecycle states."""

    RINGING = "ringing"
    ACTIVE = "active"
    AWAITING_CONSENT = "awaiting_consent"
    ENDED = "ended"
    ERROR = "error"

    def __str__(self) -> str:
        return self.value


class CallSession:
    """Call session model."""

    def __init__(
        self,
        call_sid: str,
        caller: Optional[str] = None,
        last_activity: float = 0.0,
    ):
        self.call_sid = call_sid
        self.caller = caller
        self.state = CallState.RINGING
        self.channel: Optional[DuplexChannel] = None
        self.last_activity = last_activity
        self.last_request_id: Optional[str] = None
        self.in_flight: Set[str] = set()  # Accepted request ids still being answered
        self.retry_count = 0
        self.consent: Optional[bool] = None
        self.consent_asked = False
        self.final_status: Optional[str] = None  # Terminal status reported by the edge
        self.inactivity_prompts = 0
        self.timers = SessionTimers(call_sid)
        self.turn_lock = asyncio.Lock()
        self.transcript: List[str] = []
        self.inflight_task: Optional[asyncio.Task] = None

    @property
    def responding(self) -> bool:
        return bool(self.in_flight)

    @property
    def is_terminal(self) -> bool:
        return self.state in (CallState.ENDED, CallState.ERROR)

    def add_transcript_line(self, speaker: str, text: str) -> None:
        self.transcript.append(f"{speaker}: {text}")

    def get_transcript_text(self) -> str:
        return "\n".join(self.transcript)
