from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol
from urllib.parse import urlencode

from twilio.rest import Client

from src.api.settings import Settings

logger = logging.getLogger(__name__)

STATUS_CALLBACK_EVENTS = ["initiated", "answered", "completed"]


@dataclass(frozen=True)
class CallResult:
    success: bool
    call_sid: Optional[str] = None
    error: Optional[str] = None


class VoiceGateway(Protocol):
    def place_call(self, *, to_phone: str, reminder_id: str, title: str) -> CallResult: ...


class TwilioVoiceGateway:
    """Places reminder calls through Twilio and wires their callbacks back to this service."""

    def __init__(self, settings: Settings, client: Optional[Client] = None) -> None:
        self.settings = settings
        self._client = client

    @property
    def client(self) -> Optional[Client]:
        if self._client is None and self.settings.twilio_account_sid and self.settings.twilio_auth_token:
            self._client = Client(self.settings.twilio_account_sid, self.settings.twilio_auth_token)
        return self._client

    def place_call(self, *, to_phone: str, reminder_id: str, title: str) -> CallResult:
        client = self.client
        if client is None or not self.settings.twilio_phone_number:
            logger.warning(f"Twilio not configured; cannot place call for reminder {reminder_id}")
            return CallResult(success=False, error="Twilio not configured")

        voice_url = self.settings.webhook_url(
            "/api/voice?" + urlencode({"reminderId": reminder_id, "title": title})
        )
        status_url = self.settings.webhook_url("/api/call-status?" + urlencode({"reminderId": reminder_id}))
        try:
            call = client.calls.create(
                to=to_phone,
                from_=self.settings.twilio_phone_number,
                url=voice_url,
                method="POST",
                status_callback=status_url,
                status_callback_event=STATUS_CALLBACK_EVENTS,
                status_callback_method="POST",
                timeout=30,
                record=False,
            )
        except Exception as exc:  # network and Twilio REST errors alike
            logger.error(f"Error making Twilio call for reminder {reminder_id}: {exc}")
            return CallResult(success=False, error=str(exc))

        return CallResult(success=True, call_sid=call.sid)
