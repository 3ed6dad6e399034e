"""Outbound call client and voice markup builders."""
from __future__ import annotations

from typing import Any, Dict, Optional
from xml.etree import ElementTree

import httpx

from nemt.core.config import get_settings
from nemt.core.logging import logger

VOICE = "Polly.Joanna"
VOICE_LANGUAGES = {"english": "en-US", "spanish": "es-MX"}


class TelephonyError(Exception):
    """Raised when the telephony REST API rejects or fails a request."""


class TelephonyClient:
    """Places calls through the carrier REST API with basic auth."""

    def __init__(self, transport: httpx.BaseTransport | None = None) -> None:
        self.settings = get_settings()
        self.transport = transport

    def is_configured(self) -> bool:
        return self.settings.telephony_configured()

    def place_call(self, to_number: str, callback_url: str, status_callback_url: str) -> Dict[str, Any]:
        if not self.is_configured():
            raise TelephonyError("Telephony is not configured in environment variables.")

        sid = self.settings.twilio_account_sid.strip()
        url = f"{self.settings.twilio_api_base_url.rstrip('/')}/Accounts/{sid}/Calls.json"
        form = {
            "To": to_number,
            "From": self.settings.twilio_phone_number,
            "Url": callback_url,
            "Method": "POST",
            "StatusCallback": status_callback_url,
            "StatusCallbackEvent": "completed",
            "StatusCallbackMethod": "POST",
        }
        try:
            with httpx.Client(timeout=self.settings.telephony_timeout_seconds, transport=self.transport) as client:
                response = client.post(url, data=form, auth=(sid, self.settings.twilio_auth_token))
        except httpx.HTTPError as exc:
            raise TelephonyError(f"Call request failed: {exc}") from exc

        if response.status_code >= 400:
            raise TelephonyError(f"Call failed ({response.status_code}): {response.text[:400]}")
        try:
            body = response.json()
        except ValueError as exc:
            raise TelephonyError("Invalid call response: body is not JSON") from exc
        if not body.get("sid"):
            raise TelephonyError("Invalid call response: missing 'sid'")
        logger.info("Outbound call placed", call_sid=body["sid"], to=to_number)
        return body


def voice_language(language: Optional[str]) -> str:
    return VOICE_LANGUAGES.get((language or "").lower(), VOICE_LANGUAGES["english"])


def _render(root: ElementTree.Element) -> str:
    body = ElementTree.tostring(root, encoding="unicode")
    return f'<?xml version="1.0" encoding="UTF-8"?>{body}'


def _say(parent: ElementTree.Element, text: str, language: Optional[str]) -> None:
    node = ElementTree.SubElement(parent, "Say", {"voice": VOICE, "language": voice_language(language)})
    node.text = text


def say_response(text: str, language: Optional[str] = "english") -> str:
    """A response that speaks one message and hangs up."""
    root = ElementTree.Element("Response")
    _say(root, text, language)
    return _render(root)


def gather_response(prompt: str, action_url: str, language: Optional[str], fallback: str) -> str:
    """Prompt for one keypress, then speak the fallback if nothing is pressed."""
    root = ElementTree.Element("Response")
    gather = ElementTree.SubElement(
        root,
        "Gather",
        {"numDigits": "1", "action": action_url, "method": "POST", "timeout": "10"},
    )
    _say(gather, prompt, language)
    _say(root, fallback, language)
    return _render(root)


telephony_client = TelephonyClient()
