"""HTTP adapters for the email and chat channels."""

import logging
import re
from typing import Optional

import httpx

from ..config import settings

logger = logging.getLogger(__name__)

CHAT_USER_ID_RE = re.compile(r"^U[0-9a-fA-F]{32}$")


class ChannelError(Exception):
    """Delivery failed; another attempt may succeed."""


class InvalidRecipient(ChannelError):
    """The address can never be delivered to; do not retry."""


class ChannelNotConfigured(ChannelError):
    """No credentials for the channel; delivery is skipped."""


def is_valid_chat_user_id(value: Optional[str]) -> bool:
    return bool(value) and bool(CHAT_USER_ID_RE.match(value))


class EmailChannel:
    name = "email"

    def __init__(
        self,
        api_url: Optional[str] = None,
        token: Optional[str] = None,
        sender: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_url = api_url or settings.email_api_url
        self.token = settings.email_api_token if token is None else token
        self.sender = sender or settings.email_from
        self.timeout = timeout
        self._transport = transport

    def is_configured(self) -> bool:
        return bool(self.token)

    async def send(self, to_address: str, subject: str, html: str) -> str:
        """Send one email; returns the provider message id."""
        if not self.is_configured():
            raise ChannelNotConfigured("EMAIL_API_TOKEN not set")
        if not to_address or "@" not in to_address:
            raise InvalidRecipient(f"Invalid email address: {to_address!r}")

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            try:
                r = await client.post(
                    self.api_url,
                    headers={"Authorization": f"Bearer {self.token}"},
                    json={"from": self.sender, "to": [to_address], "subject": subject, "html": html},
                )
            except httpx.HTTPError as e:
                raise ChannelError(f"Email API unreachable: {e}") from e

        if r.status_code == 422:
            raise InvalidRecipient(f"Email API rejected recipient {to_address}: {r.text[:200]}")
        if r.status_code >= 400:
            raise ChannelError(f"Email API returned {r.status_code}: {r.text[:200]}")
        try:
            return r.json().get("id", "")
        except ValueError:
            return ""


class ChatChannel:
    name = "chat"

    def __init__(
        self,
        api_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_url = api_url or settings.chat_api_url
        self.token = settings.chat_access_token if token is None else token
        self.timeout = timeout
        self._transport = transport

    def is_configured(self) -> bool:
        return bool(self.token)

    async def push(self, chat_user_id: str, message: dict) -> int:
        """Push one structured message; returns the HTTP status."""
        if not self.is_configured():
            raise ChannelNotConfigured("CHAT_ACCESS_TOKEN not set")
        if not is_valid_chat_user_id(chat_user_id):
            raise InvalidRecipient(
                f"Invalid chat user id format: {chat_user_id!r}. Expected U followed by 32 hex characters."
            )

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            try:
                r = await client.post(
                    self.api_url,
                    headers={"Authorization": f"Bearer {self.token}"},
                    json={"to": chat_user_id, "messages": [message]},
                )
            except httpx.HTTPError as e:
                raise ChannelError(f"Chat API unreachable: {e}") from e

        if r.status_code == 400:
            raise InvalidRecipient(f"Chat API rejected message for {chat_user_id}: {r.text[:200]}")
        if r.status_code >= 400:
            raise ChannelError(f"Chat API returned {r.status_code}: {r.text[:200]}")
        return r.status_code
