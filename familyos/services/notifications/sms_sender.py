"""
Outbound notification senders.

Every channel is driven through the NotificationSender contract:
`send(recipient, body) -> DeliveryResult`. Senders never raise for delivery
problems; they report them in the result.
"""

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Protocol

import httpx

from familyos.config import Settings
from familyos.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

TWILIO_API_BASE_URL = "https://api.twilio.com/2010-04-01"
REQUEST_TIMEOUT = 15  # seconds


class NotificationError(Exception):
    """Raised for sender misconfiguration; delivery failures are reported, not raised."""

    def __init__(self, message: str, recoverable: bool = True):
        super().__init__(message)
        self.recoverable = recoverable


@dataclass(slots=True, frozen=True)
class DeliveryResult:
    success: bool
    message_id: str | None = None
    error: str | None = None


class NotificationSender(Protocol):
    async def send(self, recipient: str, body: str) -> DeliveryResult: ...


class TwilioSmsSender:
    """Sends SMS through the Twilio Messages REST API."""

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str,
        client: httpx.AsyncClient | None = None,
    ):
        if not (account_sid and auth_token and from_number):
            raise NotificationError("Twilio credentials are incomplete", recoverable=False)
        self.account_sid = account_sid
        self.from_number = from_number
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(REQUEST_TIMEOUT), auth=(account_sid, auth_token)
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def send(self, recipient: str, body: str) -> DeliveryResult:
        url = f"{TWILIO_API_BASE_URL}/Accounts/{self.account_sid}/Messages.json"
        try:
            response = await self._client.post(
                url, data={"To": recipient, "From": self.from_number, "Body": body}
            )
        except httpx.RequestError as e:
            logger.error("SMS request failed", error=str(e), error_type=type(e).__name__)
            return DeliveryResult(success=False, error=f"SMS request failed: {e}")

        if response.is_success:
            message_id = response.json().get("sid")
            logger.info("SMS sent", message_id=message_id)
            return DeliveryResult(success=True, message_id=message_id)

        try:
            detail = response.json().get("message", response.text[:200])
        except ValueError:
            detail = response.text[:200]
        logger.error("SMS send rejected", status_code=response.status_code, error=detail)
        return DeliveryResult(success=False, error=f"SMS send failed (HTTP {response.status_code}): {detail}")


class LoggingSender:
    """Development sender: logs the message instead of delivering it."""

    def __init__(self):
        self.sent: list[tuple[str, str]] = []

    async def send(self, recipient: str, body: str) -> DeliveryResult:
        self.sent.append((recipient, body))
        message_id = f"dev-{int(datetime.now(UTC).timestamp() * 1000)}"
        logger.info(
            "SMS not sent (dev mode)",
            recipient_suffix=recipient[-4:],
            body_length=len(body),
            message_id=message_id,
        )
        return DeliveryResult(success=True, message_id=message_id)


def build_sender(config: Settings) -> NotificationSender:
    if config.twilio_configured():
        return TwilioSmsSender(
            config.TWILIO_ACCOUNT_SID, config.TWILIO_AUTH_TOKEN, config.TWILIO_PHONE_NUMBER
        )
    logger.warning("Twilio not configured, using logging sender")
    return LoggingSender()
