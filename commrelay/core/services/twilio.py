from typing import Any

from fastapi import status as http_status
import httpx

from commrelay.core.config import settings, twilio_logger
from commrelay.core.exceptions.types import ProviderException

WHATSAPP_PREFIX = "whatsapp:"


def whatsapp_address(number: str) -> str:
    """Prefix a phone number for the WhatsApp sender, once."""
    if number.startswith(WHATSAPP_PREFIX):
        return number
    return f"{WHATSAPP_PREFIX}{number}"


class TwilioService:
    """
    Twilio Programmable Messaging client for SMS and WhatsApp.

    Sends through ``POST /Accounts/{AccountSid}/Messages.json`` with HTTP
    basic auth. WhatsApp messages use the same endpoint with both numbers
    prefixed by ``whatsapp:``. Each call is a single attempt.
    """

    _base_url: str = settings.TWILIO_BASE_URL
    _account_sid: str = settings.TWILIO_ACCOUNT_SID
    _auth_token: str = settings.TWILIO_AUTH_TOKEN
    _sms_from: str = settings.TWILIO_SMS_FROM
    _whatsapp_from: str = settings.TWILIO_WHATSAPP_FROM
    _client: httpx.AsyncClient | None = None

    @classmethod
    def _init_client(cls, transport: httpx.AsyncBaseTransport | None = None) -> None:
        if cls._client is None:
            cls._client = httpx.AsyncClient(
                base_url=cls._base_url,
                auth=(cls._account_sid, cls._auth_token),
                timeout=httpx.Timeout(30.0),
                transport=transport,
            )
            twilio_logger.info("Twilio HTTP client initialized")

    @classmethod
    async def aclose(cls) -> None:
        if cls._client is not None:
            try:
                await cls._client.aclose()
            finally:
                cls._client = None
                twilio_logger.info("Twilio HTTP client closed")

    @classmethod
    async def init(
        cls,
        account_sid: str | None = None,
        auth_token: str | None = None,
        sms_from: str | None = None,
        whatsapp_from: str | None = None,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initializes the Twilio service with the provided configuration.

        Parameters left as None keep their current values. Any existing client
        is closed before a new one is created.
        """
        if account_sid is not None:
            cls._account_sid = account_sid
        if auth_token is not None:
            cls._auth_token = auth_token
        if sms_from is not None:
            cls._sms_from = sms_from
        if whatsapp_from is not None:
            cls._whatsapp_from = whatsapp_from
        if base_url is not None:
            cls._base_url = base_url
        await cls.aclose()
        cls._init_client(transport)

    @classmethod
    async def send_message(
        cls,
        to: str,
        body: str,
        from_: str | None = None,
        whatsapp: bool = False,
    ) -> dict[str, Any]:
        """
        Send one SMS or WhatsApp message.

        Args:
            to: Recipient phone number.
            body: Message text.
            from_: Sender number. Defaults to the configured SMS or WhatsApp sender.
            whatsapp: Send through the WhatsApp sender; both numbers get the
                ``whatsapp:`` prefix.

        Returns:
            The created Message resource (``sid``, ``status``, ...).

        Raises:
            ProviderException: On an HTTP error status or a network error.
        """
        if cls._client is None:
            cls._init_client()
        assert cls._client is not None

        sender = from_ or (cls._whatsapp_from if whatsapp else cls._sms_from)
        if whatsapp:
            to = whatsapp_address(to)
            sender = whatsapp_address(sender)

        endpoint = f"/Accounts/{cls._account_sid}/Messages.json"
        try:
            resp = await cls._client.post(
                endpoint, data={"To": to, "From": sender, "Body": body}
            )
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            try:
                err_body = exc.response.json()
            except ValueError:
                err_body = exc.response.text
            twilio_logger.error(f"Twilio HTTP error {status}: {err_body}")
            raise ProviderException(
                message=f"Twilio HTTP error {status}: {err_body}",
                status_code=status,
                provider="twilio",
            ) from exc
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            twilio_logger.error(f"Twilio network error: {exc}")
            raise ProviderException(
                message=f"Twilio network error: {exc}",
                status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE,
                provider="twilio",
            ) from exc

        try:
            result = resp.json()
        except ValueError:
            result = {"raw": resp.text}
        twilio_logger.info(
            f"Twilio message created: sid={result.get('sid')} status={result.get('status')}"
        )
        return result


__all__ = ["TwilioService", "WHATSAPP_PREFIX", "whatsapp_address"]
