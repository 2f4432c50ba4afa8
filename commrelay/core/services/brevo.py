from typing import Any

from fastapi import status as http_status
import httpx
from pydantic import BaseModel

from commrelay.core.config import brevo_logger, settings
from commrelay.core.exceptions.types import ProviderException


class Contact(BaseModel):
    email: str
    name: str | None = None


class ListContact(BaseModel):
    to: list[Contact]


class BrevoService:
    """
    Brevo transactional email client.

    Each call is a single attempt; retrying is left to the delivery executor
    so that every attempt is counted and traced in one place.
    """

    _base_url: str = settings.BREVO_BASE_URL
    _api_key: str = settings.BREVO_API_KEY
    _sender_email: str = settings.BREVO_SENDER_EMAIL
    _sender_name: str = settings.BREVO_SENDER_NAME
    _client: httpx.AsyncClient | None = None

    @classmethod
    def _init_client(cls, transport: httpx.AsyncBaseTransport | None = None) -> None:
        """
        Initializes the Brevo HTTP client if it has not already been initialized.

        Args:
            transport: Optional transport, used by tests to stub the API.
        """
        if cls._client is None:
            cls._client = httpx.AsyncClient(
                base_url=cls._base_url,
                timeout=httpx.Timeout(30.0),
                transport=transport,
            )
            brevo_logger.info("Brevo HTTP client initialized")

    @classmethod
    async def aclose(cls) -> None:
        """
        Asynchronously closes the Brevo HTTP client if it is initialized.

        Raises:
            Any exception raised during the closing of the HTTP client will be
            propagated.
        """
        if cls._client is not None:
            try:
                await cls._client.aclose()
            finally:
                cls._client = None
                brevo_logger.info("Brevo HTTP client closed")

    @classmethod
    async def init(
        cls,
        api_key: str | None = None,
        sender_email: str | None = None,
        sender_name: str | None = None,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initializes the Brevo service with the provided configuration.

        Parameters left as None keep their current values. Any existing client
        is closed before a new one is created.

        Args:
            api_key (str | None): The API key for authenticating requests.
            sender_email (str | None): The email address of the sender.
            sender_name (str | None): The name of the sender.
            base_url (str | None): API base URL.
            transport (httpx.AsyncBaseTransport | None): Optional HTTP transport.
        """
        if api_key is not None:
            cls._api_key = api_key
        if sender_email is not None:
            cls._sender_email = sender_email
        if sender_name is not None:
            cls._sender_name = sender_name
        if base_url is not None:
            cls._base_url = base_url
        await cls.aclose()
        cls._init_client(transport)

    @classmethod
    def _auth_headers(cls) -> dict[str, str]:
        return {
            "api-key": cls._api_key,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    @classmethod
    async def _request(
        cls,
        method: str,
        endpoint: str,
        *,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any] | str:
        """
        Perform one HTTP request to the Brevo API.

        Returns:
            Parsed JSON response body when the response is valid JSON,
            otherwise the raw response text.

        Raises:
            ProviderException: On an HTTP error status (carrying that status)
                or a network error / timeout (503).
        """
        if cls._client is None:
            cls._init_client()
        assert cls._client is not None

        try:
            resp: httpx.Response = await cls._client.request(
                method, endpoint, headers=cls._auth_headers(), json=json
            )
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            try:
                err_body = exc.response.json()
            except ValueError:
                err_body = exc.response.text
            brevo_logger.error(f"Brevo HTTP error {status}: {err_body}")
            raise ProviderException(
                message=f"Brevo HTTP error {status}: {err_body}",
                status_code=status,
                provider="brevo",
            ) from exc
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            brevo_logger.error(f"Brevo network error: {exc}")
            raise ProviderException(
                message=f"Brevo network error: {exc}",
                status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE,
                provider="brevo",
            ) from exc

        try:
            body = resp.json()
        except ValueError:
            body = resp.text
        brevo_logger.info(f"Brevo response: {body}")
        return body

    @classmethod
    async def send_transactional_email(
        cls,
        subject: str,
        to: ListContact,
        sender: Contact | None = None,
        textContent: str | None = None,
        htmlContent: str | None = None,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any] | str:
        """
        Sends a transactional email via the Brevo API.

        Args:
            subject (str): Subject of the email.
            to (ListContact): Recipient contacts.
            sender (Contact | None): Sender contact. Defaults to the configured sender.
            textContent (str | None): Plain text content of the email.
            htmlContent (str | None): HTML content of the email.
            headers (dict[str, str] | None): Custom email headers (e.g. correlation ids).

        Returns:
            dict[str, Any] | str: The Brevo API response (``{"messageId": ...}``).

        Raises:
            ValueError: If neither content type is given.
            ProviderException: If the API call fails.
        """
        if not htmlContent and not textContent:
            raise ValueError("Either htmlContent or textContent must be provided")
        sender = sender or Contact(email=cls._sender_email, name=cls._sender_name)
        payload: dict[str, Any] = {
            "sender": sender.model_dump(exclude_none=True, exclude_unset=True),
            "subject": subject,
            **to.model_dump(exclude_none=True, exclude_unset=True),
        }
        if textContent:
            payload["textContent"] = textContent
        if htmlContent:
            payload["htmlContent"] = htmlContent
        if headers:
            payload["headers"] = headers

        return await cls._request("POST", "/smtp/email", json=payload)


__all__ = ["BrevoService", "Contact", "ListContact"]
