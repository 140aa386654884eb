import asyncio
import json
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

import boto3
import httpx
from botocore.exceptions import BotoCoreError, ClientError

from notification_dispatch.config import Settings
from notification_dispatch.core.exceptions import DeliveryError
from notification_dispatch.core.logging import logger


@dataclass(frozen=True)
class ProviderResult:
    provider: str
    provider_message_id: Optional[str]


class EmailProvider(Protocol):
    name: str

    async def send_template_email(self, to_email: str, template_id: str, variables: Dict[str, Any]) -> ProviderResult:
        ...

    async def close(self) -> None:
        ...


class MailerSendProvider:
    """Templated email through the MailerSend HTTP API."""

    name = "mailersend"

    def __init__(
        self,
        api_key: Optional[str],
        from_email: Optional[str],
        from_name: Optional[str],
        api_url: str = "https://api.mailersend.com/v1/email",
        subject: str = "Notification",
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.from_email = from_email
        self.from_name = from_name
        self.api_url = api_url
        self.subject = subject
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def send_template_email(self, to_email: str, template_id: str, variables: Dict[str, Any]) -> ProviderResult:
        if not self.api_key or not self.from_email or not self.from_name:
            raise DeliveryError("MAILERSEND_* settings are not set")

        body = {
            "from": {"email": self.from_email, "name": self.from_name},
            "to": [{"email": to_email}],
            "template_id": template_id,
            "subject": self.subject,
            "personalization": [{"email": to_email, "data": variables}],
        }
        try:
            response = await self._client.post(
                self.api_url,
                json=body,
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
        except httpx.RequestError as e:
            logger.error("MailerSend unavailable", error=str(e), recipient=to_email)
            raise DeliveryError(f"MailerSend request failed: {e}") from e

        if response.is_error:
            raise DeliveryError(
                f"MailerSend error: {response.status_code} {response.reason_phrase} {response.text}".strip(),
                status_code=response.status_code,
            )

        # MailerSend returns the message id in a header, not the body
        return ProviderResult(provider=self.name, provider_message_id=response.headers.get("x-message-id"))

    async def close(self) -> None:
        await self._client.aclose()


class SesProvider:
    """Templated email through Amazon SES (``SendTemplatedEmail``)."""

    name = "ses"

    def __init__(self, from_email: Optional[str], ses_client=None, **client_kwargs):
        self.from_email = from_email
        self._ses = ses_client or boto3.client("ses", **client_kwargs)

    def _send(self, to_email: str, template_id: str, variables: Dict[str, Any]) -> str:
        response = self._ses.send_templated_email(
            Source=self.from_email,
            Destination={"ToAddresses": [to_email]},
            Template=template_id,
            TemplateData=json.dumps(variables),
        )
        return response["MessageId"]

    async def send_template_email(self, to_email: str, template_id: str, variables: Dict[str, Any]) -> ProviderResult:
        if not self.from_email:
            raise DeliveryError("SES_FROM_EMAIL is not set")
        try:
            # boto3 is blocking; keep it off the event loop the worker shares with the API
            message_id = await asyncio.to_thread(self._send, to_email, template_id, variables)
        except ClientError as e:
            error = e.response.get("Error", {})
            raise DeliveryError(
                f"SES error: {error.get('Code', 'Unknown')} {error.get('Message', '')}".strip(),
                status_code=e.response.get("ResponseMetadata", {}).get("HTTPStatusCode"),
            ) from e
        except BotoCoreError as e:
            logger.error("SES unavailable", error=str(e), recipient=to_email)
            raise DeliveryError(f"SES request failed: {e}") from e
        return ProviderResult(provider=self.name, provider_message_id=message_id)

    async def close(self) -> None:
        return None


def get_email_provider(settings: Settings) -> EmailProvider:
    if settings.EMAIL_PROVIDER == "ses":
        return SesProvider(
            from_email=settings.SES_FROM_EMAIL,
            region_name=settings.AWS_REGION_NAME,
            aws_access_key_id=settings.AWS_ACCESS_KEY_ID,
            aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY,
        )
    return MailerSendProvider(
        api_key=settings.MAILERSEND_API_KEY,
        from_email=settings.MAILERSEND_FROM_EMAIL,
        from_name=settings.MAILERSEND_FROM_NAME,
        api_url=settings.MAILERSEND_API_URL,
        subject=settings.MAILERSEND_SUBJECT,
        timeout=settings.PROVIDER_TIMEOUT_SECONDS,
    )
