"""Email delivery using the Gmail API with a service account.

Uses domain-wide delegation to send on behalf of the configured sender. The
service account needs the ``https://www.googleapis.com/auth/gmail.send`` scope
granted in the Google Workspace admin console.
"""

import asyncio
import base64
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from pathlib import Path
from typing import TYPE_CHECKING

from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from src.core.logging import get_logger

from .schemas import EmailRecipient, SendEmailRequest, SendEmailResponse


if TYPE_CHECKING:
    from googleapiclient._apis.gmail.v1 import GmailResource


logger = get_logger(__name__)

GMAIL_SCOPES = ["https://www.googleapis.com/auth/gmail.send"]


class EmailService:
    """Sends email through the Gmail API, impersonating ``sender_address``."""

    def __init__(
        self,
        credentials_path: str,
        sender_address: str,
        sender_name: str = "codeElevateX",
    ):
        self.credentials_path = credentials_path
        self.sender_address = sender_address
        self.sender_name = sender_name
        self._service: GmailResource | None = None

        if not Path(credentials_path).exists():
            logger.warning(
                "email_credentials_not_found",
                path=credentials_path,
                message="Gmail API will not be available",
            )

    def _get_service(self) -> "GmailResource":
        """Build the Gmail client on first use.

        Raises:
            FileNotFoundError: If credentials file doesn't exist
        """
        if self._service is not None:
            return self._service

        credentials_file = Path(self.credentials_path)
        if not credentials_file.exists():
            msg = f"Credentials file not found: {self.credentials_path}"
            raise FileNotFoundError(msg)

        credentials = service_account.Credentials.from_service_account_file(
            str(credentials_file),
            scopes=GMAIL_SCOPES,
        )
        self._service = build(
            "gmail",
            "v1",
            credentials=credentials.with_subject(self.sender_address),
            cache_discovery=False,
        )
        logger.info("gmail_service_initialized", sender=self.sender_address)
        return self._service

    def _format_address(self, recipient: EmailRecipient) -> str:
        if recipient.name:
            return f"{recipient.name} <{recipient.email}>"
        return recipient.email

    def _create_message(self, request: SendEmailRequest) -> dict:
        """Encode the request as a Gmail API ``raw`` message."""
        message = MIMEMultipart("alternative")
        message["From"] = f"{self.sender_name} <{self.sender_address}>"
        message["To"] = ", ".join(self._format_address(r) for r in request.to)
        message["Subject"] = request.subject
        if request.reply_to:
            message["Reply-To"] = request.reply_to

        # Plain text first, clients prefer the last alternative
        if request.body_text:
            message.attach(MIMEText(request.body_text, "plain", "utf-8"))
        message.attach(MIMEText(request.body_html, "html", "utf-8"))

        return {"raw": base64.urlsafe_b64encode(message.as_bytes()).decode("utf-8")}

    async def send_email(self, request: SendEmailRequest) -> SendEmailResponse:
        """Send an email. Failures are reported in the response, never raised."""
        try:
            service = self._get_service()
            message = self._create_message(request)
            result = await asyncio.to_thread(
                service.users().messages().send(userId="me", body=message).execute
            )
        except HttpError as e:
            logger.exception(
                "email_send_failed",
                error=str(e),
                to=[r.email for r in request.to],
                subject=request.subject[:50],
            )
            return SendEmailResponse(success=False, error=f"Gmail API error: {e}")
        except FileNotFoundError as e:
            logger.error("email_credentials_missing", error=str(e))
            return SendEmailResponse(
                success=False,
                error="Email service not configured: credentials file missing",
            )

        logger.info(
            "email_sent",
            message_id=result.get("id"),
            to=[r.email for r in request.to],
            subject=request.subject[:50],
        )
        return SendEmailResponse(
            success=True,
            message_id=result.get("id"),
            thread_id=result.get("threadId"),
        )
