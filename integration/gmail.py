"""
Gmail transport for outbound negotiation emails.

Access tokens are obtained from the connection's stored refresh token;
messages are sent as base64url RFC 822 text so threading headers are
passed through untouched.
"""

import base64
import logging
from dataclasses import dataclass
from typing import Dict, Optional

from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build

from config import AppConfig
from core.utils import clean_message_id

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/gmail.send", "https://www.googleapis.com/auth/gmail.readonly"]

HEADER_NAMES = {
    "reply_to": "Reply-To",
    "in_reply_to": "In-Reply-To",
    "references": "References",
    "cc": "Cc",
}


@dataclass
class SendResult:
    success: bool
    message_id: Optional[str] = None
    thread_id: Optional[str] = None


def build_raw_message(to: str, sender: str, subject: str, body: str,
                      headers: Optional[Dict[str, str]] = None) -> str:
    """RFC 822 text (CRLF, blank line before the body), base64url without padding."""
    lines = [
        f"To: {to}",
        f"From: {sender}",
        f"Subject: {subject}",
    ]
    for key, name in HEADER_NAMES.items():
        value = (headers or {}).get(key)
        if value:
            lines.append(f"{name}: {value}")
    lines.append('Content-Type: text/plain; charset="UTF-8"')

    message = "\r\n".join(lines + ["", body])
    return base64.urlsafe_b64encode(message.encode("utf-8")).decode("ascii").rstrip("=")


class GmailTransport:

    def __init__(self, client_id: str = AppConfig.GOOGLE_CLIENT_ID,
                 client_secret: str = AppConfig.GOOGLE_CLIENT_SECRET,
                 token_uri: str = AppConfig.GOOGLE_TOKEN_URI):
        self.client_id = client_id
        self.client_secret = client_secret
        self.token_uri = token_uri

    def _credentials(self, refresh_token: str) -> Credentials:
        if not refresh_token:
            raise ValueError("Missing Google refresh token. Please reconnect the Google account.")

        creds = Credentials(
            token=None,
            refresh_token=refresh_token,
            client_id=self.client_id,
            client_secret=self.client_secret,
            token_uri=self.token_uri,
            scopes=SCOPES,
        )
        creds.refresh(Request())
        return creds

    def send(self, connection: dict, to: str, subject: str, body: str,
             headers: Optional[Dict[str, str]] = None, thread_id: Optional[str] = None) -> SendResult:
        """
        Send one message from the connected mailbox. A thread_id continues
        the existing Gmail thread; without it Gmail starts a new one.
        """
        sender = connection["email"]
        logger.info(f"Sending email from {sender} to {to} (thread: {thread_id or 'new'})")

        service = build("gmail", "v1", credentials=self._credentials(connection.get("refresh_token")),
                        cache_discovery=False)

        request_body = {"raw": build_raw_message(to, sender, subject, body, headers)}
        if thread_id:
            request_body["threadId"] = thread_id

        sent = service.users().messages().send(userId="me", body=request_body).execute()
        gmail_id = sent.get("id")
        logger.info(f"Email sent, Gmail id {gmail_id}, thread {sent.get('threadId')}")

        return SendResult(
            success=bool(gmail_id),
            message_id=self._rfc_message_id(service, gmail_id) or gmail_id,
            thread_id=sent.get("threadId"),
        )

    @staticmethod
    def _rfc_message_id(service, gmail_id: Optional[str]) -> Optional[str]:
        """The Message-ID header Gmail assigned; replies reference this, not the Gmail id."""
        if not gmail_id:
            return None
        detail = service.users().messages().get(
            userId="me", id=gmail_id, format="metadata", metadataHeaders=["Message-ID"]).execute()
        headers = detail.get("payload", {}).get("headers", [])
        value = next((h["value"] for h in headers if h["name"].lower() == "message-id"), None)
        return clean_message_id(value) or None
