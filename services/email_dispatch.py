"""
Outbound side of thread correlation: sends an agent (or user) update for
a negotiation and records the provider's message/thread ids so the next
email threads onto it.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from config import AppConfig
from constant.enum import AgentState, EmailProvider, NotificationType

logger = logging.getLogger(__name__)


@dataclass
class SendUpdateResult:
    success: bool
    reason: Optional[str] = None


class EmailDispatchService:

    def __init__(self, store, notifications, transport,
                 app_url: str = AppConfig.APP_URL, reply_domain: str = AppConfig.REPLY_DOMAIN):
        self.store = store
        self.notifications = notifications
        self.transport = transport
        self.app_url = app_url.rstrip("/")
        self.reply_domain = reply_domain

    def reply_address(self, negotiation_id: str) -> str:
        return f"reply+{negotiation_id}@{self.reply_domain}"

    def build_headers(self, negotiation) -> dict:
        headers = {"reply_to": self.reply_address(negotiation.id)}
        if negotiation.email_cc_recipients:
            headers["cc"] = ", ".join(negotiation.email_cc_recipients)
        if negotiation.last_email_message_id:
            headers["in_reply_to"] = f"<{negotiation.last_email_message_id}>"
            headers["references"] = f"<{negotiation.last_email_message_id}>"
        return headers

    async def send_negotiation_update(self, negotiation_id: str, message_content: str) -> SendUpdateResult:
        logger.info(f"Attempting to send email update for negotiation {negotiation_id}")

        negotiation = self.store.get(negotiation_id)
        if negotiation is None:
            logger.warning(f"Negotiation {negotiation_id} not found, email not sent")
            return SendUpdateResult(success=False, reason="Negotiation not found.")

        if not negotiation.connection_id:
            logger.warning(f"Negotiation {negotiation_id} has no email connection, skipping send")
            return SendUpdateResult(success=False, reason="Email connection not configured for this negotiation.")

        recipient = negotiation.initial_request.offerContactEmail
        if not recipient:
            logger.warning(f"Negotiation {negotiation_id} has no offer contact email, skipping send")
            return SendUpdateResult(success=False, reason="Missing recipient email in negotiation.")

        connection = self.store.get_connection(negotiation.connection_id)
        if connection is None:
            logger.error(f"Connection {negotiation.connection_id} not found for {negotiation_id}")
            return SendUpdateResult(success=False, reason="Configured email connection not found.")
        if connection["user_id"] != negotiation.user_id:
            logger.error(f"Connection {connection['id']} does not belong to the owner of {negotiation_id}")
            return SendUpdateResult(success=False, reason="Connection owner mismatch.")
        if connection["provider"] != EmailProvider.GOOGLE.value:
            logger.warning(f"Unsupported email provider {connection['provider']} for {negotiation_id}")
            return SendUpdateResult(success=False, reason=f"Unsupported email provider: {connection['provider']}")

        subject = negotiation.email_subject or f"Update on Negotiation #{negotiation.id[:6]}..."
        body = f"{message_content}\n\n---\nView negotiation: {self.app_url}/negotiations/{negotiation.id}"

        try:
            result = await asyncio.to_thread(
                self.transport.send,
                connection,
                recipient,
                subject,
                body,
                self.build_headers(negotiation),
                negotiation.email_thread_id,
            )
        except Exception as e:
            logger.error(f"Failed to send negotiation email for {negotiation_id}: {e}", exc_info=True)
            self._record_failure(negotiation, f"Email sending failed: {e}")
            return SendUpdateResult(success=False, reason=f"Email sending failed: {e}")

        if not result.success:
            self._record_failure(negotiation, "Email sending failed.")
            return SendUpdateResult(success=False, reason="Email sending failed.")

        if result.message_id and result.thread_id:
            self.store.update_email_thread_info(negotiation_id, result.thread_id, result.message_id)
        logger.info(f"Email update sent for negotiation {negotiation_id}")
        return SendUpdateResult(success=True)

    def _record_failure(self, negotiation, reason: str) -> None:
        if not negotiation.is_agent_active:
            return
        self.store.set_agent_state(negotiation.id, AgentState.ERROR, reason)
        self.notifications.create(
            user_id=negotiation.user_id,
            type=NotificationType.AGENT_NEEDS_REVIEW,
            title=f"AI Agent Error: {negotiation.route_name}",
            content=reason,
            source_id=negotiation.id,
            source_name=negotiation.route_name,
        )
