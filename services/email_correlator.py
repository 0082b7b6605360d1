"""
Email Thread Correlator
Turns an inbound Mailgun webhook into an idempotent, ordered append to
the right negotiation.

    authenticate -> route -> normalise Message-ID -> dedup + append -> re-trigger

Every logically handled outcome (including "unknown negotiation") is
reported with status 200 so the provider does not retry it; only
authentication failures carry 400/401.
"""

import hashlib
import hmac
import logging
import re
import time
from email.utils import parseaddr
from typing import Optional

from email_reply_parser import EmailReplyParser

from config import AppConfig
from core.utils import clean_message_id
from schemas.webhook import MailgunWebhookEvent, WebhookResult

logger = logging.getLogger(__name__)

REPLY_ADDRESS_PATTERN = re.compile(r'^reply\+([^@]+)@', re.IGNORECASE)


def verify_signature(event: MailgunWebhookEvent, signing_key: str,
                     max_age_seconds: int = AppConfig.WEBHOOK_MAX_AGE_SECONDS,
                     enforce_freshness: bool = AppConfig.WEBHOOK_ENFORCE_FRESHNESS,
                     now: Optional[float] = None) -> WebhookResult:
    """HMAC-SHA256 over timestamp + token, compared in constant time."""
    if not event.timestamp or not event.token or not event.signature:
        logger.warning("Webhook is missing verification fields")
        return WebhookResult(success=False, status=400, message="Missing required verification fields")

    try:
        timestamp = int(event.timestamp)
    except ValueError:
        return WebhookResult(success=False, status=400, message="Invalid timestamp format")

    now = time.time() if now is None else now
    if timestamp < now - max_age_seconds:
        logger.warning(f"Webhook timestamp is too old: {event.timestamp}")
        if enforce_freshness:
            return WebhookResult(success=False, status=400, message="Webhook timestamp too old")

    expected = hmac.new(
        signing_key.encode("utf-8"),
        f"{event.timestamp}{event.token}".encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()

    if not hmac.compare_digest(expected, event.signature):
        logger.error("Webhook signature verification failed")
        return WebhookResult(success=False, status=401, message="Invalid signature")

    return WebhookResult(success=True, message="Signature verified")


def extract_negotiation_id(recipient: str) -> Optional[str]:
    """'Carrier <reply+abc123@replies.example>' -> 'abc123'"""
    _, address = parseaddr(recipient or "")
    match = REPLY_ADDRESS_PATTERN.match(address.strip())
    return match.group(1) if match else None


def extract_reply_body(event: MailgunWebhookEvent) -> str:
    """Mailgun's stripped-text when present, else the latest reply of body-plain."""
    if event.stripped_text and event.stripped_text.strip():
        return event.stripped_text.strip()
    if not event.body_plain:
        return ""
    return EmailReplyParser.parse_reply(event.body_plain).strip()


class EmailCorrelator:

    def __init__(self, store, scheduler, signing_key: str = AppConfig.MAILGUN_SIGNING_KEY,
                 max_age_seconds: int = AppConfig.WEBHOOK_MAX_AGE_SECONDS,
                 enforce_freshness: bool = AppConfig.WEBHOOK_ENFORCE_FRESHNESS):
        self.store = store
        self.scheduler = scheduler
        self.signing_key = signing_key
        self.max_age_seconds = max_age_seconds
        self.enforce_freshness = enforce_freshness

    async def process(self, event: MailgunWebhookEvent) -> WebhookResult:
        # 1. Authenticate
        verification = verify_signature(
            event, self.signing_key, self.max_age_seconds, self.enforce_freshness)
        if not verification.success:
            return verification

        # 2. Route
        negotiation_id = extract_negotiation_id(event.recipient)
        if not negotiation_id:
            logger.error(f"Failed to extract negotiation id from recipient: {event.recipient}")
            return WebhookResult(success=False, message="Could not determine negotiation ID")

        # 3. Normalise
        message_id = clean_message_id(event.message_id)
        _, sender_address = parseaddr(event.sender or "")
        sender_address = sender_address or event.sender
        content = extract_reply_body(event)

        logger.info(f"Inbound email for {negotiation_id} from {sender_address} "
                    f"(Message-ID {message_id or 'missing'}, {len(content)} chars)")

        # 4-5. Dedup + append
        try:
            result = self.store.append_email_reply(negotiation_id, sender_address, content, message_id)
        except LookupError:
            logger.warning(f"Inbound email for unknown negotiation {negotiation_id}")
            return WebhookResult(success=False, message=f"Negotiation {negotiation_id} not found")
        except Exception as e:
            logger.error(f"Error processing reply for negotiation {negotiation_id}: {e}", exc_info=True)
            return WebhookResult(success=False, message=f"Error processing: {e}")

        if not result.appended:
            return WebhookResult(success=True, message="Duplicate email ignored")

        # 6. Re-trigger
        if result.negotiation.is_agent_active:
            try:
                await self.scheduler.schedule_agent_run(negotiation_id, trigger="email_reply")
            except Exception as e:
                logger.error(f"Could not schedule agent run for {negotiation_id}: {e}", exc_info=True)
                return WebhookResult(success=False, message=f"Error processing: {e}")

        return WebhookResult(success=True, message="Email reply processed successfully")
