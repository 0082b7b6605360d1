"""
Mailgun inbound route webhook.

Logically handled outcomes are answered with 200 (with success false
where nothing was appended) so Mailgun does not retry them.
"""

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from schemas.webhook import MailgunWebhookEvent, WebhookResult
from services.email_correlator import EmailCorrelator


class WebhookController:
    def __init__(self, correlator: EmailCorrelator):
        self.router = APIRouter(prefix="/api/v1", tags=["Webhooks"])
        self.correlator = correlator
        self.logger = logging.getLogger(__name__)

        self.router.add_api_route(
            "/webhooks/mailgun",
            self.mailgun_inbound,
            methods=["POST"],
            response_model=WebhookResult
        )

    async def mailgun_inbound(self, request: Request) -> JSONResponse:
        try:
            form = await request.form()
            fields = {key: value for key, value in form.items() if isinstance(value, str)}
            self.logger.info(f"Mailgun webhook received with fields: {sorted(fields)}")

            event = MailgunWebhookEvent.model_validate(fields)
            result = await self.correlator.process(event)
        except Exception as e:
            self.logger.error(f"Mailgun webhook failed: {e}", exc_info=True)
            result = WebhookResult(success=False, status=500, message=f"Internal error: {e}")

        return JSONResponse(status_code=result.status, content=result.model_dump())
