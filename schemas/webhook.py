from pydantic import BaseModel, Field
from typing import Optional


class MailgunWebhookEvent(BaseModel):
    """Inbound email as posted by a Mailgun route (form fields)."""
    timestamp: Optional[str] = None
    token: Optional[str] = None
    signature: Optional[str] = None
    recipient: str = ""
    sender: str = ""
    subject: str = ""
    body_plain: str = Field("", alias="body-plain")
    stripped_text: Optional[str] = Field(None, alias="stripped-text")
    message_id: str = Field("", alias="Message-Id")

    class Config:
        populate_by_name = True
        extra = "ignore"
        json_schema_extra = {
            "example": {
                "timestamp": "1760870400",
                "token": "0ad3b8e0d7c64b6b8f4e1c2a9e5d7f10",
                "signature": "c1f2...",
                "recipient": "reply+3f9c2a7d1e@replies.alterion.io",
                "sender": "dispatch@carrier.example",
                "subject": "Re: Warsaw to Berlin",
                "body-plain": "We can do 1400 EUR.",
                "Message-Id": "<abc123@mail>"
            }
        }


class WebhookResult(BaseModel):
    success: bool
    status: int = 200
    message: str
