from datetime import datetime, timezone
from pydantic import AfterValidator, BaseModel, ConfigDict, Field
from typing import Annotated, List, Literal, Optional

from constant.enum import NegotiationStatus, ProposedBy, CounterOfferStatus


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


UtcDatetime = Annotated[datetime, AfterValidator(_as_utc)]


class InitialRequest(BaseModel):
    """Immutable snapshot of the freight offer being negotiated"""
    origin: str
    destination: str
    price: str
    distance: Optional[str] = None
    platform: Optional[str] = None
    loadType: Optional[str] = None
    weight: Optional[str] = None
    dimensions: Optional[str] = None
    carrier: Optional[str] = None
    notes: Optional[str] = None
    offerContactEmail: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "origin": "Warsaw, PL",
                "destination": "Berlin, DE",
                "price": "1500 EUR",
                "distance": "575 km",
                "loadType": "FTL",
                "weight": "24t",
                "offerContactEmail": "dispatch@carrier.example"
            }
        }


class MessageSnapshot(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    sender: str
    content: str
    timestamp: UtcDatetime
    email_message_id: Optional[str] = None


class CounterOfferSnapshot(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    price: str
    proposed_by: str
    timestamp: UtcDatetime
    status: CounterOfferStatus = CounterOfferStatus.PENDING
    notes: Optional[str] = None


class NegotiationSnapshot(BaseModel):
    """Read model of one negotiation, detached from the database session"""
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    offer_id: str
    status: NegotiationStatus
    initial_request: InitialRequest
    messages: List[MessageSnapshot] = Field(default_factory=list)
    counter_offers: List[CounterOfferSnapshot] = Field(default_factory=list)
    current_price: Optional[str] = None
    final_price: Optional[str] = None

    is_agent_active: bool = False
    agent_target_price_per_km: Optional[float] = None
    agent_state: Optional[str] = None
    agent_message: Optional[str] = None
    agent_reply_count: Optional[int] = None

    email_thread_id: Optional[str] = None
    last_email_message_id: Optional[str] = None
    email_subject: Optional[str] = None
    email_cc_recipients: Optional[List[str]] = None
    connection_id: Optional[int] = None

    created_at: UtcDatetime
    updated_at: UtcDatetime

    @property
    def route_name(self) -> str:
        return f"{self.initial_request.origin} to {self.initial_request.destination}"


# ----------------------------------------------------------------------------
# Request bodies
# ----------------------------------------------------------------------------

class CreateNegotiationRequest(BaseModel):
    offerId: str
    initialRequest: InitialRequest
    emailSubject: Optional[str] = None
    connectionId: Optional[int] = None


class AddMessageRequest(BaseModel):
    message: str = Field(..., min_length=1)
    sender: Literal["user", "system"] = "user"


class CounterOfferRequest(BaseModel):
    price: str = Field(..., min_length=1)
    proposedBy: ProposedBy = ProposedBy.USER
    notes: Optional[str] = None


class StatusUpdateRequest(BaseModel):
    status: Literal["accepted", "rejected"]


class CounterOfferStatusRequest(BaseModel):
    status: CounterOfferStatus


class EmailSettingsRequest(BaseModel):
    emailSubject: Optional[str] = None
    emailCcRecipients: Optional[List[str]] = None
    connectionId: Optional[int] = None


class EmailReplyAppendResult(BaseModel):
    """Outcome of appending an inbound email to a negotiation"""
    appended: bool
    negotiation: NegotiationSnapshot
