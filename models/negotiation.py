"""SQLAlchemy 2.0 declarative models for negotiations and their event logs."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


class Negotiation(Base):
    __tablename__ = "negotiations"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    offer_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")

    # Frozen snapshot of the offer the negotiation started from
    initial_request: Mapped[dict] = mapped_column(JSON, nullable=False)

    current_price: Mapped[str | None] = mapped_column(String(64), nullable=True)
    final_price: Mapped[str | None] = mapped_column(String(64), nullable=True)

    is_agent_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    agent_target_price_per_km: Mapped[float | None] = mapped_column(Float, nullable=True)
    agent_state: Mapped[str | None] = mapped_column(String(16), nullable=True)
    agent_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    agent_reply_count: Mapped[int | None] = mapped_column(Integer, nullable=True)

    email_thread_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    last_email_message_id: Mapped[str | None] = mapped_column(String(256), nullable=True)
    email_subject: Mapped[str | None] = mapped_column(String(256), nullable=True)
    email_cc_recipients: Mapped[list | None] = mapped_column(JSON, nullable=True)
    connection_id: Mapped[int | None] = mapped_column(
        ForeignKey("email_connections.id"), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    messages: Mapped[list["NegotiationMessage"]] = relationship(
        back_populates="negotiation",
        order_by="NegotiationMessage.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    counter_offers: Mapped[list["CounterOffer"]] = relationship(
        back_populates="negotiation",
        order_by="CounterOffer.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class NegotiationMessage(Base):
    """Append-only conversation log entry."""
    __tablename__ = "negotiation_messages"
    __table_args__ = (
        UniqueConstraint("negotiation_id", "position", name="uq_message_position"),
        UniqueConstraint("negotiation_id", "email_message_id", name="uq_message_email_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    negotiation_id: Mapped[str] = mapped_column(
        ForeignKey("negotiations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    sender: Mapped[str] = mapped_column(String(320), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    email_message_id: Mapped[str | None] = mapped_column(String(256), nullable=True)

    negotiation: Mapped["Negotiation"] = relationship(back_populates="messages")


class CounterOffer(Base):
    """Append-only price proposal; only `status` changes after insert."""
    __tablename__ = "counter_offers"
    __table_args__ = (
        UniqueConstraint("negotiation_id", "position", name="uq_counter_offer_position"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    negotiation_id: Mapped[str] = mapped_column(
        ForeignKey("negotiations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    price: Mapped[str] = mapped_column(String(64), nullable=False)
    proposed_by: Mapped[str] = mapped_column(String(32), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    negotiation: Mapped["Negotiation"] = relationship(back_populates="counter_offers")


class AgentConfiguration(Base):
    __tablename__ = "agent_configurations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    negotiation_id: Mapped[str] = mapped_column(
        ForeignKey("negotiations.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    style: Mapped[str] = mapped_column(String(16), nullable=False, default="balanced")
    notify_on_price_change: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    notify_on_new_terms: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    notify_on_target_price_reached: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    notify_on_agreement: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    notify_on_confusion: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    notify_on_refusal: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    max_auto_replies: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    notify_after_rounds: Mapped[int] = mapped_column(Integer, nullable=False, default=5)


class ProcessedJob(Base):
    """Idempotency keys of scheduled jobs that already completed."""
    __tablename__ = "processed_jobs"

    key: Mapped[str] = mapped_column(String(256), primary_key=True)
    processed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
