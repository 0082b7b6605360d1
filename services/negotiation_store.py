"""
Negotiation Store - durable record of each negotiation's history.

Every public method is one transaction. Callers get pydantic snapshots
back, never live ORM objects, so nothing is held across awaits. State
machine guards are evaluated inside the same transaction as the write.
"""

import logging
from typing import List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError

from constant.enum import (
    AgentState,
    CounterOfferStatus,
    MessageSender,
    NegotiationStatus,
)
from core.database import session_scope
from models.connection import EmailConnection
from models.negotiation import (
    AgentConfiguration,
    CounterOffer,
    Negotiation,
    NegotiationMessage,
    ProcessedJob,
)
from schemas.agent import AgentSettings, AgentSettingsUpdate
from schemas.negotiation import (
    EmailReplyAppendResult,
    InitialRequest,
    NegotiationSnapshot,
)
from services.negotiation_state import (
    compute_final_price,
    email_sender_tag,
    ensure_pending,
    validate_agent_state,
)

logger = logging.getLogger(__name__)

MAX_APPEND_ATTEMPTS = 3


class NegotiationStore:

    def __init__(self, session_factory):
        self.session_factory = session_factory

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _snapshot(row: Negotiation) -> NegotiationSnapshot:
        return NegotiationSnapshot.model_validate(row)

    @staticmethod
    def _load(session, negotiation_id: str) -> Negotiation:
        row = session.get(Negotiation, negotiation_id)
        if row is None:
            raise LookupError(f"Negotiation {negotiation_id} not found")
        return row

    @staticmethod
    def _append_message_row(session, row: Negotiation, sender: str, content: str,
                            email_message_id: Optional[str] = None) -> NegotiationMessage:
        position = len(row.messages)
        message = NegotiationMessage(
            negotiation_id=row.id,
            position=position,
            sender=sender,
            content=content,
            email_message_id=email_message_id or None,
        )
        row.messages.append(message)
        session.flush()
        return message

    # ------------------------------------------------------------------
    # Negotiation lifecycle
    # ------------------------------------------------------------------

    def create_negotiation(self, user_id: str, offer_id: str, initial_request: InitialRequest,
                           email_subject: Optional[str] = None,
                           connection_id: Optional[int] = None) -> NegotiationSnapshot:
        with session_scope(self.session_factory) as session:
            row = Negotiation(
                user_id=user_id,
                offer_id=offer_id,
                status=NegotiationStatus.PENDING.value,
                initial_request=initial_request.model_dump(),
                current_price=initial_request.price,
                email_subject=email_subject,
                connection_id=connection_id,
            )
            session.add(row)
            session.flush()
            logger.info(f"Created negotiation {row.id} for offer {offer_id}")
            return self._snapshot(row)

    def get(self, negotiation_id: str) -> Optional[NegotiationSnapshot]:
        with session_scope(self.session_factory) as session:
            row = session.get(Negotiation, negotiation_id)
            return self._snapshot(row) if row else None

    def list_for_user(self, user_id: str) -> List[NegotiationSnapshot]:
        with session_scope(self.session_factory) as session:
            rows = session.scalars(
                select(Negotiation)
                .where(Negotiation.user_id == user_id)
                .order_by(Negotiation.created_at.desc())
            ).all()
            return [self._snapshot(row) for row in rows]

    def delete(self, negotiation_id: str) -> None:
        """Hard delete, together with the agent configuration."""
        with session_scope(self.session_factory) as session:
            row = self._load(session, negotiation_id)
            config = session.scalar(
                select(AgentConfiguration).where(AgentConfiguration.negotiation_id == negotiation_id))
            if config is not None:
                session.delete(config)
            session.delete(row)
            logger.info(f"Deleted negotiation {negotiation_id}")

    def set_status(self, negotiation_id: str, status: NegotiationStatus) -> NegotiationSnapshot:
        """Human accept/reject. Accepting freezes the final price."""
        status = NegotiationStatus(status)
        if status == NegotiationStatus.PENDING:
            raise ValueError("A negotiation cannot be moved back to pending")

        with session_scope(self.session_factory) as session:
            row = self._load(session, negotiation_id)
            ensure_pending(row.status, f"mark negotiation {status.value}")

            if status == NegotiationStatus.ACCEPTED:
                row.final_price = compute_final_price(self._snapshot(row))
            row.status = status.value
            # A closed negotiation has nothing left for the agent to do
            self._clear_agent(row)
            session.flush()
            logger.info(f"Negotiation {negotiation_id} -> {status.value} (final price {row.final_price})")
            return self._snapshot(row)

    # ------------------------------------------------------------------
    # Append-only logs
    # ------------------------------------------------------------------

    def append_message(self, negotiation_id: str, sender: str, content: str) -> NegotiationSnapshot:
        with session_scope(self.session_factory) as session:
            row = self._load(session, negotiation_id)
            self._append_message_row(session, row, sender, content)
            return self._snapshot(row)

    def append_agent_message(self, negotiation_id: str, content: str) -> NegotiationSnapshot:
        return self.append_message(negotiation_id, MessageSender.AGENT.value, content)

    def append_email_reply(self, negotiation_id: str, sender_address: str, content: str,
                           email_message_id: str) -> EmailReplyAppendResult:
        """
        Appends an inbound email unless a message with the same canonical
        Message-ID is already present. Updates lastEmailMessageId so the
        next outbound send threads onto this email.
        """
        for attempt in range(MAX_APPEND_ATTEMPTS):
            try:
                with session_scope(self.session_factory) as session:
                    row = self._load(session, negotiation_id)

                    if email_message_id and any(
                            m.email_message_id == email_message_id for m in row.messages):
                        logger.info(f"Duplicate email {email_message_id} for {negotiation_id} ignored")
                        return EmailReplyAppendResult(appended=False, negotiation=self._snapshot(row))

                    self._append_message_row(
                        session, row, email_sender_tag(sender_address), content, email_message_id)
                    if email_message_id:
                        row.last_email_message_id = email_message_id
                    session.flush()
                    return EmailReplyAppendResult(appended=True, negotiation=self._snapshot(row))
            except IntegrityError:
                # Either the same email won a concurrent race (dedup on the next
                # pass) or another message took this position (retry)
                logger.info(f"Concurrent append on {negotiation_id}, attempt {attempt + 1}")

        raise RuntimeError(f"Could not append email to negotiation {negotiation_id}")

    def append_counter_offer(self, negotiation_id: str, price: str, proposed_by: str,
                             notes: Optional[str] = None) -> NegotiationSnapshot:
        with session_scope(self.session_factory) as session:
            row = self._load(session, negotiation_id)
            row.counter_offers.append(CounterOffer(
                negotiation_id=row.id,
                position=len(row.counter_offers),
                price=price,
                proposed_by=proposed_by,
                status=CounterOfferStatus.PENDING.value,
                notes=notes,
            ))
            # Projection of the price currently on the table
            row.current_price = price
            session.flush()
            return self._snapshot(row)

    def update_counter_offer_status(self, negotiation_id: str, index: int,
                                    status: CounterOfferStatus) -> NegotiationSnapshot:
        status = CounterOfferStatus(status)
        with session_scope(self.session_factory) as session:
            row = self._load(session, negotiation_id)
            if index < 0 or index >= len(row.counter_offers):
                raise LookupError("Counter offer not found")
            ensure_pending(row.status, "update a counter offer")

            offer = row.counter_offers[index]
            offer.status = status.value
            if status == CounterOfferStatus.ACCEPTED:
                row.status = NegotiationStatus.ACCEPTED.value
                row.final_price = offer.price
                self._clear_agent(row)
            session.flush()
            return self._snapshot(row)

    # ------------------------------------------------------------------
    # Agent sub-state
    # ------------------------------------------------------------------

    @staticmethod
    def _clear_agent(row: Negotiation) -> None:
        row.is_agent_active = False
        row.agent_target_price_per_km = None
        row.agent_reply_count = None
        row.agent_state = None
        row.agent_message = None

    def activate_agent(self, negotiation_id: str, target_price_per_km: float) -> NegotiationSnapshot:
        if target_price_per_km is None or float(target_price_per_km) <= 0:
            raise ValueError("A positive target price per km is required to activate the agent")

        with session_scope(self.session_factory) as session:
            row = self._load(session, negotiation_id)
            ensure_pending(row.status, "activate the agent")
            row.is_agent_active = True
            row.agent_target_price_per_km = float(target_price_per_km)
            row.agent_reply_count = 0
            row.agent_state = None
            row.agent_message = None
            session.flush()
            logger.info(f"Agent activated for {negotiation_id} (target {target_price_per_km} EUR/km)")
            return self._snapshot(row)

    def deactivate_agent(self, negotiation_id: str) -> NegotiationSnapshot:
        with session_scope(self.session_factory) as session:
            row = self._load(session, negotiation_id)
            self._clear_agent(row)
            session.flush()
            logger.info(f"Agent deactivated for {negotiation_id}")
            return self._snapshot(row)

    def take_over(self, negotiation_id: str, notice: str) -> NegotiationSnapshot:
        """Deactivate the agent and record the hand-over in the conversation."""
        with session_scope(self.session_factory) as session:
            row = self._load(session, negotiation_id)
            self._clear_agent(row)
            self._append_message_row(session, row, MessageSender.SYSTEM.value, notice)
            return self._snapshot(row)

    def set_agent_state(self, negotiation_id: str, state: Optional[AgentState],
                        message: Optional[str]) -> NegotiationSnapshot:
        state_value = validate_agent_state(state.value if isinstance(state, AgentState) else state)
        with session_scope(self.session_factory) as session:
            row = self._load(session, negotiation_id)
            row.agent_state = state_value
            row.agent_message = message if state_value else None
            session.flush()
            return self._snapshot(row)

    def increment_agent_reply_count(self, negotiation_id: str) -> int:
        """Atomic increment in the database; returns the new count."""
        with session_scope(self.session_factory) as session:
            result = session.execute(
                update(Negotiation)
                .where(Negotiation.id == negotiation_id)
                .values(agent_reply_count=func.coalesce(Negotiation.agent_reply_count, 0) + 1)
            )
            if result.rowcount == 0:
                raise LookupError(f"Negotiation {negotiation_id} not found")
            return session.scalar(
                select(Negotiation.agent_reply_count).where(Negotiation.id == negotiation_id))

    # ------------------------------------------------------------------
    # Email thread linkage
    # ------------------------------------------------------------------

    def update_email_thread_info(self, negotiation_id: str, thread_id: str,
                                 last_message_id: str) -> None:
        with session_scope(self.session_factory) as session:
            row = self._load(session, negotiation_id)
            row.email_thread_id = thread_id
            row.last_email_message_id = last_message_id

    def update_email_settings(self, negotiation_id: str, subject: Optional[str] = None,
                              cc_recipients: Optional[List[str]] = None,
                              connection_id: Optional[int] = None) -> NegotiationSnapshot:
        with session_scope(self.session_factory) as session:
            row = self._load(session, negotiation_id)
            if subject is not None:
                row.email_subject = subject
            if cc_recipients is not None:
                row.email_cc_recipients = [c.strip() for c in cc_recipients if c and c.strip()]
            if connection_id is not None:
                row.connection_id = connection_id
            session.flush()
            return self._snapshot(row)

    # ------------------------------------------------------------------
    # Agent configuration
    # ------------------------------------------------------------------

    @staticmethod
    def _settings_from_row(config: AgentConfiguration) -> AgentSettings:
        return AgentSettings(
            style=config.style,
            notify_on_price_change=config.notify_on_price_change,
            notify_on_new_terms=config.notify_on_new_terms,
            notify_on_target_price_reached=config.notify_on_target_price_reached,
            notify_on_agreement=config.notify_on_agreement,
            notify_on_confusion=config.notify_on_confusion,
            notify_on_refusal=config.notify_on_refusal,
            max_auto_replies=config.max_auto_replies,
            notify_after_rounds=config.notify_after_rounds,
        )

    def get_agent_configuration(self, negotiation_id: str) -> Optional[AgentSettings]:
        with session_scope(self.session_factory) as session:
            config = session.scalar(
                select(AgentConfiguration).where(AgentConfiguration.negotiation_id == negotiation_id))
            return self._settings_from_row(config) if config else None

    def upsert_agent_configuration(self, negotiation_id: str, user_id: str,
                                   overrides: Optional[AgentSettingsUpdate] = None,
                                   defaults: Optional[AgentSettings] = None) -> AgentSettings:
        """Merge provided settings over the stored ones (or the defaults)."""
        with session_scope(self.session_factory) as session:
            self._load(session, negotiation_id)
            config = session.scalar(
                select(AgentConfiguration).where(AgentConfiguration.negotiation_id == negotiation_id))

            base = self._settings_from_row(config) if config else (defaults or AgentSettings())
            changes = overrides.model_dump(exclude_none=True) if overrides else {}
            merged = base.model_copy(update=changes)
            merged = AgentSettings.model_validate(merged.model_dump())

            if config is None:
                config = AgentConfiguration(negotiation_id=negotiation_id, user_id=user_id)
                session.add(config)
            values = merged.model_dump(mode="json")
            for field, value in values.items():
                setattr(config, field, value)
            session.flush()
            return merged

    # ------------------------------------------------------------------
    # Connections and job bookkeeping
    # ------------------------------------------------------------------

    def add_connection(self, user_id: str, email: str, refresh_token: Optional[str] = None,
                       provider: str = "google", label: Optional[str] = None) -> int:
        with session_scope(self.session_factory) as session:
            connection = EmailConnection(
                user_id=user_id, email=email, refresh_token=refresh_token,
                provider=provider, label=label)
            session.add(connection)
            session.flush()
            return connection.id

    def get_connection(self, connection_id: int) -> Optional[dict]:
        with session_scope(self.session_factory) as session:
            connection = session.get(EmailConnection, connection_id)
            if connection is None:
                return None
            return {
                "id": connection.id,
                "user_id": connection.user_id,
                "provider": connection.provider,
                "email": connection.email,
                "refresh_token": connection.refresh_token,
            }

    def is_job_processed(self, key: str) -> bool:
        with session_scope(self.session_factory) as session:
            return session.get(ProcessedJob, key) is not None

    def mark_job_processed(self, key: str) -> None:
        try:
            with session_scope(self.session_factory) as session:
                session.add(ProcessedJob(key=key))
        except IntegrityError:
            logger.info(f"Job {key} was already marked as processed")
