"""
Negotiation Action - human-triggered negotiation operations.

Every operation checks that the caller owns the negotiation and raises
synchronously: PermissionError (not authenticated / not the owner),
LookupError (not found), ValueError (state machine refused the change).
"""

import logging
from typing import List, Optional

from constant.enum import CounterOfferStatus, NegotiationStatus
from schemas.negotiation import (
    AddMessageRequest,
    CounterOfferRequest,
    CreateNegotiationRequest,
    EmailSettingsRequest,
    NegotiationSnapshot,
)

logger = logging.getLogger(__name__)


def require_user(user_id: Optional[str]) -> str:
    if not user_id:
        raise PermissionError("Not authenticated")
    return user_id


class NegotiationAction:

    def __init__(self, store):
        self.store = store

    def get_owned(self, user_id: str, negotiation_id: str) -> NegotiationSnapshot:
        require_user(user_id)
        negotiation = self.store.get(negotiation_id)
        if negotiation is None:
            raise LookupError("Negotiation not found")
        if negotiation.user_id != user_id:
            raise PermissionError("Unauthorized access to negotiation")
        return negotiation

    def create(self, user_id: str, request: CreateNegotiationRequest) -> NegotiationSnapshot:
        require_user(user_id)
        if request.connectionId is not None:
            self._check_connection(user_id, request.connectionId)
        return self.store.create_negotiation(
            user_id=user_id,
            offer_id=request.offerId,
            initial_request=request.initialRequest,
            email_subject=request.emailSubject,
            connection_id=request.connectionId,
        )

    def list_negotiations(self, user_id: str) -> List[NegotiationSnapshot]:
        return self.store.list_for_user(require_user(user_id))

    def get(self, user_id: str, negotiation_id: str) -> NegotiationSnapshot:
        return self.get_owned(user_id, negotiation_id)

    def delete(self, user_id: str, negotiation_id: str) -> None:
        self.get_owned(user_id, negotiation_id)
        self.store.delete(negotiation_id)

    def add_message(self, user_id: str, negotiation_id: str, request: AddMessageRequest) -> NegotiationSnapshot:
        self.get_owned(user_id, negotiation_id)
        return self.store.append_message(negotiation_id, request.sender, request.message)

    def submit_counter_offer(self, user_id: str, negotiation_id: str,
                             request: CounterOfferRequest) -> NegotiationSnapshot:
        self.get_owned(user_id, negotiation_id)
        return self.store.append_counter_offer(
            negotiation_id, request.price, request.proposedBy.value, request.notes)

    def update_status(self, user_id: str, negotiation_id: str, status: str) -> NegotiationSnapshot:
        self.get_owned(user_id, negotiation_id)
        updated = self.store.set_status(negotiation_id, NegotiationStatus(status))
        logger.info(f"User {user_id} marked negotiation {negotiation_id} as {status}")
        return updated

    def update_counter_offer_status(self, user_id: str, negotiation_id: str, index: int,
                                    status: CounterOfferStatus) -> NegotiationSnapshot:
        self.get_owned(user_id, negotiation_id)
        return self.store.update_counter_offer_status(negotiation_id, index, status)

    def update_email_settings(self, user_id: str, negotiation_id: str,
                              request: EmailSettingsRequest) -> NegotiationSnapshot:
        self.get_owned(user_id, negotiation_id)
        if request.connectionId is not None:
            self._check_connection(user_id, request.connectionId)
        return self.store.update_email_settings(
            negotiation_id,
            subject=request.emailSubject,
            cc_recipients=request.emailCcRecipients,
            connection_id=request.connectionId,
        )

    def _check_connection(self, user_id: str, connection_id: int) -> None:
        connection = self.store.get_connection(connection_id)
        if connection is None:
            raise LookupError("Email connection not found")
        if connection["user_id"] != user_id:
            raise PermissionError("Unauthorized access to email connection")
