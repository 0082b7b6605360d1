"""
Negotiation state machine rules and derived-state projections.

Status:  pending -> accepted | rejected   (terminal, never left again)
Agent:   inactive <-> active; while active: running (None) <-> needs_review <-> error
"""

from typing import List, NamedTuple, Optional

from constant.enum import (
    AgentState,
    EMAIL_SENDER_PREFIX,
    MessageSender,
    NegotiationStatus,
    ProposedBy,
)
from core.utils import extract_marked_price, extract_price_mention, format_eur, parse_numeric_value
from schemas.negotiation import NegotiationSnapshot

TERMINAL_STATUSES = {NegotiationStatus.ACCEPTED, NegotiationStatus.REJECTED}


class PricePoint(NamedTuple):
    value: float
    timestamp: float
    source: str


def is_terminal(status) -> bool:
    return NegotiationStatus(status) in TERMINAL_STATUSES


def ensure_pending(status, action: str) -> None:
    if is_terminal(status):
        raise ValueError(f"Cannot {action}: negotiation is already {NegotiationStatus(status).value}")


def validate_agent_state(state: Optional[str]) -> Optional[str]:
    if state is None:
        return None
    return AgentState(state).value


def is_counterparty_sender(sender: str) -> bool:
    return sender not in (MessageSender.USER.value, MessageSender.AGENT.value, MessageSender.SYSTEM.value)


def email_sender_tag(address: str) -> str:
    return f"{EMAIL_SENDER_PREFIX}{address}"


def compute_final_price(negotiation: NegotiationSnapshot) -> str:
    """
    Price frozen when a negotiation is accepted:
    1. newest counter-offer
    2. newest price mentioned in a non-system message
    3. the initial offer price
    """
    for offer in reversed(negotiation.counter_offers):
        if offer.price and offer.price.strip():
            return offer.price

    for message in reversed(negotiation.messages):
        if message.sender == MessageSender.SYSTEM.value:
            continue
        mentioned = extract_price_mention(message.content)
        if mentioned is not None:
            return format_eur(mentioned)

    return negotiation.initial_request.price


def current_offer_price(negotiation: NegotiationSnapshot) -> str:
    """Latest counter-offer price, else the initial price."""
    if negotiation.counter_offers:
        return negotiation.counter_offers[-1].price
    return negotiation.initial_request.price


def negotiates_down(price_per_km: Optional[float], target_per_km: Optional[float]) -> bool:
    """
    True when the price on the table is above the target, so the agent has
    to lower it. Defaults to down when either side is unknown.
    """
    if price_per_km is None or target_per_km is None:
        return True
    return price_per_km > target_per_km


def counterparty_price_history(negotiation: NegotiationSnapshot) -> List[PricePoint]:
    """
    Prices put forward by the carrier side, oldest first, with consecutive
    repeats collapsed. The initial offer price is the baseline.
    """
    prices: List[PricePoint] = []

    initial = parse_numeric_value(negotiation.initial_request.price)
    if initial is not None:
        prices.append(PricePoint(initial, negotiation.created_at.timestamp(), "initial"))

    for offer in negotiation.counter_offers:
        if offer.proposed_by in (ProposedBy.USER.value, ProposedBy.AGENT.value):
            continue
        value = parse_numeric_value(offer.price)
        if value is not None:
            prices.append(PricePoint(value, offer.timestamp.timestamp(), f"counter-{offer.proposed_by}"))

    for message in negotiation.messages:
        if not is_counterparty_sender(message.sender):
            continue
        value = extract_marked_price(message.content)
        if value is not None:
            prices.append(PricePoint(value, message.timestamp.timestamp(), f"message-{message.sender}"))

    prices.sort(key=lambda p: p.timestamp)

    unique: List[PricePoint] = []
    for point in prices:
        if not unique or unique[-1].value != point.value:
            unique.append(point)
    return unique


def latest_counterparty_message(negotiation: NegotiationSnapshot):
    for message in reversed(negotiation.messages):
        if is_counterparty_sender(message.sender):
            return message
    return None
