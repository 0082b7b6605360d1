"""
Agent Rule Engine - guardrails between the model's proposal and the world.

`decide` is a pure function. Rules are evaluated in order and the first
match wins. A rule can only turn a proposed send_message into
needs_review; it never turns review or error back into a send.

    1. max replies      reply_count_before >= max_auto_replies
    2. rounds           (m + 1) % (2 * notify_after_rounds) == 0
    3. signal checks    price increase, target reached, agreement,
                        new terms, confusion, refusal

Every check can be skipped for one run through BypassFlags; the signal
checks are also gated by their notify_on_* toggle.
"""

import logging
from typing import Optional

from constant.enum import AgentAction, MessageSender, ReviewTrigger
from core.utils import parse_numeric_value, price_per_km
from schemas.agent import AgentSettings, BypassFlags, Decision, GuardrailSignals, LLMProposal
from schemas.negotiation import NegotiationSnapshot
from services.negotiation_state import counterparty_price_history, negotiates_down

logger = logging.getLogger(__name__)


AGREEMENT_REASON = "Counterparty appears to agree to the terms. Please confirm the deal."
NEW_TERMS_REASON = "Counterparty introduced new terms that need your approval."
CONFUSION_REASON = "Counterparty seems confused about the offer. Please clarify."
REFUSAL_REASON = "Counterparty refused to continue the negotiation."


def _format_amount(value: float) -> str:
    return f"{value:g}"


def _review(reason: str, message: Optional[str], trigger: ReviewTrigger) -> Decision:
    return Decision(action=AgentAction.NEEDS_REVIEW, reason=reason, message=message, trigger=trigger)


def _signal_review(settings: AgentSettings, bypass: BypassFlags,
                   signals: GuardrailSignals, message: Optional[str]) -> Optional[Decision]:
    if signals.price_increase and settings.notify_on_price_change and not bypass.price_change:
        reason = "Counterparty raised the price."
        if signals.previous_price is not None and signals.latest_price is not None:
            reason = (f"Counterparty raised the price from {_format_amount(signals.previous_price)} "
                      f"to {_format_amount(signals.latest_price)}.")
        return _review(reason, message, ReviewTrigger.PRICE_INCREASE)

    if signals.target_reached and settings.notify_on_target_price_reached and not bypass.target_price:
        reason = "Target price reached."
        if signals.current_price_per_km is not None:
            reason = f"Target price reached ({signals.current_price_per_km:.2f} EUR/km)."
        return _review(reason, message, ReviewTrigger.TARGET_REACHED)

    if signals.agreement and settings.notify_on_agreement and not bypass.agreement:
        return _review(AGREEMENT_REASON, message, ReviewTrigger.AGREEMENT)

    if signals.new_terms and settings.notify_on_new_terms and not bypass.new_terms:
        return _review(NEW_TERMS_REASON, message, ReviewTrigger.NEW_TERMS)

    if signals.confusion and settings.notify_on_confusion and not bypass.confusion:
        return _review(CONFUSION_REASON, message, ReviewTrigger.CONFUSION)

    if signals.refusal and settings.notify_on_refusal and not bypass.refusal:
        return _review(REFUSAL_REASON, message, ReviewTrigger.REFUSAL)

    return None


def decide(
    llm_action: str,
    llm_reason: Optional[str],
    llm_message: Optional[str],
    reply_count_before: int,
    settings: AgentSettings,
    total_message_count_before_reply: int,
    bypass: Optional[BypassFlags] = None,
    signals: Optional[GuardrailSignals] = None,
) -> Decision:
    """Turn the model's proposed action into the final action for this run."""
    bypass = bypass or BypassFlags()
    signals = signals or GuardrailSignals()

    try:
        action = AgentAction(llm_action)
    except ValueError:
        return Decision(action=AgentAction.ERROR, reason=f"Unknown agent action: {llm_action!r}")

    if action == AgentAction.ERROR:
        return Decision(action=AgentAction.ERROR, reason=llm_reason or "The agent reported an error.")

    if action == AgentAction.NEEDS_REVIEW:
        return _review(llm_reason or "The agent requested a human review.", llm_message,
                       ReviewTrigger.LLM_REQUEST)

    if not llm_message or not llm_message.strip():
        return Decision(action=AgentAction.ERROR, reason="The agent proposed an empty message.")

    max_replies = settings.max_auto_replies
    if not settings.unlimited_replies and not bypass.max_replies and reply_count_before >= max_replies:
        return _review(f"Maximum automatic replies ({max_replies}) reached.", llm_message,
                       ReviewTrigger.MAX_REPLIES)

    rounds = settings.notify_after_rounds
    if rounds > 0 and not bypass.rounds and (total_message_count_before_reply + 1) % (rounds * 2) == 0:
        return _review(f"Reached notification point after {rounds} rounds.", llm_message,
                       ReviewTrigger.ROUNDS)

    review = _signal_review(settings, bypass, signals, llm_message)
    if review is not None:
        return review

    return Decision(action=AgentAction.SEND_MESSAGE, reason=llm_reason, message=llm_message.strip())


def build_signals(negotiation: NegotiationSnapshot, proposal: Optional[LLMProposal] = None) -> GuardrailSignals:
    """Collect the structured facts checked by rule 3."""
    signals = GuardrailSignals()

    history = counterparty_price_history(negotiation)
    # Only prices put forward since our side last spoke are news
    last_own = _last_own_message_time(negotiation)
    if history and last_own is not None and history[-1].timestamp <= last_own:
        history = []

    if len(history) >= 2 and history[-1].value > history[-2].value:
        signals.price_increase = True
        signals.previous_price = history[-2].value
        signals.latest_price = history[-1].value

    target = negotiation.agent_target_price_per_km
    distance = parse_numeric_value(negotiation.initial_request.distance)
    if history and target and distance:
        per_km = history[-1].value / distance
        signals.current_price_per_km = per_km
        # Direction is set by where the carrier started
        offered_per_km = price_per_km(negotiation.initial_request.price, negotiation.initial_request.distance)
        if negotiates_down(offered_per_km, target):
            signals.target_reached = per_km <= target
        else:
            signals.target_reached = per_km >= target

    if proposal is not None:
        signals.agreement = proposal.agreement
        signals.new_terms = proposal.newTerms
        signals.confusion = proposal.confusion
        signals.refusal = proposal.refusal

    return signals


def _last_own_message_time(negotiation: NegotiationSnapshot) -> Optional[float]:
    for message in reversed(negotiation.messages):
        if message.sender in (MessageSender.USER.value, MessageSender.AGENT.value):
            return message.timestamp.timestamp()
    return None
