"""
Negotiation Agent Prompt
Single prompt per agent run: role, goal, full conversation, and the JSON
contract the completion service must answer with.
"""

import logging
from typing import List, Optional

from langchain_core.prompts import PromptTemplate

from constant.enum import AgentStyle, MessageSender
from schemas.negotiation import MessageSnapshot, NegotiationSnapshot
from services.negotiation_state import negotiates_down

logger = logging.getLogger(__name__)


# =============================================================================
# STYLE GUIDANCE
# =============================================================================

STYLE_GUIDANCE = {
    AgentStyle.CONSERVATIVE: (
        "You're the friendly type. Build relationships, focus on long-term business, "
        "and be patient with negotiations. Still protect your interests, but in a cooperative way."
    ),
    AgentStyle.BALANCED: (
        "You're straightforward but fair. Get to the point quickly about price, "
        "but remain professional and build rapport when appropriate."
    ),
    AgentStyle.AGGRESSIVE: (
        "You're a tough negotiator. Be direct, push harder for your price target, "
        "and don't waste time. Mention other options or deadlines when it helps."
    ),
}

FIRST_CONTACT_TACTIC = """This is your FIRST contact with the carrier.
- Greet them briefly and mention you saw their offer for this route
- Immediately propose a total price {anchor} than your target of {target_total} to leave room to negotiate
- No formal letter structure"""

FOLLOW_UP_TACTIC = """This is a follow-up in an ongoing conversation.
- Answer any question in the carrier's last message briefly, then refocus on price
- Move toward your target in small concessions, never past it
- If the carrier's price is at or {beyond} your target, you may agree"""

# Wording per negotiation direction (price above target: down)
DIRECTION_WORDING = {
    True: {"direction": "DOWN", "verb": "LOWER", "anchor": "LOWER", "beyond": "below"},
    False: {"direction": "UP", "verb": "RAISE", "anchor": "HIGHER", "beyond": "above"},
}


# =============================================================================
# MAIN NEGOTIATION PROMPT
# =============================================================================

AGENT_NEGOTIATION_PROMPT = """YOU ARE: A logistics professional who uses freight exchanges daily. You spotted a transport offer and are negotiating its total price with the carrier by email, on behalf of your customer.

YOUR GOAL: Negotiate the TOTAL PRICE {direction} to {target_total} for transport from {origin} to {destination}.

LOAD DETAILS:
- Load type: {load_type}
- Weight: {weight}
- Distance: {distance}
- Carrier: {carrier}
- Notes: {notes}

CURRENT SITUATION:
- Price currently on the table: {current_price}
- Current price per km: {current_price_per_km}
- Your target: {target_per_km} EUR/km, i.e. {target_total} in total
- You need to {verb} this price

YOUR PERSONALITY: {style_guidance}

TACTICAL ADVICE:
{tactic}

COMMUNICATION STYLE:
1. Short and direct, like a busy transport professional
2. Use "I", never mention a company name
3. Only discuss the TOTAL price, never the price per kilometer
4. Never use placeholders like [Your Name]
5. No signature blocks or formal closings

CONVERSATION SO FAR:
{history}

WHEN TO ASK FOR HUMAN REVIEW:
Use "needs_review" instead of writing a message when the carrier asks for something you cannot decide on your own (payment terms, dates, extra stops) or when the conversation has clearly ended.

Respond ONLY with a JSON object in this exact format:
{{
  "action": "send_message" | "needs_review",
  "messageContent": "the email text to send (required for send_message)",
  "reason": "short explanation of your decision",
  "agreement": true | false,
  "newTerms": true | false,
  "confusion": true | false,
  "refusal": true | false
}}

Flags describe the carrier's LAST message: "agreement" if they accept a price, "newTerms" if they add conditions not discussed before, "confusion" if they misunderstood the offer, "refusal" if they decline to continue.
"""

agent_negotiation_template = PromptTemplate.from_template(AGENT_NEGOTIATION_PROMPT)


# =============================================================================
# PROMPT CONTEXT BUILDER
# =============================================================================

def _speaker(sender: str) -> str:
    if sender == MessageSender.AGENT.value:
        return "YOU"
    if sender == MessageSender.USER.value:
        return "CUSTOMER"
    if sender == MessageSender.SYSTEM.value:
        return "SYSTEM"
    return f"CARRIER ({sender})"


def format_history(messages: List[MessageSnapshot]) -> str:
    if not messages:
        return "No messages yet."
    return "\n".join(f"[{_speaker(m.sender)}]: {m.content}" for m in messages)


def is_first_contact(negotiation: NegotiationSnapshot) -> bool:
    return not any(m.sender == MessageSender.AGENT.value for m in negotiation.messages)


def build_agent_prompt(
    negotiation: NegotiationSnapshot,
    style: AgentStyle,
    current_price: str,
    current_price_per_km: Optional[float],
    distance_km: Optional[float],
) -> str:
    """Render the prompt for one agent run."""
    request = negotiation.initial_request
    target_per_km = negotiation.agent_target_price_per_km

    if distance_km:
        target_total = f"{distance_km * target_per_km:.2f} EUR"
    else:
        target_total = f"{target_per_km:.2f} EUR per km (distance unknown)"

    wording = DIRECTION_WORDING[negotiates_down(current_price_per_km, target_per_km)]
    first_contact = is_first_contact(negotiation)
    tactic = (FIRST_CONTACT_TACTIC.format(anchor=wording["anchor"], target_total=target_total)
              if first_contact else FOLLOW_UP_TACTIC.format(beyond=wording["beyond"]))

    prompt = agent_negotiation_template.format(
        origin=request.origin,
        destination=request.destination,
        load_type=request.loadType or "Standard load",
        weight=request.weight or "N/A",
        distance=request.distance or "unknown",
        carrier=request.carrier or "unknown",
        notes=request.notes or "none",
        current_price=current_price or "unknown",
        current_price_per_km=(f"{current_price_per_km:.2f} EUR/km"
                              if current_price_per_km is not None else "unknown"),
        target_per_km=f"{target_per_km:.2f}",
        target_total=target_total,
        direction=wording["direction"],
        verb=wording["verb"],
        style_guidance=STYLE_GUIDANCE[AgentStyle(style)],
        tactic=tactic,
        history=format_history(negotiation.messages),
    )
    logger.debug(f"Agent prompt for {negotiation.id} (first contact: {first_contact}, "
                 f"direction: {wording['direction']})")
    return prompt
