"""
Negotiation Agent Orchestrator
Runs one agent turn for a negotiation: load, guard, prompt, decide, act.

Each run is short-lived and idempotent with respect to its guards: a run
triggered for a negotiation that was accepted, rejected, deleted or had
its agent switched off in the meantime ends as a no-op.
"""

import asyncio
import json
import logging
from typing import Optional

from constant.enum import (
    AgentAction,
    AgentState,
    NegotiationStatus,
    NotificationType,
    ReviewTrigger,
    RunOutcome,
)
from core.utils import parse_numeric_value, price_per_km
from prompts.agent_negotiation import build_agent_prompt
from schemas.agent import AgentSettings, BypassFlags, Decision, LLMProposal
from schemas.negotiation import NegotiationSnapshot
from services.agent_rules import build_signals, decide
from services.negotiation_state import current_offer_price
from services.reply_counter import ReplyCounter

logger = logging.getLogger(__name__)


NOTIFICATION_TYPE_BY_TRIGGER = {
    ReviewTrigger.NEW_TERMS: NotificationType.AGENT_NEW_TERMS,
    ReviewTrigger.PRICE_INCREASE: NotificationType.AGENT_PRICE_INCREASE,
}

NOTIFICATION_TITLES = {
    NotificationType.AGENT_NEEDS_REVIEW: "AI Agent Needs Review",
    NotificationType.AGENT_NEW_TERMS: "New Terms Mentioned",
    NotificationType.AGENT_PRICE_INCREASE: "Price Increase",
}


def _can_run(negotiation: NegotiationSnapshot) -> bool:
    return (
        negotiation.is_agent_active
        and negotiation.agent_target_price_per_km is not None
        and negotiation.status == NegotiationStatus.PENDING
    )


class AgentOrchestrator:
    """
    Single-shot agent runner.

    Collaborators are injected: the negotiation store, the notification
    sink, a completion service exposing `generate(prompt) -> str`, and a
    task scheduler for the outbound email side effect.
    """

    def __init__(self, store, notifications, completion, scheduler,
                 default_settings: Optional[AgentSettings] = None):
        self.store = store
        self.notifications = notifications
        self.completion = completion
        self.scheduler = scheduler
        self.default_settings = default_settings or AgentSettings()
        self.reply_counter = ReplyCounter(store)

    async def run(self, negotiation_id: str, bypass: Optional[BypassFlags] = None) -> RunOutcome:
        """Run one agent turn. Never raises for upstream failures."""
        logger.info("=" * 60)
        logger.info(f"AGENT RUN - negotiation {negotiation_id}")
        logger.info("=" * 60)

        # Step 1: load
        negotiation = self.store.get(negotiation_id)
        if negotiation is None:
            logger.warning(f"Negotiation {negotiation_id} not found, agent run aborted")
            return RunOutcome.NOT_FOUND

        try:
            return await self._run(negotiation, bypass or BypassFlags())
        except Exception as e:
            logger.error(f"Agent run for {negotiation_id} failed: {e}", exc_info=True)
            return self._fail(negotiation, str(e) or type(e).__name__)

    async def _run(self, negotiation: NegotiationSnapshot, bypass: BypassFlags) -> RunOutcome:
        # Step 2: configuration
        settings = self.store.get_agent_configuration(negotiation.id) or self.default_settings

        # Step 3: guard
        if not _can_run(negotiation):
            logger.info(
                f"Agent run skipped for {negotiation.id}: active={negotiation.is_agent_active}, "
                f"target={negotiation.agent_target_price_per_km}, status={negotiation.status.value}")
            return RunOutcome.SKIPPED

        # Step 4: price context
        current_price = current_offer_price(negotiation)
        distance_km = parse_numeric_value(negotiation.initial_request.distance)
        current_per_km = price_per_km(current_price, negotiation.initial_request.distance)
        logger.info(f"Current price {current_price} ({current_per_km} EUR/km), "
                    f"target {negotiation.agent_target_price_per_km} EUR/km")

        # Step 5: prompt
        prompt = build_agent_prompt(
            negotiation, settings.style, current_price, current_per_km, distance_km)

        # Step 6: completion
        proposal = await self._propose(prompt)
        logger.info(f"Proposed action: {proposal.action} ({proposal.reason})")

        # Concurrent human actions win over this run
        fresh = self.store.get(negotiation.id)
        if fresh is None:
            logger.warning(f"Negotiation {negotiation.id} deleted during agent run")
            return RunOutcome.NOT_FOUND
        if not _can_run(fresh):
            logger.info(f"Negotiation {negotiation.id} changed during agent run, result discarded")
            return RunOutcome.SKIPPED

        # Step 7: guardrails
        decision = decide(
            proposal.action,
            proposal.reason,
            proposal.messageContent,
            fresh.agent_reply_count or 0,
            settings,
            len(fresh.messages),
            bypass,
            build_signals(fresh, proposal),
        )
        logger.info(f"Final action: {decision.action.value} ({decision.reason})")

        # Step 8: side effects
        if decision.action == AgentAction.SEND_MESSAGE:
            return await self._send(fresh, decision)
        if decision.action == AgentAction.NEEDS_REVIEW:
            return self._request_review(fresh, decision)
        return self._fail(fresh, decision.reason or "Unknown error during agent execution")

    async def _propose(self, prompt: str) -> LLMProposal:
        try:
            raw = await asyncio.to_thread(self.completion.generate, prompt)
            return LLMProposal.model_validate(json.loads(raw))
        except Exception as e:
            logger.error(f"Completion failed: {e}")
            return LLMProposal(action=AgentAction.ERROR.value,
                               reason=f"Agent failed to generate a response: {e}")

    async def _send(self, negotiation: NegotiationSnapshot, decision: Decision) -> RunOutcome:
        reply_index = self.reply_counter.increment(negotiation.id)
        # Back to running: a send resolves any earlier review or error
        self.store.set_agent_state(negotiation.id, None, None)
        updated = self.store.append_agent_message(negotiation.id, decision.message)
        await self.scheduler.schedule_email_send(
            negotiation.id, decision.message, negotiation.user_id, len(updated.messages) - 1)
        logger.info(f"Agent reply #{reply_index} queued for {negotiation.id}")
        return RunOutcome.SENT

    def _request_review(self, negotiation: NegotiationSnapshot, decision: Decision) -> RunOutcome:
        reason = decision.reason or "Your attention is needed on this negotiation."
        self.store.set_agent_state(negotiation.id, AgentState.NEEDS_REVIEW, reason)

        notification_type = NOTIFICATION_TYPE_BY_TRIGGER.get(
            decision.trigger, NotificationType.AGENT_NEEDS_REVIEW)
        self.notifications.create(
            user_id=negotiation.user_id,
            type=notification_type,
            title=f"{NOTIFICATION_TITLES[notification_type]}: {negotiation.route_name}",
            content=reason,
            source_id=negotiation.id,
            source_name=negotiation.route_name,
        )
        logger.info(f"Negotiation {negotiation.id} flagged for review ({notification_type.value})")
        return RunOutcome.NEEDS_REVIEW

    def _fail(self, negotiation: NegotiationSnapshot, reason: str) -> RunOutcome:
        try:
            self.store.set_agent_state(negotiation.id, AgentState.ERROR, reason)
            self.notifications.create(
                user_id=negotiation.user_id,
                type=NotificationType.AGENT_NEEDS_REVIEW,
                title=f"AI Agent Error: {negotiation.route_name}",
                content=reason,
                source_id=negotiation.id,
                source_name=negotiation.route_name,
            )
        except Exception as e:
            logger.error(f"Could not record agent error for {negotiation.id}: {e}")
        return RunOutcome.ERROR
