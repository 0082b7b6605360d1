"""
Agent Control Action - human control over the negotiation agent:
activate, deactivate, resume after a review, and configure guardrails.

Activation and "continue" hand the actual work to the scheduler; the
caller gets the updated negotiation back immediately.
"""

import logging
from typing import Optional

from constant.enum import ResumeAction
from schemas.agent import (
    ActivateAgentRequest,
    AgentSettings,
    AgentSettingsUpdate,
    BypassFlags,
    ResumeAgentRequest,
)
from schemas.negotiation import NegotiationSnapshot
from services.negotiation_state import ensure_pending

logger = logging.getLogger(__name__)

TAKE_OVER_NOTICE = "User has taken over the negotiation. The AI agent has been deactivated."


class AgentControlAction:

    def __init__(self, store, negotiation_action, scheduler,
                 default_settings: Optional[AgentSettings] = None):
        self.store = store
        self.negotiations = negotiation_action
        self.scheduler = scheduler
        self.default_settings = default_settings or AgentSettings()

    async def activate(self, user_id: str, negotiation_id: str,
                       request: ActivateAgentRequest) -> NegotiationSnapshot:
        negotiation = self.negotiations.get_owned(user_id, negotiation_id)
        ensure_pending(negotiation.status, "activate the agent")

        self.store.upsert_agent_configuration(
            negotiation_id, user_id, request.settings, defaults=self.default_settings)
        activated = self.store.activate_agent(negotiation_id, request.targetPricePerKm)

        await self.scheduler.schedule_agent_run(negotiation_id, trigger="activation")
        logger.info(f"User {user_id} activated the agent on {negotiation_id}")
        return activated

    def deactivate(self, user_id: str, negotiation_id: str) -> NegotiationSnapshot:
        self.negotiations.get_owned(user_id, negotiation_id)
        return self.store.deactivate_agent(negotiation_id)

    async def resume(self, user_id: str, negotiation_id: str,
                     request: ResumeAgentRequest) -> NegotiationSnapshot:
        """
        continue:  clear the review/error state and run again, skipping the
                   checks named in the bypass flags for that one run
        take_over: the user continues by hand; the agent is switched off
        """
        negotiation = self.negotiations.get_owned(user_id, negotiation_id)
        if not negotiation.is_agent_active:
            raise ValueError("The agent is not active on this negotiation")

        if request.action == ResumeAction.TAKE_OVER:
            logger.info(f"User {user_id} took over negotiation {negotiation_id}")
            return self.store.take_over(negotiation_id, TAKE_OVER_NOTICE)

        ensure_pending(negotiation.status, "resume the agent")
        resumed = self.store.set_agent_state(negotiation_id, None, None)
        await self.scheduler.schedule_agent_run(
            negotiation_id, trigger="resume", bypass=request.bypass or BypassFlags())
        logger.info(f"User {user_id} resumed the agent on {negotiation_id}")
        return resumed

    def get_configuration(self, user_id: str, negotiation_id: str) -> AgentSettings:
        self.negotiations.get_owned(user_id, negotiation_id)
        return self.store.get_agent_configuration(negotiation_id) or self.default_settings

    def update_configuration(self, user_id: str, negotiation_id: str,
                             update: AgentSettingsUpdate) -> AgentSettings:
        self.negotiations.get_owned(user_id, negotiation_id)
        return self.store.upsert_agent_configuration(
            negotiation_id, user_id, update, defaults=self.default_settings)
