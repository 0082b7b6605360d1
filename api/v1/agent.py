import logging
from typing import Optional

from fastapi import APIRouter, Header

from actions.agent import AgentControlAction
from api.v1.errors import to_http_exception
from schemas.agent import ActivateAgentRequest, AgentSettings, AgentSettingsUpdate, ResumeAgentRequest
from schemas.negotiation import NegotiationSnapshot


class AgentController:
    def __init__(self, agent_action: AgentControlAction):
        self.router = APIRouter(prefix="/api/v1", tags=["Negotiation Agent"])
        self.agent = agent_action
        self.logger = logging.getLogger(__name__)

        self.router.add_api_route(
            "/negotiations/{negotiation_id}/agent/activate",
            self.activate,
            methods=["POST"],
            response_model=NegotiationSnapshot
        )
        self.router.add_api_route(
            "/negotiations/{negotiation_id}/agent/deactivate",
            self.deactivate,
            methods=["POST"],
            response_model=NegotiationSnapshot
        )
        self.router.add_api_route(
            "/negotiations/{negotiation_id}/agent/resume",
            self.resume,
            methods=["POST"],
            response_model=NegotiationSnapshot
        )
        self.router.add_api_route(
            "/negotiations/{negotiation_id}/agent/configuration",
            self.get_configuration,
            methods=["GET"],
            response_model=AgentSettings
        )
        self.router.add_api_route(
            "/negotiations/{negotiation_id}/agent/configuration",
            self.update_configuration,
            methods=["PUT"],
            response_model=AgentSettings
        )

    async def activate(self, negotiation_id: str, request: ActivateAgentRequest,
                       x_user_id: Optional[str] = Header(None)) -> NegotiationSnapshot:
        """
        Example:
        POST /api/v1/negotiations/{id}/agent/activate
        {"targetPricePerKm": 1.0, "settings": {"style": "aggressive"}}
        """
        try:
            return await self.agent.activate(x_user_id, negotiation_id, request)
        except Exception as e:
            raise to_http_exception(e)

    async def deactivate(self, negotiation_id: str,
                         x_user_id: Optional[str] = Header(None)) -> NegotiationSnapshot:
        try:
            return self.agent.deactivate(x_user_id, negotiation_id)
        except Exception as e:
            raise to_http_exception(e)

    async def resume(self, negotiation_id: str, request: ResumeAgentRequest,
                     x_user_id: Optional[str] = Header(None)) -> NegotiationSnapshot:
        """
        Example:
        POST /api/v1/negotiations/{id}/agent/resume
        {"action": "continue", "bypass": {"max_replies": true}}
        """
        try:
            return await self.agent.resume(x_user_id, negotiation_id, request)
        except Exception as e:
            raise to_http_exception(e)

    async def get_configuration(self, negotiation_id: str,
                                x_user_id: Optional[str] = Header(None)) -> AgentSettings:
        try:
            return self.agent.get_configuration(x_user_id, negotiation_id)
        except Exception as e:
            raise to_http_exception(e)

    async def update_configuration(self, negotiation_id: str, request: AgentSettingsUpdate,
                                   x_user_id: Optional[str] = Header(None)) -> AgentSettings:
        try:
            return self.agent.update_configuration(x_user_id, negotiation_id, request)
        except Exception as e:
            raise to_http_exception(e)
