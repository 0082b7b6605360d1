"""
Negotiation Controller
Human-facing negotiation endpoints. The caller is identified by the
x-user-id header set by the identity provider in front of this service.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Header, Response

from actions.negotiation import NegotiationAction
from api.v1.errors import to_http_exception
from schemas.negotiation import (
    AddMessageRequest,
    CounterOfferRequest,
    CounterOfferStatusRequest,
    CreateNegotiationRequest,
    EmailSettingsRequest,
    NegotiationSnapshot,
    StatusUpdateRequest,
)


class NegotiationController:
    def __init__(self, negotiation_action: NegotiationAction):
        self.router = APIRouter(prefix="/api/v1", tags=["Negotiation"])
        self.negotiations = negotiation_action
        self.logger = logging.getLogger(__name__)

        self.router.add_api_route(
            "/negotiations",
            self.create_negotiation,
            methods=["POST"],
            response_model=NegotiationSnapshot,
            status_code=201
        )
        self.router.add_api_route(
            "/negotiations",
            self.list_negotiations,
            methods=["GET"],
            response_model=List[NegotiationSnapshot]
        )
        self.router.add_api_route(
            "/negotiations/{negotiation_id}",
            self.get_negotiation,
            methods=["GET"],
            response_model=NegotiationSnapshot
        )
        self.router.add_api_route(
            "/negotiations/{negotiation_id}",
            self.delete_negotiation,
            methods=["DELETE"],
            status_code=204
        )
        self.router.add_api_route(
            "/negotiations/{negotiation_id}/messages",
            self.add_message,
            methods=["POST"],
            response_model=NegotiationSnapshot
        )
        self.router.add_api_route(
            "/negotiations/{negotiation_id}/counter-offers",
            self.submit_counter_offer,
            methods=["POST"],
            response_model=NegotiationSnapshot
        )
        self.router.add_api_route(
            "/negotiations/{negotiation_id}/status",
            self.update_status,
            methods=["PATCH"],
            response_model=NegotiationSnapshot
        )
        self.router.add_api_route(
            "/negotiations/{negotiation_id}/counter-offers/{index}",
            self.update_counter_offer_status,
            methods=["PATCH"],
            response_model=NegotiationSnapshot
        )
        self.router.add_api_route(
            "/negotiations/{negotiation_id}/email-settings",
            self.update_email_settings,
            methods=["PATCH"],
            response_model=NegotiationSnapshot
        )

    async def create_negotiation(self, request: CreateNegotiationRequest,
                                 x_user_id: Optional[str] = Header(None)) -> NegotiationSnapshot:
        """
        Example:
        POST /api/v1/negotiations
        {
          "offerId": "offer-123",
          "initialRequest": {"origin": "Warsaw, PL", "destination": "Berlin, DE",
                             "price": "1500 EUR", "distance": "575 km"}
        }
        """
        try:
            negotiation = self.negotiations.create(x_user_id, request)
            self.logger.info(f"Negotiation {negotiation.id} created for offer {request.offerId}")
            return negotiation
        except Exception as e:
            raise to_http_exception(e)

    async def list_negotiations(self, x_user_id: Optional[str] = Header(None)) -> List[NegotiationSnapshot]:
        try:
            return self.negotiations.list_negotiations(x_user_id)
        except Exception as e:
            raise to_http_exception(e)

    async def get_negotiation(self, negotiation_id: str,
                              x_user_id: Optional[str] = Header(None)) -> NegotiationSnapshot:
        try:
            return self.negotiations.get(x_user_id, negotiation_id)
        except Exception as e:
            raise to_http_exception(e)

    async def delete_negotiation(self, negotiation_id: str,
                                 x_user_id: Optional[str] = Header(None)) -> Response:
        try:
            self.negotiations.delete(x_user_id, negotiation_id)
            return Response(status_code=204)
        except Exception as e:
            raise to_http_exception(e)

    async def add_message(self, negotiation_id: str, request: AddMessageRequest,
                          x_user_id: Optional[str] = Header(None)) -> NegotiationSnapshot:
        try:
            return self.negotiations.add_message(x_user_id, negotiation_id, request)
        except Exception as e:
            raise to_http_exception(e)

    async def submit_counter_offer(self, negotiation_id: str, request: CounterOfferRequest,
                                   x_user_id: Optional[str] = Header(None)) -> NegotiationSnapshot:
        try:
            return self.negotiations.submit_counter_offer(x_user_id, negotiation_id, request)
        except Exception as e:
            raise to_http_exception(e)

    async def update_status(self, negotiation_id: str, request: StatusUpdateRequest,
                            x_user_id: Optional[str] = Header(None)) -> NegotiationSnapshot:
        try:
            return self.negotiations.update_status(x_user_id, negotiation_id, request.status)
        except Exception as e:
            raise to_http_exception(e)

    async def update_counter_offer_status(self, negotiation_id: str, index: int,
                                          request: CounterOfferStatusRequest,
                                          x_user_id: Optional[str] = Header(None)) -> NegotiationSnapshot:
        try:
            return self.negotiations.update_counter_offer_status(
                x_user_id, negotiation_id, index, request.status)
        except Exception as e:
            raise to_http_exception(e)

    async def update_email_settings(self, negotiation_id: str, request: EmailSettingsRequest,
                                    x_user_id: Optional[str] = Header(None)) -> NegotiationSnapshot:
        try:
            return self.negotiations.update_email_settings(x_user_id, negotiation_id, request)
        except Exception as e:
            raise to_http_exception(e)
