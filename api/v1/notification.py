import logging
from typing import List, Optional

from fastapi import APIRouter, Header, Response

from actions.negotiation import require_user
from api.v1.errors import to_http_exception
from schemas.notification import NotificationSnapshot
from services.notification_service import NotificationService


class NotificationController:
    def __init__(self, notification_service: NotificationService):
        self.router = APIRouter(prefix="/api/v1", tags=["Notifications"])
        self.notifications = notification_service
        self.logger = logging.getLogger(__name__)

        self.router.add_api_route(
            "/notifications",
            self.list_notifications,
            methods=["GET"],
            response_model=List[NotificationSnapshot]
        )
        self.router.add_api_route(
            "/notifications/{notification_id}/read",
            self.mark_read,
            methods=["PATCH"],
            response_model=NotificationSnapshot
        )
        self.router.add_api_route(
            "/notifications/read-all",
            self.mark_all_read,
            methods=["POST"]
        )
        self.router.add_api_route(
            "/notifications/{notification_id}",
            self.delete_notification,
            methods=["DELETE"],
            status_code=204
        )
        self.router.add_api_route(
            "/notifications",
            self.clear_all,
            methods=["DELETE"]
        )

    async def list_notifications(self, unread_only: bool = False,
                                 x_user_id: Optional[str] = Header(None)) -> List[NotificationSnapshot]:
        try:
            return self.notifications.list_for_user(require_user(x_user_id), unread_only)
        except Exception as e:
            raise to_http_exception(e)

    async def mark_read(self, notification_id: int,
                        x_user_id: Optional[str] = Header(None)) -> NotificationSnapshot:
        try:
            return self.notifications.mark_read(require_user(x_user_id), notification_id)
        except Exception as e:
            raise to_http_exception(e)

    async def mark_all_read(self, x_user_id: Optional[str] = Header(None)) -> dict:
        try:
            updated = self.notifications.mark_all_read(require_user(x_user_id))
            return {"success": True, "updated": updated}
        except Exception as e:
            raise to_http_exception(e)

    async def delete_notification(self, notification_id: int,
                                  x_user_id: Optional[str] = Header(None)) -> Response:
        try:
            self.notifications.delete(require_user(x_user_id), notification_id)
            return Response(status_code=204)
        except Exception as e:
            raise to_http_exception(e)

    async def clear_all(self, x_user_id: Optional[str] = Header(None)) -> dict:
        try:
            deleted = self.notifications.clear_all(require_user(x_user_id))
            return {"success": True, "deleted": deleted}
        except Exception as e:
            raise to_http_exception(e)
