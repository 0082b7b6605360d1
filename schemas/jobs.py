import uuid
from pydantic import BaseModel, Field
from typing import Optional

from constant.enum import JobType
from schemas.agent import BypassFlags


class ScheduledJob(BaseModel):
    """
    Unit of deferred work put on the job queue.

    `idempotencyKey` identifies the job across redeliveries; consumers
    skip keys that already completed.
    """
    type: JobType
    negotiationId: str
    idempotencyKey: str = Field(default_factory=lambda: uuid.uuid4().hex)
    trigger: Optional[str] = None

    # agent_run
    bypass: Optional[BypassFlags] = None

    # email_send
    messageContent: Optional[str] = None
    senderUserId: Optional[str] = None
