"""
Trigger/scheduling layer.

Everything that must happen "after this request" (agent runs, outbound
email sends) is expressed as a ScheduledJob and handed to a scheduler.
Scheduling is fire-and-forget: callers never wait for the job to run.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from constant.enum import JobType
from core.rabbitmq import RabbitMQManager
from schemas.agent import BypassFlags
from schemas.jobs import ScheduledJob

logger = logging.getLogger(__name__)


class TaskScheduler:
    """Base scheduler: builds jobs, subclasses decide how they are delivered."""

    async def publish(self, job: ScheduledJob) -> None:
        raise NotImplementedError

    async def schedule_agent_run(self, negotiation_id: str, trigger: str,
                                 bypass: Optional[BypassFlags] = None) -> ScheduledJob:
        job = ScheduledJob(
            type=JobType.AGENT_RUN,
            negotiationId=negotiation_id,
            trigger=trigger,
            bypass=bypass,
        )
        logger.info(f"Scheduling agent run for {negotiation_id} (trigger={trigger})")
        await self.publish(job)
        return job

    async def schedule_email_send(self, negotiation_id: str, message_content: str,
                                  sender_user_id: str, message_position: int) -> ScheduledJob:
        """Keyed by the message position, which stays unique across agent activations."""
        job = ScheduledJob(
            type=JobType.EMAIL_SEND,
            negotiationId=negotiation_id,
            idempotencyKey=f"email-send:{negotiation_id}:{message_position}",
            trigger="agent_reply",
            messageContent=message_content,
            senderUserId=sender_user_id,
        )
        logger.info(f"Scheduling email send for {negotiation_id} (message #{message_position})")
        await self.publish(job)
        return job


class RabbitMQScheduler(TaskScheduler):
    """Jobs go through the durable RabbitMQ queue (at-least-once)."""

    def __init__(self, manager: RabbitMQManager):
        self.manager = manager

    async def publish(self, job: ScheduledJob) -> None:
        await self.manager.publish(job.model_dump(mode="json"), message_id=job.idempotencyKey)


class LocalScheduler(TaskScheduler):
    """
    In-process delivery with zero delay, for single-instance deployments
    without a broker. Jobs are lost if the process dies.
    """

    def __init__(self, handler: Callable[[ScheduledJob], Awaitable[None]] = None):
        self.handler = handler
        self._tasks = set()

    def bind(self, handler: Callable[[ScheduledJob], Awaitable[None]]) -> None:
        self.handler = handler

    async def publish(self, job: ScheduledJob) -> None:
        if self.handler is None:
            raise RuntimeError("LocalScheduler has no job handler bound")

        task = asyncio.create_task(self.handler(job))
        # Keep a reference until done so the task is not garbage collected
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait for every job scheduled so far, including jobs they schedule."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
