"""
Job Dispatcher - consumer side of the scheduling layer.

Jobs arrive at least once (RabbitMQ redelivery, or the in-process
scheduler). A job whose idempotency key already completed is skipped;
a key is recorded only after the handler returns.
"""

import logging
from typing import Union

from constant.enum import JobType
from schemas.jobs import ScheduledJob

logger = logging.getLogger(__name__)


class JobDispatcher:

    def __init__(self, store, orchestrator, email_dispatch):
        self.store = store
        self.orchestrator = orchestrator
        self.email_dispatch = email_dispatch

    async def handle(self, payload: Union[ScheduledJob, dict]) -> None:
        job = payload if isinstance(payload, ScheduledJob) else ScheduledJob.model_validate(payload)

        if self.store.is_job_processed(job.idempotencyKey):
            logger.info(f"Job {job.idempotencyKey} already processed, skipping")
            return

        logger.info(f"Processing {job.type.value} job {job.idempotencyKey} for {job.negotiationId}")

        if job.type == JobType.AGENT_RUN:
            outcome = await self.orchestrator.run(job.negotiationId, job.bypass)
            logger.info(f"Agent run {job.idempotencyKey} finished: {outcome.value}")
        elif job.type == JobType.EMAIL_SEND:
            result = await self.email_dispatch.send_negotiation_update(
                job.negotiationId, job.messageContent or "")
            logger.info(f"Email job {job.idempotencyKey} finished: success={result.success} {result.reason or ''}")

        self.store.mark_job_processed(job.idempotencyKey)
