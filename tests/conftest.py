import json
import os
import sys
from typing import List

import pytest

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from core.database import get_engine, init_db, make_session_factory
from core.scheduler import TaskScheduler
from integration.gmail import SendResult
from schemas.negotiation import InitialRequest
from services.negotiation_store import NegotiationStore
from services.notification_service import NotificationService


class RecordingScheduler(TaskScheduler):
    """Keeps published jobs instead of running them."""

    def __init__(self):
        self.jobs = []

    async def publish(self, job):
        self.jobs.append(job)

    def of_type(self, job_type):
        return [job for job in self.jobs if job.type == job_type]


class DummyCompletion:
    """Returns queued responses in order; an Exception in the queue is raised."""

    def __init__(self, responses: List = None):
        self.responses = list(responses or [])
        self.prompts = []

    def queue(self, response):
        self.responses.append(response)

    def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        if isinstance(response, dict):
            return json.dumps(response)
        return response


class DummyTransport:
    def __init__(self, result: SendResult = None, error: Exception = None):
        self.result = result or SendResult(success=True, message_id="sent-1@mail.gmail.com", thread_id="thread-1")
        self.error = error
        self.sent = []

    def send(self, connection, to, subject, body, headers=None, thread_id=None):
        self.sent.append({
            "connection": connection,
            "to": to,
            "subject": subject,
            "body": body,
            "headers": headers or {},
            "thread_id": thread_id,
        })
        if self.error:
            raise self.error
        return self.result


def send_message(content: str) -> dict:
    return {"action": "send_message", "messageContent": content, "reason": "countering"}


@pytest.fixture
def session_factory():
    engine = get_engine("sqlite://")
    init_db(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def store(session_factory):
    return NegotiationStore(session_factory)


@pytest.fixture
def notifications(session_factory):
    return NotificationService(session_factory)


@pytest.fixture
def scheduler():
    return RecordingScheduler()


@pytest.fixture
def initial_request():
    return InitialRequest(
        origin="Warsaw, PL",
        destination="Berlin, DE",
        price="1500 EUR",
        distance="575 km",
        loadType="FTL",
        weight="24t",
        offerContactEmail="dispatch@carrier.example",
    )


@pytest.fixture
def negotiation(store, initial_request):
    return store.create_negotiation("user-1", "offer-1", initial_request)
