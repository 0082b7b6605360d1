import asyncio
import os
import sys

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from conftest import DummyCompletion, send_message
from actions.agent import AgentControlAction
from actions.negotiation import NegotiationAction
from constant.enum import AgentState, JobType, NegotiationStatus, NotificationType, RunOutcome
from schemas.agent import ActivateAgentRequest, AgentSettings, AgentSettingsUpdate, BypassFlags
from services.negotiation_orchestrator import AgentOrchestrator


def _orchestrator(store, notifications, scheduler, completion):
    return AgentOrchestrator(store, notifications, completion, scheduler, AgentSettings())


def _activate(store, scheduler, negotiation_id, settings=None, target=1.0):
    agent = AgentControlAction(store, NegotiationAction(store), scheduler)
    request = ActivateAgentRequest(targetPricePerKm=target, settings=settings)
    return asyncio.run(agent.activate("user-1", negotiation_id, request))


def test_first_contact_run_sends_one_message(store, notifications, scheduler, negotiation):
    completion = DummyCompletion([send_message("Hi, saw your Warsaw-Berlin load. Could you do 480 EUR?")])
    orchestrator = _orchestrator(store, notifications, scheduler, completion)

    _activate(store, scheduler, negotiation.id)
    assert len(scheduler.of_type(JobType.AGENT_RUN)) == 1

    outcome = asyncio.run(orchestrator.run(negotiation.id))

    assert outcome == RunOutcome.SENT
    assert "FIRST contact" in completion.prompts[0]
    assert "575.00 EUR" in completion.prompts[0]

    updated = store.get(negotiation.id)
    assert [m.sender for m in updated.messages] == ["agent"]
    assert updated.agent_reply_count == 1
    assert updated.agent_state is None
    assert updated.status == NegotiationStatus.PENDING

    email_jobs = scheduler.of_type(JobType.EMAIL_SEND)
    assert len(email_jobs) == 1
    assert email_jobs[0].negotiationId == negotiation.id
    assert email_jobs[0].senderUserId == "user-1"
    assert email_jobs[0].messageContent.startswith("Hi, saw your")
    assert email_jobs[0].idempotencyKey == f"email-send:{negotiation.id}:0"


def test_follow_up_prompt_contains_history(store, notifications, scheduler, negotiation):
    completion = DummyCompletion([send_message("Could you do 500 EUR?"), send_message("Meet at 550 EUR?")])
    orchestrator = _orchestrator(store, notifications, scheduler, completion)
    _activate(store, scheduler, negotiation.id)

    asyncio.run(orchestrator.run(negotiation.id))
    store.append_email_reply(negotiation.id, "dispatch@carrier.example", "Best I can do is 1400 EUR", "r1@mail")
    outcome = asyncio.run(orchestrator.run(negotiation.id))

    assert outcome == RunOutcome.SENT
    assert "follow-up" in completion.prompts[1]
    assert "Best I can do is 1400 EUR" in completion.prompts[1]
    assert scheduler.of_type(JobType.EMAIL_SEND)[-1].idempotencyKey == f"email-send:{negotiation.id}:2"


def test_reply_limit_forces_review(store, notifications, scheduler, negotiation):
    completion = DummyCompletion([send_message("Could you do 500 EUR?"), send_message("550 EUR then?")])
    orchestrator = _orchestrator(store, notifications, scheduler, completion)
    _activate(store, scheduler, negotiation.id, AgentSettingsUpdate(max_auto_replies=1))

    assert asyncio.run(orchestrator.run(negotiation.id)) == RunOutcome.SENT
    assert store.get(negotiation.id).agent_reply_count == 1

    store.append_email_reply(negotiation.id, "dispatch@carrier.example", "No, 1400 EUR", "r1@mail")
    outcome = asyncio.run(orchestrator.run(negotiation.id))

    assert outcome == RunOutcome.NEEDS_REVIEW
    updated = store.get(negotiation.id)
    assert updated.agent_state == AgentState.NEEDS_REVIEW.value
    assert updated.agent_message == "Maximum automatic replies (1) reached."
    assert updated.agent_reply_count == 1
    assert len(scheduler.of_type(JobType.EMAIL_SEND)) == 1

    [notification] = notifications.list_for_user("user-1")
    assert notification.type == NotificationType.AGENT_NEEDS_REVIEW
    assert notification.title == "AI Agent Needs Review: Warsaw, PL to Berlin, DE"
    assert notification.source_id == negotiation.id


def test_continue_with_bypass_sends_past_the_limit(store, notifications, scheduler, negotiation):
    completion = DummyCompletion([send_message("500 EUR?"), send_message("550 EUR?")])
    orchestrator = _orchestrator(store, notifications, scheduler, completion)
    _activate(store, scheduler, negotiation.id, AgentSettingsUpdate(max_auto_replies=1))
    asyncio.run(orchestrator.run(negotiation.id))

    outcome = asyncio.run(orchestrator.run(negotiation.id, BypassFlags(max_replies=True)))

    assert outcome == RunOutcome.SENT
    assert store.get(negotiation.id).agent_reply_count == 2


def test_missing_negotiation_is_a_silent_no_op(store, notifications, scheduler):
    completion = DummyCompletion()
    outcome = asyncio.run(_orchestrator(store, notifications, scheduler, completion).run("missing"))

    assert outcome == RunOutcome.NOT_FOUND
    assert completion.prompts == []


def test_inactive_or_closed_negotiation_is_skipped(store, notifications, scheduler, negotiation):
    completion = DummyCompletion()
    orchestrator = _orchestrator(store, notifications, scheduler, completion)

    assert asyncio.run(orchestrator.run(negotiation.id)) == RunOutcome.SKIPPED

    _activate(store, scheduler, negotiation.id)
    store.set_status(negotiation.id, NegotiationStatus.ACCEPTED)
    assert asyncio.run(orchestrator.run(negotiation.id)) == RunOutcome.SKIPPED

    assert completion.prompts == []
    assert notifications.list_for_user("user-1") == []


def test_status_change_during_completion_discards_result(store, notifications, scheduler, negotiation):
    class AcceptingCompletion(DummyCompletion):
        def generate(self, prompt):
            store.set_status(negotiation.id, NegotiationStatus.ACCEPTED)
            return super().generate(prompt)

    completion = AcceptingCompletion([send_message("500 EUR?")])
    _activate(store, scheduler, negotiation.id)

    outcome = asyncio.run(_orchestrator(store, notifications, scheduler, completion).run(negotiation.id))

    assert outcome == RunOutcome.SKIPPED
    assert store.get(negotiation.id).messages == []
    assert scheduler.of_type(JobType.EMAIL_SEND) == []


def test_completion_failure_becomes_agent_error(store, notifications, scheduler, negotiation):
    completion = DummyCompletion([ConnectionError("upstream timed out")])
    _activate(store, scheduler, negotiation.id)

    outcome = asyncio.run(_orchestrator(store, notifications, scheduler, completion).run(negotiation.id))

    assert outcome == RunOutcome.ERROR
    updated = store.get(negotiation.id)
    assert updated.agent_state == AgentState.ERROR.value
    assert "upstream timed out" in updated.agent_message
    assert updated.is_agent_active is True

    [notification] = notifications.list_for_user("user-1")
    assert notification.title == "AI Agent Error: Warsaw, PL to Berlin, DE"
    assert notification.type == NotificationType.AGENT_NEEDS_REVIEW


def test_malformed_json_becomes_agent_error(store, notifications, scheduler, negotiation):
    completion = DummyCompletion(["this is not json"])
    _activate(store, scheduler, negotiation.id)

    outcome = asyncio.run(_orchestrator(store, notifications, scheduler, completion).run(negotiation.id))

    assert outcome == RunOutcome.ERROR
    assert store.get(negotiation.id).agent_state == AgentState.ERROR.value


def test_model_requested_review(store, notifications, scheduler, negotiation):
    completion = DummyCompletion([{"action": "needs_review", "reason": "Carrier asks about payment terms"}])
    _activate(store, scheduler, negotiation.id)

    outcome = asyncio.run(_orchestrator(store, notifications, scheduler, completion).run(negotiation.id))

    assert outcome == RunOutcome.NEEDS_REVIEW
    assert store.get(negotiation.id).agent_message == "Carrier asks about payment terms"


def test_new_terms_and_price_increase_notification_types(store, notifications, scheduler, negotiation):
    completion = DummyCompletion([
        send_message("500 EUR?"),
        {"action": "send_message", "messageContent": "Ok noted", "newTerms": True},
    ])
    orchestrator = _orchestrator(store, notifications, scheduler, completion)
    _activate(store, scheduler, negotiation.id, AgentSettingsUpdate(max_auto_replies=-1))

    asyncio.run(orchestrator.run(negotiation.id))
    store.append_email_reply(negotiation.id, "dispatch@carrier.example",
                             "Price is 1400 EUR but payment in 7 days only", "r1@mail")
    assert asyncio.run(orchestrator.run(negotiation.id)) == RunOutcome.NEEDS_REVIEW

    [new_terms] = notifications.list_for_user("user-1")
    assert new_terms.type == NotificationType.AGENT_NEW_TERMS
    assert new_terms.title.startswith("New Terms Mentioned: ")

    store.append_email_reply(negotiation.id, "dispatch@carrier.example", "Actually 1700 EUR", "r2@mail")
    completion.queue(send_message("That is more than before"))
    assert asyncio.run(orchestrator.run(negotiation.id)) == RunOutcome.NEEDS_REVIEW

    latest = notifications.list_for_user("user-1")[0]
    assert latest.type == NotificationType.AGENT_PRICE_INCREASE
    assert latest.content == "Counterparty raised the price from 1400 to 1700."


def test_send_clears_earlier_review_state(store, notifications, scheduler, negotiation):
    completion = DummyCompletion([send_message("500 EUR?")])
    _activate(store, scheduler, negotiation.id)
    store.set_agent_state(negotiation.id, AgentState.NEEDS_REVIEW, "Maximum automatic replies (3) reached.")

    outcome = asyncio.run(_orchestrator(store, notifications, scheduler, completion).run(negotiation.id))

    assert outcome == RunOutcome.SENT
    updated = store.get(negotiation.id)
    assert updated.agent_state is None
    assert updated.agent_message is None
    assert updated.is_agent_active is True
