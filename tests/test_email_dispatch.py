import asyncio
import base64
import os
import sys

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from conftest import DummyTransport
from constant.enum import AgentState
from integration.gmail import SendResult, build_raw_message
from services.email_dispatch import EmailDispatchService


def _decode(raw: str) -> str:
    return base64.urlsafe_b64decode(raw + "=" * (-len(raw) % 4)).decode("utf-8")


def _dispatch(store, notifications, transport):
    return EmailDispatchService(store, notifications, transport,
                                app_url="https://app.example", reply_domain="replies.alterion.io")


def _with_connection(store, negotiation):
    connection_id = store.add_connection("user-1", "me@shipper.example", "refresh-1")
    store.update_email_settings(negotiation.id, connection_id=connection_id,
                                cc_recipients=["ops@shipper.example", "boss@shipper.example"])
    return connection_id


def test_raw_message_layout():
    raw = build_raw_message(
        "dispatch@carrier.example", "me@shipper.example", "Update", "Body text – 950 €",
        {"reply_to": "reply+n1@replies.alterion.io", "in_reply_to": "<abc@mail>",
         "references": "<abc@mail>", "cc": "ops@shipper.example"})

    assert "=" not in raw
    assert "+" not in raw and "/" not in raw
    text = _decode(raw)
    headers, body = text.split("\r\n\r\n", 1)
    assert headers.split("\r\n") == [
        "To: dispatch@carrier.example",
        "From: me@shipper.example",
        "Subject: Update",
        "Reply-To: reply+n1@replies.alterion.io",
        "In-Reply-To: <abc@mail>",
        "References: <abc@mail>",
        "Cc: ops@shipper.example",
        'Content-Type: text/plain; charset="UTF-8"',
    ]
    assert body == "Body text – 950 €"


def test_raw_message_skips_empty_headers():
    text = _decode(build_raw_message("a@b.c", "d@e.f", "s", "b", {"reply_to": "r@x.y"}))
    assert "In-Reply-To" not in text
    assert "Cc" not in text


def test_first_send_starts_a_thread_and_records_it(store, notifications, negotiation):
    _with_connection(store, negotiation)
    transport = DummyTransport()

    result = asyncio.run(_dispatch(store, notifications, transport).send_negotiation_update(
        negotiation.id, "Could you do 500 EUR?"))

    assert result.success is True
    [sent] = transport.sent
    assert sent["to"] == "dispatch@carrier.example"
    assert sent["connection"]["email"] == "me@shipper.example"
    assert sent["subject"] == f"Update on Negotiation #{negotiation.id[:6]}..."
    assert sent["body"] == (f"Could you do 500 EUR?\n\n---\nView negotiation: "
                            f"https://app.example/negotiations/{negotiation.id}")
    assert sent["headers"] == {
        "reply_to": f"reply+{negotiation.id}@replies.alterion.io",
        "cc": "ops@shipper.example, boss@shipper.example",
    }
    assert sent["thread_id"] is None

    updated = store.get(negotiation.id)
    assert updated.email_thread_id == "thread-1"
    assert updated.last_email_message_id == "sent-1@mail.gmail.com"


def test_follow_up_send_threads_onto_last_email(store, notifications, negotiation):
    _with_connection(store, negotiation)
    store.update_email_settings(negotiation.id, subject="Warsaw - Berlin")
    store.update_email_thread_info(negotiation.id, "thread-7", "sent-1@mail.gmail.com")
    store.append_email_reply(negotiation.id, "dispatch@carrier.example", "1400 EUR", "abc123@mail")
    transport = DummyTransport(SendResult(success=True, message_id="sent-2@mail.gmail.com", thread_id="thread-7"))

    asyncio.run(_dispatch(store, notifications, transport).send_negotiation_update(negotiation.id, "1000?"))

    [sent] = transport.sent
    assert sent["subject"] == "Warsaw - Berlin"
    assert sent["thread_id"] == "thread-7"
    assert sent["headers"]["in_reply_to"] == "<abc123@mail>"
    assert sent["headers"]["references"] == "<abc123@mail>"
    assert store.get(negotiation.id).last_email_message_id == "sent-2@mail.gmail.com"


def test_missing_connection_is_only_a_warning(store, notifications, negotiation):
    transport = DummyTransport()
    store.activate_agent(negotiation.id, 1.0)

    result = asyncio.run(_dispatch(store, notifications, transport).send_negotiation_update(negotiation.id, "hi"))

    assert result.success is False
    assert transport.sent == []
    assert store.get(negotiation.id).agent_state is None
    assert notifications.list_for_user("user-1") == []


def test_foreign_connection_is_refused(store, notifications, negotiation):
    connection_id = store.add_connection("user-2", "other@shipper.example", "refresh-2")
    store.update_email_settings(negotiation.id, connection_id=connection_id)
    transport = DummyTransport()

    result = asyncio.run(_dispatch(store, notifications, transport).send_negotiation_update(negotiation.id, "hi"))

    assert result.success is False
    assert result.reason == "Connection owner mismatch."
    assert transport.sent == []


def test_upstream_failure_puts_agent_in_error(store, notifications, negotiation):
    _with_connection(store, negotiation)
    store.activate_agent(negotiation.id, 1.0)
    transport = DummyTransport(error=RuntimeError("invalid_grant"))

    result = asyncio.run(_dispatch(store, notifications, transport).send_negotiation_update(negotiation.id, "hi"))

    assert result.success is False
    updated = store.get(negotiation.id)
    assert updated.agent_state == AgentState.ERROR.value
    assert "invalid_grant" in updated.agent_message
    [notification] = notifications.list_for_user("user-1")
    assert notification.title == "AI Agent Error: Warsaw, PL to Berlin, DE"
