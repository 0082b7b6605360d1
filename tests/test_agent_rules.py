import os
import sys
from datetime import datetime, timedelta, timezone

import pytest

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from constant.enum import AgentAction, ReviewTrigger, UNLIMITED_REPLIES
from schemas.agent import AgentSettings, BypassFlags, GuardrailSignals, LLMProposal
from schemas.negotiation import CounterOfferSnapshot, InitialRequest, MessageSnapshot, NegotiationSnapshot
from services.agent_rules import build_signals, decide


def _snapshot(messages=(), counter_offers=(), target=1.0, price="1500 EUR"):
    start = datetime(2026, 10, 1, 9, 0, tzinfo=timezone.utc)
    return NegotiationSnapshot(
        id="n1",
        user_id="user-1",
        offer_id="offer-1",
        status="pending",
        initial_request=InitialRequest(
            origin="Warsaw, PL", destination="Berlin, DE", price=price, distance="575 km"),
        messages=[
            MessageSnapshot(sender=sender, content=content, timestamp=start + timedelta(minutes=i + 1))
            for i, (sender, content) in enumerate(messages)
        ],
        counter_offers=list(counter_offers),
        is_agent_active=True,
        agent_target_price_per_km=target,
        created_at=start,
        updated_at=start,
    )


UNLIMITED = AgentSettings(max_auto_replies=UNLIMITED_REPLIES, notify_after_rounds=0)


# ---------------------------------------------------------------------------
# decide()
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("settings", [AgentSettings(), UNLIMITED, AgentSettings(max_auto_replies=0)])
@pytest.mark.parametrize("reply_count", [0, 5, 100])
def test_review_and_error_are_never_upgraded(settings, reply_count):
    review = decide("needs_review", "ask the user", "draft", reply_count, settings, 3)
    error = decide("error", "boom", None, reply_count, settings, 3,
                   BypassFlags(max_replies=True, rounds=True))

    assert review.action == AgentAction.NEEDS_REVIEW
    assert review.reason == "ask the user"
    assert review.trigger == ReviewTrigger.LLM_REQUEST
    assert error.action == AgentAction.ERROR
    assert error.reason == "boom"


@pytest.mark.parametrize("limit", [1, 3, 7])
def test_max_replies_forces_review_with_limit_in_reason(limit):
    decision = decide("send_message", None, "Can you do 900?", limit,
                      AgentSettings(max_auto_replies=limit, notify_after_rounds=0), 2)

    assert decision.action == AgentAction.NEEDS_REVIEW
    assert decision.reason == f"Maximum automatic replies ({limit}) reached."
    assert decision.trigger == ReviewTrigger.MAX_REPLIES


def test_below_max_replies_sends():
    decision = decide("send_message", "counter", "Can you do 900?", 2,
                      AgentSettings(max_auto_replies=3, notify_after_rounds=0), 2)

    assert decision.action == AgentAction.SEND_MESSAGE
    assert decision.message == "Can you do 900?"


def test_unlimited_replies_never_trip_the_reply_limit():
    decision = decide("send_message", None, "Can you do 900?", 10_000, UNLIMITED, 2)
    assert decision.action == AgentAction.SEND_MESSAGE


def test_bypass_skips_the_reply_limit():
    decision = decide("send_message", None, "Can you do 900?", 3,
                      AgentSettings(notify_after_rounds=0), 2, BypassFlags(max_replies=True))
    assert decision.action == AgentAction.SEND_MESSAGE


@pytest.mark.parametrize("rounds", [1, 2, 5])
def test_round_guardrail_fires_exactly_at_notification_points(rounds):
    settings = AgentSettings(max_auto_replies=UNLIMITED_REPLIES, notify_after_rounds=rounds)

    for total in range(0, 40):
        decision = decide("send_message", None, "Can you do 900?", 0, settings, total)
        expected_review = (total + 1) % (2 * rounds) == 0
        assert (decision.action == AgentAction.NEEDS_REVIEW) == expected_review, total
        if expected_review:
            assert decision.reason == f"Reached notification point after {rounds} rounds."


def test_rounds_disabled_and_bypassed():
    disabled = AgentSettings(max_auto_replies=UNLIMITED_REPLIES, notify_after_rounds=0)
    assert decide("send_message", None, "hi", 0, disabled, 9).action == AgentAction.SEND_MESSAGE

    enabled = AgentSettings(max_auto_replies=UNLIMITED_REPLIES, notify_after_rounds=5)
    assert decide("send_message", None, "hi", 0, enabled, 9).action == AgentAction.NEEDS_REVIEW
    assert decide("send_message", None, "hi", 0, enabled, 9,
                  BypassFlags(rounds=True)).action == AgentAction.SEND_MESSAGE


def test_reply_limit_is_checked_before_rounds():
    settings = AgentSettings(max_auto_replies=1, notify_after_rounds=5)
    decision = decide("send_message", None, "hi", 1, settings, 9)
    assert decision.trigger == ReviewTrigger.MAX_REPLIES


def test_empty_message_and_unknown_action_become_errors():
    empty = decide("send_message", None, "   ", 0, UNLIMITED, 0)
    unknown = decide("accept_deal", None, "ok", 0, UNLIMITED, 0)

    assert empty.action == AgentAction.ERROR
    assert unknown.action == AgentAction.ERROR
    assert "accept_deal" in unknown.reason


@pytest.mark.parametrize(
    "signals, trigger, toggle, bypass",
    [
        (GuardrailSignals(price_increase=True, previous_price=1400, latest_price=1600),
         ReviewTrigger.PRICE_INCREASE, "notify_on_price_change", "price_change"),
        (GuardrailSignals(target_reached=True, current_price_per_km=0.95),
         ReviewTrigger.TARGET_REACHED, "notify_on_target_price_reached", "target_price"),
        (GuardrailSignals(agreement=True), ReviewTrigger.AGREEMENT, "notify_on_agreement", "agreement"),
        (GuardrailSignals(new_terms=True), ReviewTrigger.NEW_TERMS, "notify_on_new_terms", "new_terms"),
        (GuardrailSignals(confusion=True), ReviewTrigger.CONFUSION, "notify_on_confusion", "confusion"),
        (GuardrailSignals(refusal=True), ReviewTrigger.REFUSAL, "notify_on_refusal", "refusal"),
    ],
)
def test_signal_checks_respect_toggles_and_bypass(signals, trigger, toggle, bypass):
    flagged = decide("send_message", None, "hi", 0, UNLIMITED, 0, signals=signals)
    assert flagged.action == AgentAction.NEEDS_REVIEW
    assert flagged.trigger == trigger

    muted = UNLIMITED.model_copy(update={toggle: False})
    assert decide("send_message", None, "hi", 0, muted, 0,
                  signals=signals).action == AgentAction.SEND_MESSAGE

    skipped = decide("send_message", None, "hi", 0, UNLIMITED, 0,
                     BypassFlags(**{bypass: True}), signals)
    assert skipped.action == AgentAction.SEND_MESSAGE


def test_price_increase_reason_names_both_prices():
    decision = decide("send_message", None, "hi", 0, UNLIMITED, 0,
                      signals=GuardrailSignals(price_increase=True, previous_price=1400, latest_price=1600))
    assert decision.reason == "Counterparty raised the price from 1400 to 1600."


def test_signals_never_touch_review_proposals():
    decision = decide("needs_review", "question about pallets", None, 0, UNLIMITED, 0,
                      signals=GuardrailSignals(price_increase=True, refusal=True))
    assert decision.trigger == ReviewTrigger.LLM_REQUEST


# ---------------------------------------------------------------------------
# build_signals()
# ---------------------------------------------------------------------------

def test_counterparty_price_increase_is_detected():
    snapshot = _snapshot(messages=[
        ("agent", "Hi, saw your offer, could you do 500 EUR?"),
        ("Email: dispatch@carrier.example", "Sorry, now it is 1600 EUR."),
    ])

    signals = build_signals(snapshot)

    assert signals.price_increase is True
    assert signals.previous_price == 1500
    assert signals.latest_price == 1600


def test_price_drop_is_not_an_increase():
    snapshot = _snapshot(messages=[
        ("agent", "Could you do 500 EUR?"),
        ("Email: dispatch@carrier.example", "I can do 1400 EUR."),
    ])
    assert build_signals(snapshot).price_increase is False


def test_increase_already_answered_by_our_side_is_not_news():
    snapshot = _snapshot(messages=[
        ("Email: dispatch@carrier.example", "Now it is 1600 EUR."),
        ("agent", "That is too much, 700 EUR?"),
    ])
    assert build_signals(snapshot).price_increase is False


def test_agent_and_user_counter_offers_do_not_count_as_counterparty_prices():
    start = datetime(2026, 10, 1, 9, 0, tzinfo=timezone.utc)
    snapshot = _snapshot(counter_offers=[
        CounterOfferSnapshot(price="2000 EUR", proposed_by="user", timestamp=start + timedelta(minutes=1)),
    ])
    assert build_signals(snapshot).price_increase is False


def test_target_reached_when_counterparty_price_per_km_is_at_target():
    snapshot = _snapshot(messages=[
        ("agent", "Could you do 500 EUR?"),
        ("Email: dispatch@carrier.example", "Fine, 575 EUR."),
    ], target=1.0)

    signals = build_signals(snapshot)

    assert signals.target_reached is True
    assert signals.current_price_per_km == pytest.approx(1.0)


def test_llm_flags_are_copied_from_the_proposal():
    proposal = LLMProposal(action="send_message", messageContent="ok", newTerms=True, refusal=True)
    signals = build_signals(_snapshot(), proposal)

    assert signals.new_terms is True
    assert signals.refusal is True
    assert signals.agreement is False


def test_target_reached_when_raising_a_low_offer():
    reached = _snapshot(messages=[
        ("agent", "Could you do 700 EUR?"),
        ("Email: dispatch@carrier.example", "Fine, 600 EUR."),
    ], target=1.0, price="400 EUR")
    short = _snapshot(messages=[
        ("agent", "Could you do 700 EUR?"),
        ("Email: dispatch@carrier.example", "Best is 500 EUR."),
    ], target=1.0, price="400 EUR")

    assert build_signals(reached).target_reached is True
    assert build_signals(short).target_reached is False


def test_bare_numbers_in_carrier_email_are_not_prices():
    snapshot = _snapshot(messages=[
        ("agent", "Could you do 500 EUR?"),
        ("Email: dispatch@carrier.example", "Loading at 8, ok for 1400?"),
    ])

    signals = build_signals(snapshot)

    assert signals.target_reached is False
    assert signals.price_increase is False
    assert signals.current_price_per_km is None
