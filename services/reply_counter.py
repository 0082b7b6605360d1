"""
Reply/round counter.

The count is a soft guardrail: it is incremented once per autonomous
agent message, before the message is appended, so a crash in between
under-counts rather than over-counts.
"""

import logging

logger = logging.getLogger(__name__)


def estimate_rounds(total_messages_after_reply: int) -> int:
    """One round is one counterparty turn plus one agent turn."""
    return max(total_messages_after_reply, 0) // 2


class ReplyCounter:

    def __init__(self, store):
        self.store = store

    def increment(self, negotiation_id: str) -> int:
        count = self.store.increment_agent_reply_count(negotiation_id)
        logger.info(f"Agent reply count for {negotiation_id} is now {count}")
        return count
