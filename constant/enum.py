"""
Enums for the Negotiation Agent Service
"""
from enum import Enum


class RMQEnum(Enum):
    AGENT_JOB_QUEUE = 'negotiation_agent_jobs'


class NegotiationStatus(str, Enum):
    """Negotiation lifecycle. ACCEPTED and REJECTED are terminal."""
    PENDING = 'pending'
    ACCEPTED = 'accepted'
    REJECTED = 'rejected'


class AgentState(str, Enum):
    """Agent sub-state while active. No value (None) means running normally."""
    NEEDS_REVIEW = 'needs_review'
    ERROR = 'error'


class AgentStyle(str, Enum):
    CONSERVATIVE = 'conservative'
    BALANCED = 'balanced'
    AGGRESSIVE = 'aggressive'


class AgentAction(str, Enum):
    """Actions the completion service may propose and the rule engine may return"""
    SEND_MESSAGE = 'send_message'
    NEEDS_REVIEW = 'needs_review'
    ERROR = 'error'


class ReviewTrigger(str, Enum):
    """Which guardrail forced a review. Drives the notification type."""
    LLM_REQUEST = 'llm_request'
    MAX_REPLIES = 'max_replies'
    ROUNDS = 'rounds'
    PRICE_INCREASE = 'price_increase'
    TARGET_REACHED = 'target_reached'
    AGREEMENT = 'agreement'
    NEW_TERMS = 'new_terms'
    CONFUSION = 'confusion'
    REFUSAL = 'refusal'


class RunOutcome(str, Enum):
    """Result of one orchestrator invocation"""
    NOT_FOUND = 'not_found'      # negotiation is gone, nothing to do
    SKIPPED = 'skipped'          # found, but a status/agent guard failed
    SENT = 'sent'
    NEEDS_REVIEW = 'needs_review'
    ERROR = 'error'


class MessageSender(str, Enum):
    USER = 'user'
    AGENT = 'agent'
    SYSTEM = 'system'


EMAIL_SENDER_PREFIX = 'Email: '


class ProposedBy(str, Enum):
    USER = 'user'
    AGENT = 'agent'
    CARRIER = 'carrier'


class CounterOfferStatus(str, Enum):
    PENDING = 'pending'
    ACCEPTED = 'accepted'
    REJECTED = 'rejected'


class NotificationType(str, Enum):
    AGENT_NEEDS_REVIEW = 'agent_needs_review'
    AGENT_PRICE_INCREASE = 'agent_price_increase'
    AGENT_NEW_TERMS = 'agent_new_terms'
    NEGOTIATION_UPDATE = 'negotiation_update'


class ResumeAction(str, Enum):
    CONTINUE = 'continue'
    TAKE_OVER = 'take_over'


class JobType(str, Enum):
    AGENT_RUN = 'agent_run'
    EMAIL_SEND = 'email_send'


class EmailProvider(str, Enum):
    GOOGLE = 'google'
    OUTLOOK = 'outlook'


# Sentinel for AgentConfiguration.max_auto_replies
UNLIMITED_REPLIES = -1
