from pydantic import BaseModel, Field
from typing import Optional

from constant.enum import AgentAction, AgentStyle, ReviewTrigger, ResumeAction, UNLIMITED_REPLIES


class AgentSettings(BaseModel):
    """
    Guardrail configuration of the negotiation agent.

    `AgentSettings()` is the documented default used for negotiations
    that were never configured: balanced style, every notification on,
    at most 3 automatic replies, review every 5 rounds.
    """
    style: AgentStyle = AgentStyle.BALANCED
    notify_on_price_change: bool = True
    notify_on_new_terms: bool = True
    notify_on_target_price_reached: bool = True
    notify_on_agreement: bool = True
    notify_on_confusion: bool = True
    notify_on_refusal: bool = True
    max_auto_replies: int = Field(3, ge=UNLIMITED_REPLIES)
    notify_after_rounds: int = Field(5, ge=0)

    @property
    def unlimited_replies(self) -> bool:
        return self.max_auto_replies == UNLIMITED_REPLIES


class AgentSettingsUpdate(BaseModel):
    """Partial settings, merged over the stored configuration"""
    style: Optional[AgentStyle] = None
    notify_on_price_change: Optional[bool] = None
    notify_on_new_terms: Optional[bool] = None
    notify_on_target_price_reached: Optional[bool] = None
    notify_on_agreement: Optional[bool] = None
    notify_on_confusion: Optional[bool] = None
    notify_on_refusal: Optional[bool] = None
    max_auto_replies: Optional[int] = Field(None, ge=UNLIMITED_REPLIES)
    notify_after_rounds: Optional[int] = Field(None, ge=0)


class BypassFlags(BaseModel):
    """One-shot overrides a human grants when telling the agent to continue"""
    max_replies: bool = False
    rounds: bool = False
    price_change: bool = False
    new_terms: bool = False
    target_price: bool = False
    agreement: bool = False
    confusion: bool = False
    refusal: bool = False


class GuardrailSignals(BaseModel):
    """
    Structured facts the rule engine checks besides the reply/round limits.

    price_increase and target_reached are computed from the negotiation
    itself; the remaining flags are reported by the completion service.
    """
    price_increase: bool = False
    previous_price: Optional[float] = None
    latest_price: Optional[float] = None
    target_reached: bool = False
    current_price_per_km: Optional[float] = None
    agreement: bool = False
    new_terms: bool = False
    confusion: bool = False
    refusal: bool = False


class LLMProposal(BaseModel):
    """Parsed output contract of the completion service"""
    action: str
    messageContent: Optional[str] = None
    reason: Optional[str] = None
    agreement: bool = False
    newTerms: bool = False
    confusion: bool = False
    refusal: bool = False


class Decision(BaseModel):
    action: AgentAction
    reason: Optional[str] = None
    message: Optional[str] = None
    trigger: Optional[ReviewTrigger] = None


# ----------------------------------------------------------------------------
# Request bodies
# ----------------------------------------------------------------------------

class ActivateAgentRequest(BaseModel):
    targetPricePerKm: float = Field(..., gt=0)
    settings: Optional[AgentSettingsUpdate] = None

    class Config:
        json_schema_extra = {
            "example": {
                "targetPricePerKm": 1.0,
                "settings": {"style": "balanced", "max_auto_replies": 3}
            }
        }


class ResumeAgentRequest(BaseModel):
    action: ResumeAction
    bypass: BypassFlags = Field(default_factory=BypassFlags)
