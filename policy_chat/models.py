"""Request and response models for the policy chat gateway.

Wire payloads use camelCase field names; the Python attributes are
snake_case with aliases. Validated requests are frozen.
"""

from enum import Enum
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ChatMode(str, Enum):
    """Conversation persona selecting the system prompt."""

    POLICY_QA = "policy-qa"
    AUTHOR_ASSIST = "author-assist"
    GENERAL_HELP = "general-help"


class UserRole(str, Enum):
    USER = "User"
    AUTHOR = "Author"
    MANAGER = "Manager"
    ADMIN = "Admin"


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)


class HistoryMessage(_WireModel):
    """A prior turn supplied by the caller."""

    role: Literal["user", "assistant"]
    content: str


class PolicyContextItem(_WireModel):
    """A retrieved policy summary supplied by the caller's search step."""

    id: Union[int, str]
    title: str = ""
    category: str = ""
    compliance_risk: str = Field(default="", alias="complianceRisk")
    status: str = ""
    effective_date: Optional[str] = Field(default=None, alias="effectiveDate")
    summary: str = ""
    key_points: List[str] = Field(default_factory=list, alias="keyPoints")

    # Search results arrive with nulls for fields a policy has not filled in.
    @field_validator("title", "category", "compliance_risk", "status", "summary", mode="before")
    @classmethod
    def _null_text(cls, value):
        return "" if value is None else value

    @field_validator("key_points", mode="before")
    @classmethod
    def _null_key_points(cls, value):
        return [] if value is None else value


class PolicyContext(_WireModel):
    policies: List[PolicyContextItem] = Field(default_factory=list)

    @field_validator("policies", mode="before")
    @classmethod
    def _null_policies(cls, value):
        return [] if value is None else value


class ChatRequest(_WireModel):
    """Incoming chat request, built only after the payload passed validation."""

    message: str
    mode: ChatMode
    user_role: UserRole = Field(..., alias="userRole")
    conversation_history: List[HistoryMessage] = Field(
        default_factory=list, alias="conversationHistory"
    )
    policy_context: Optional[PolicyContext] = Field(
        default=None, alias="policyContext"
    )
    max_tokens: Optional[int] = Field(default=None, alias="maxTokens")

    @field_validator("conversation_history", mode="before")
    @classmethod
    def _null_history(cls, value):
        return [] if value is None else value


class PromptMessage(BaseModel):
    """A single message sent upstream."""

    model_config = ConfigDict(frozen=True)

    role: Literal["system", "user", "assistant"]
    content: str


class Citation(_WireModel):
    """A policy referenced by the answer."""

    policy_id: Union[int, str] = Field(..., alias="policyId")
    title: str
    excerpt: str = ""


class SuggestedAction(_WireModel):
    type: Literal["navigate", "search"]
    label: str
    url: str


class ExtractedReply(_WireModel):
    """The structured part of a model reply."""

    message: str
    citations: List[Citation] = Field(default_factory=list)
    suggested_actions: List[SuggestedAction] = Field(
        default_factory=list, alias="suggestedActions"
    )


class ResponseMetadata(_WireModel):
    model: str
    tokens_used: int = Field(default=0, alias="tokensUsed")
    processing_time_ms: int = Field(default=0, alias="processingTimeMs")


class ChatResponse(_WireModel):
    """Successful chat response envelope."""

    message: str
    citations: List[Citation] = Field(default_factory=list)
    suggested_actions: List[SuggestedAction] = Field(
        default_factory=list, alias="suggestedActions"
    )
    metadata: ResponseMetadata


class ErrorResponse(BaseModel):
    """Error response envelope."""

    error: str
