"""Pydantic schemas for the MCP loop: domain records, requests and responses."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel
from typing_extensions import Annotated

from .errors import InvalidRequest

Mode = Literal["candidate", "hiring", "analyst", "general"]
EntityKind = Literal["profile", "role"]
GapType = Literal["met", "insufficient", "missing"]
RequirementKind = Literal["capability", "skill"]
AnalysisScope = Literal["taxonomy", "division", "region", "company"]

MODES = ("candidate", "hiring", "analyst", "general")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    """snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ==================== DOMAIN RECORDS ====================

class MatchCandidate(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    type: EntityKind
    similarity: float = Field(..., ge=0.0, le=1.0)
    name: str = "Unnamed"
    summary: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def key(self) -> tuple:
        return (self.id, self.type)


class GapRecord(CamelModel):
    item_id: str
    name: str
    category: str = ""
    kind: RequirementKind
    required_level: str
    achieved_level: Optional[str] = None
    gap_type: GapType
    severity: float = Field(..., ge=0.0, le=100.0)


class FitScore(CamelModel):
    profile_id: str
    role_id: str
    capability_score: float
    skill_score: float
    semantic_score: float
    score: int = Field(..., ge=0, le=100)
    summary: str
    missing_capabilities: List[str] = Field(default_factory=list)
    missing_skills: List[str] = Field(default_factory=list)


class PlannerRecommendation(CamelModel):
    tool: str
    reason: str = "No reason provided"
    confidence: float = Field(0.5, ge=0.0, le=1.0)
    inputs: Dict[str, Any] = Field(default_factory=dict)


class Message(CamelModel):
    id: Optional[str] = None
    sender: str = "user"
    content: str = ""
    timestamp: Optional[datetime] = None
    embedding: Optional[List[float]] = None


class AuditEntry(CamelModel):
    id: Optional[str] = None
    entity_type: str
    entity_id: str
    payload: Dict[str, Any]
    semantic_metrics: Optional[Dict[str, Any]] = None
    session_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=_utcnow)
    embedding: Optional[List[float]] = None


class ConversationContext(CamelModel):
    history: List[Message] = Field(default_factory=list)
    agent_actions: List[AuditEntry] = Field(default_factory=list)
    context_embedding: Optional[List[float]] = None
    summary: Optional[str] = None


class BatchResult(CamelModel):
    candidate_id: str
    profile_id: str
    role_id: str
    fit: Optional[FitScore] = None
    error: Optional[str] = None
    match: Optional[MatchCandidate] = None

    @property
    def score(self) -> int:
        return self.fit.score if self.fit else 0

    @property
    def succeeded(self) -> bool:
        return self.fit is not None


# ==================== REQUESTS ====================

class SemanticContext(CamelModel):
    current_focus: Optional[str] = None
    previous_matches: List[MatchCandidate] = Field(default_factory=list)


class RequestContext(CamelModel):
    last_message: Optional[str] = None
    company_ids: List[str] = Field(default_factory=list)
    scope: Optional[AnalysisScope] = None
    semantic_context: Optional[SemanticContext] = None


class BaseMCPRequest(CamelModel):
    profile_id: Optional[str] = None
    role_id: Optional[str] = None
    session_id: Optional[str] = None
    action: Optional[str] = None
    context: RequestContext = Field(default_factory=RequestContext)

    @property
    def last_message(self) -> Optional[str]:
        message = (self.context.last_message or "").strip()
        return message or None


class CandidateRequest(BaseMCPRequest):
    mode: Literal["candidate"]


class HiringRequest(BaseMCPRequest):
    mode: Literal["hiring"]


class AnalystRequest(BaseMCPRequest):
    mode: Literal["analyst"]

    @property
    def scope(self) -> str:
        return self.context.scope or "taxonomy"


class GeneralRequest(BaseMCPRequest):
    mode: Literal["general"]


MCPRequest = Annotated[
    Union[CandidateRequest, HiringRequest, AnalystRequest, GeneralRequest],
    Field(discriminator="mode"),
]

_request_adapter = TypeAdapter(MCPRequest)


def parse_request(payload: Any) -> Union[CandidateRequest, HiringRequest, AnalystRequest, GeneralRequest]:
    """Validate a raw JSON body into the mode-specific request model."""
    if not isinstance(payload, dict):
        raise InvalidRequest("Request body must be a JSON object")

    mode = payload.get("mode")
    if not mode:
        raise InvalidRequest("Mode is required")
    if mode not in MODES:
        raise InvalidRequest(f"Unsupported mode: {mode}")

    try:
        return _request_adapter.validate_python(payload)
    except PydanticValidationError as exc:
        raise InvalidRequest("Invalid request payload", details=exc.errors()) from exc


# ==================== RESPONSES ====================

class ChatResponse(CamelModel):
    message: str
    follow_up_question: Optional[str] = None


class NextAction(CamelModel):
    type: str
    description: str
    priority: Optional[Literal["high", "medium", "low"]] = None


class MCPData(CamelModel):
    matches: List[MatchCandidate] = Field(default_factory=list)
    recommendations: List[Dict[str, Any]] = Field(default_factory=list)
    chat_response: ChatResponse
    next_actions: List[NextAction] = Field(default_factory=list)
    actions_taken: List[str] = Field(default_factory=list)


class MCPResponse(CamelModel):
    success: bool
    error: Optional[str] = None
    error_type: Optional[str] = None
    data: Optional[MCPData] = None
