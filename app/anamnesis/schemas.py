"""Pydantic schemas for the triage pipeline, its wire contract and the HTTP surface."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


TriageLevel = Literal["NON_URGENT", "URGENT", "EMERGENCY"]
WireTriageLevel = Literal["non_urgent", "urgent", "emergency"]
SeverityTag = Literal["MILD", "MODERATE", "SEVERE", "SHARP", "EMERGENCY"]
BodyLocation = Literal["CHEST", "HEAD", "ABDOMEN", "LIMB", "GENERAL", "UNSPECIFIED"]
QuestionType = Literal["educational", "medication", "symptom", "general"]
FallbackReason = Literal["ai_failure", "safety_concern", "ambiguous_input", "technical_error"]
EmergencyType = Literal["medical", "mental_health", "trauma"]
EmergencySeverity = Literal["critical", "high", "moderate"]
ProviderType = Literal["emergency", "urgent", "routine", "mental_health"]


# ---------------------------------------------------------------------------
# Layer context
# ---------------------------------------------------------------------------


class Duration(BaseModel):
    value: int | None = None
    unit: str = ""
    raw: str = ""


class Symptom(BaseModel):
    name: str
    location: BodyLocation | None = None
    severity: SeverityTag | None = None
    duration: Duration | None = None
    negated: bool = False
    category: str | None = None


class Intent(BaseModel):
    type: str = "general_inquiry"
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    condition_type: str = "GENERAL"


class SeverityAssessment(BaseModel):
    emergency_count: int = 0
    severe_count: int = 0
    sharp_count: int = 0
    moderate_count: int = 0
    mild_count: int = 0
    total_symptoms: int = 0
    highest_severity: SeverityTag | None = None


class Triage(BaseModel):
    level: TriageLevel = "NON_URGENT"
    reasons: list[str] = Field(default_factory=list)
    symptom_names: list[str] = Field(default_factory=list)
    is_high_risk: bool = False
    severity_assessment: SeverityAssessment = Field(default_factory=SeverityAssessment)
    safety_flags: list[str] = Field(default_factory=list)
    emergency_protocol: bool = False
    mental_health_crisis: bool = False
    recommended_actions: list[str] = Field(default_factory=list)


class PromptBundle(BaseModel):
    system_prompt: str = ""
    enhanced_prompt: str = ""


class Demographics(BaseModel):
    age: int | None = Field(default=None, ge=0, le=130)
    sex: str | None = None
    role: str | None = None


class ContextMetadata(BaseModel):
    body_system: str | None = None
    stage_timings: dict[str, int] = Field(default_factory=dict)


class LayerContext(BaseModel):
    user_input: str = ""
    intent: Intent = Field(default_factory=Intent)
    symptoms: list[Symptom] = Field(default_factory=list)
    triage: Triage | None = None
    prompt: PromptBundle = Field(default_factory=PromptBundle)
    demographics: Demographics | None = None
    metadata: ContextMetadata = Field(default_factory=ContextMetadata)


class ConversationTurn(BaseModel):
    role: str = "user"
    content: str = ""


# ---------------------------------------------------------------------------
# Stage outputs
# ---------------------------------------------------------------------------


class DisclaimerPack(BaseModel):
    model_config = ConfigDict(frozen=True)

    disclaimers: tuple[str, ...] = ()
    atd_notices: tuple[str, ...] = ()


class EnhancedPrompt(BaseModel):
    system_prompt: str
    enhanced_prompt: str
    atd_notices: list[str] = Field(default_factory=list)
    disclaimers: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)
    expansion_prompt: str = ""
    question_type: QuestionType = "general"
    template_kind: str | None = None
    is_expansion: bool = False
    is_medication_query: bool = False


class EmergencyContacts(BaseModel):
    region: str = "US"
    emergency: str
    crisis: str | None = None
    poison: str | None = None


class EmergencyDetection(BaseModel):
    is_emergency: bool = False
    emergency_type: EmergencyType | None = None
    severity: EmergencySeverity | None = None
    triggered_patterns: list[str] = Field(default_factory=list)
    triggered_categories: list[str] = Field(default_factory=list)
    emergency_contacts: EmergencyContacts
    immediate_actions: list[str] = Field(default_factory=list)
    requires_emergency_services: bool = False
    emergency_message: str = ""


class PatientInfo(BaseModel):
    age: int | None = None
    sex: str | None = None
    age_group: Literal["pediatric", "adult", "geriatric", "unknown"] = "unknown"
    session_id: str | None = None


class ChiefComplaint(BaseModel):
    sanitized_query: str = ""
    summary: str = ""
    primary_symptoms: list[str] = Field(default_factory=list)


class TriageSnapshot(BaseModel):
    level: TriageLevel = "NON_URGENT"
    reasons: list[str] = Field(default_factory=list)
    safety_flags: list[str] = Field(default_factory=list)
    emergency_protocol: bool = False


class SymptomAnalysis(BaseModel):
    names: list[str] = Field(default_factory=list)
    severity_assessment: SeverityAssessment = Field(default_factory=SeverityAssessment)
    categories: dict[str, list[str]] = Field(default_factory=dict)
    timeline: list[str] = Field(default_factory=list)
    high_risk_combinations: list[str] = Field(default_factory=list)


class EmergencySnapshot(BaseModel):
    detected: bool = False
    emergency_type: EmergencyType | None = None
    severity: EmergencySeverity | None = None
    triggered_categories: list[str] = Field(default_factory=list)
    requires_emergency_services: bool = False


class ClinicalFlags(BaseModel):
    is_pediatric: bool = False
    is_geriatric: bool = False
    mental_health_crisis: bool = False
    multiple_severe_symptoms: bool = False
    emergency_protocol: bool = False


class RiskAssessment(BaseModel):
    overall_risk: Literal["HIGH", "MODERATE", "LOW"] = "LOW"
    specific_risks: list[str] = Field(default_factory=list)
    follow_up_urgency: Literal["IMMEDIATE", "WITHIN_24_HOURS", "ROUTINE"] = "ROUTINE"


class SystemContext(BaseModel):
    processed_at: datetime
    pipeline: str = "rule_based_triage"
    reliability_score: int = Field(default=7, ge=1, le=10)


class StructuredMedicalData(BaseModel):
    patient: PatientInfo = Field(default_factory=PatientInfo)
    chief_complaint: ChiefComplaint = Field(default_factory=ChiefComplaint)
    triage: TriageSnapshot = Field(default_factory=TriageSnapshot)
    symptoms: SymptomAnalysis = Field(default_factory=SymptomAnalysis)
    emergency: EmergencySnapshot = Field(default_factory=EmergencySnapshot)
    clinical_flags: ClinicalFlags = Field(default_factory=ClinicalFlags)
    recommended_actions: list[str] = Field(default_factory=list)
    risk_assessment: RiskAssessment = Field(default_factory=RiskAssessment)
    system_context: SystemContext


class ATDRouting(BaseModel):
    route_to_provider: bool = False
    provider_type: ProviderType = "routine"
    priority_score: int = 1
    structured_data: StructuredMedicalData
    provider_message: str = ""
    patient_guidance: str = ""
    clinical_flags: list[str] = Field(default_factory=list)


class FallbackResponse(BaseModel):
    response: str
    type: str
    disclaimer: str
    requires_human_intervention: bool = True
    recommended_actions: list[str] = Field(default_factory=list)
    follow_up_questions: list[str] = Field(default_factory=list)
    fallback_reason: FallbackReason = "ai_failure"


class SafetyNotice(BaseModel):
    type: Literal["emergency", "mental_health", "urgent", "info"]
    priority: Literal["critical", "high", "medium", "low"]
    title: str
    message: str
    actions: list[str] = Field(default_factory=list)


class TriageWarning(BaseModel):
    level: TriageLevel
    title: str
    message: str
    show_emergency_contacts: bool = False
    contacts: EmergencyContacts | None = None


class SafetyContext(BaseModel):
    triage: Triage
    emergency: EmergencyDetection
    atd_routing: ATDRouting


class SafetyProcessingResult(BaseModel):
    safety_context: SafetyContext | None = None
    safety_notices: list[SafetyNotice] = Field(default_factory=list)
    triage_warning: TriageWarning | None = None
    fallback_response: FallbackResponse | None = None
    should_block_ai: bool = False
    requires_human_review: bool = False
    emergency_protocol: bool = False
    route_to_provider: bool = False
    priority_score: int = 0
    error_code: str | None = None


# ---------------------------------------------------------------------------
# Wire contract (camelCase on the wire, snake_case in Python)
# ---------------------------------------------------------------------------


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LayeredMetadata(_WireModel):
    processing_time: int = 0
    intent_confidence: float | None = None
    triage_level: WireTriageLevel | None = None
    body_system: str | None = None
    symptoms: list[str] | None = None
    stage_timings: dict[str, int] | None = None


class LayeredResponse(_WireModel):
    user_input: str = ""
    enhanced_prompt: str = ""
    is_high_risk: bool = False
    disclaimers: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)
    metadata: LayeredMetadata = Field(default_factory=LayeredMetadata)
    atd: list[str] | None = None


class NormalizationResult(BaseModel):
    ok: bool
    errors: list[str] = Field(default_factory=list)
    result: LayeredResponse


# ---------------------------------------------------------------------------
# HTTP requests
# ---------------------------------------------------------------------------


class QueryRequest(BaseModel):
    user_input: str = Field(
        default="",
        validation_alias=AliasChoices("user_input", "userInput", "input", "query"),
    )
    user_role: str = Field(default="public", validation_alias=AliasChoices("user_role", "userRole", "role"))
    session_id: str | None = Field(default=None, validation_alias=AliasChoices("session_id", "sessionId"))
    conversation_history: list[ConversationTurn] = Field(
        default_factory=list,
        validation_alias=AliasChoices("conversation_history", "conversationHistory", "history"),
    )
    demographics: Demographics | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class SafetyRequest(BaseModel):
    user_input: str = Field(
        default="",
        validation_alias=AliasChoices("user_input", "userInput", "input", "query"),
    )
    region: str | None = None
    demographics: Demographics | None = None
    session_id: str | None = Field(default=None, validation_alias=AliasChoices("session_id", "sessionId"))
