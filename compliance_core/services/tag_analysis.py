"""
Risk and escalation analysis over AI tags on an alert's recording.

Tagging and transcription happen elsewhere; this module only interprets their
output. Two analyzers share one contract:
- RuleBasedTagAnalyzer: deterministic keyword rules, always available
- AIRiskAnalyzer: Pydantic AI agent with a timeout, falling back to the rules

Escalation scoring is always rule-based so that the same tags produce the
same escalation level regardless of which analyzer judged the risk.
"""

import asyncio
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any, Literal, Protocol, cast

import structlog
from pydantic import BaseModel, Field
from pydantic_ai import Agent

from compliance_core.config import AIProviderConfig
from compliance_core.domain.incidents import Tag
from compliance_core.services.store import TagSource

logger = structlog.get_logger(__name__)

RiskLevel = Literal["low", "medium", "high", "critical"]
EscalationLevel = Literal["none", "low", "medium", "high", "critical"]
InsightSeverity = Literal["low", "medium", "high", "critical"]

DISTRESSED_TONES = frozenset({"distressed", "worried", "anxious", "panicked"})
AGITATED_TONES = frozenset({"agitated", "frustrated", "angry"})
CALM_TONES = frozenset({"calm", "relaxed", "peaceful"})
FALL_MOTIONS = frozenset({"fall", "fell"})
CRITICAL_RISK_WORDS = frozenset({"emergency", "ambulance", "hospital", "911"})
MEDICAL_RISK_WORDS = frozenset({"pain", "injury", "medication", "medical"})

ESCALATION_TONES = frozenset({"distressed", "agitated", "panicked", "frightened"})
ESCALATION_RISK_WORDS = frozenset(
    {"emergency", "ambulance", "911", "hospital", "unresponsive", "injury", "bleeding"}
)
ESCALATION_MOTIONS = frozenset({"fall", "collapse", "struggle"})
ESCALATION_MEDICAL_KEYWORDS = frozenset(
    {"medical", "doctor", "nurse", "medication", "prescription", "surgery", "treatment"}
)
EMERGENCY_PHRASES = (
    "call 911",
    "call an ambulance",
    "need emergency help",
    "medical emergency",
    "someone is hurt",
    "can't breathe",
    "chest pain",
    "unconscious",
    "not responding",
    "need immediate help",
    "urgent medical attention",
    "life threatening",
)

# (threshold, level, should_escalate, recommended action), highest first
ESCALATION_BANDS: tuple[tuple[int, EscalationLevel, bool, str], ...] = (
    (
        70,
        "critical",
        True,
        "Immediate escalation required. Contact supervisor and emergency services "
        "if a medical emergency is suspected.",
    ),
    (50, "high", True, "High priority escalation recommended. Notify supervisor."),
    (30, "medium", True, "Consider escalation to supervisor. Escalate if conditions worsen."),
    (15, "low", False, "Monitor closely. Escalation may be needed if the situation develops."),
)


class TagInsight(BaseModel):
    kind: Literal["summary", "warning", "recommendation", "observation"]
    title: str
    message: str
    severity: InsightSeverity = "low"
    tags: list[str] = Field(default_factory=list)


class EscalationIndicator(BaseModel):
    source: Literal["tone", "motion", "risk_word", "medical", "emergency", "pattern"]
    value: str
    severity: InsightSeverity
    confidence: float = Field(ge=0.0, le=1.0)


class EscalationAssessment(BaseModel):
    should_escalate: bool
    score: int = Field(ge=0, le=100)
    level: EscalationLevel
    indicators: list[EscalationIndicator] = Field(default_factory=list)
    reasons: list[str] = Field(default_factory=list)
    recommended_action: str = "Continue monitoring. No immediate escalation required."


class AlertAnalysis(BaseModel):
    """Interpretation of the tags and transcript attached to one alert."""

    tags: list[Tag] = Field(default_factory=list)
    transcript: str | None = None
    risk_level: RiskLevel = "low"
    summary: str
    insights: list[TagInsight] = Field(default_factory=list)
    key_findings: list[str] = Field(default_factory=list)
    escalation: EscalationAssessment | None = None
    analyzer: str = "rules"

    @property
    def escalation_level(self) -> EscalationLevel | None:
        return self.escalation.level if self.escalation else None


class AIRiskAssessment(BaseModel):
    """Structured output expected from the risk analysis agent."""

    risk_level: RiskLevel
    summary: str = Field(description="Two or three sentences a reviewer can read at a glance")
    key_findings: list[str] = Field(default_factory=list)


class RiskAnalyzer(Protocol):
    async def assess(self, tags: list[Tag], transcript: str | None) -> AlertAnalysis: ...


def _values(tags: Iterable[Tag], tag_type: str) -> list[str]:
    return [tag.tag_value.strip().lower() for tag in tags if tag.tag_type == tag_type]


def critical_tags(tags: Iterable[Tag]) -> list[str]:
    """Tags a reviewer must see: risk words, agitated or distressed tones, falls."""
    selected = []
    for tag in tags:
        value = tag.tag_value.strip().lower()
        if (
            tag.tag_type == "risk_word"
            or (tag.tag_type == "tone" and value in {"agitated", "distressed"})
            or (tag.tag_type == "motion" and value == "fall")
        ):
            selected.append(tag.tag_value)
    return selected


def detect_emergency_phrases(text: str | None) -> list[str]:
    if not text:
        return []
    lowered = text.lower()
    return [phrase for phrase in EMERGENCY_PHRASES if phrase in lowered]


# (tag type, values, points, indicator source, default confidence, reason)
ESCALATION_TAG_RULES: tuple[tuple[str, frozenset[str], int, str, float, str], ...] = (
    ("tone", ESCALATION_TONES, 10, "tone", 0.7, "Distressed tone detected"),
    ("risk_word", ESCALATION_RISK_WORDS, 20, "risk_word", 0.8, "Critical risk word detected"),
    ("motion", ESCALATION_MOTIONS, 25, "motion", 0.75, "Critical motion detected"),
    ("keyword", ESCALATION_MEDICAL_KEYWORDS, 8, "medical", 0.6, "Medical terminology detected"),
)


def _indicator_severity(source: str, value: str) -> InsightSeverity:
    if source == "medical":
        return "medium"
    if source == "tone" and value not in {"panicked", "frightened"}:
        return "high"
    return "critical"


def score_escalation(
    tags: list[Tag], transcript: str | None, risk_level: RiskLevel
) -> EscalationAssessment:
    """Additive escalation score capped at 100, banded at 15/30/50/70."""
    score = 0
    indicators: list[EscalationIndicator] = []
    reasons: list[str] = []

    if risk_level in ("critical", "high"):
        score += 40 if risk_level == "critical" else 25
        indicators.append(
            EscalationIndicator(
                source="pattern",
                value=f"{risk_level}_risk_level",
                severity=risk_level,
                confidence=0.9 if risk_level == "critical" else 0.8,
            )
        )
        reasons.append(f"{risk_level.capitalize()} risk level detected from analysis")

    for tag in tags:
        value = tag.tag_value.strip().lower()
        for tag_type, values, points, source, confidence, reason in ESCALATION_TAG_RULES:
            if tag.tag_type == tag_type and value in values:
                score += points
                indicators.append(
                    EscalationIndicator(
                        source=cast(Any, source),
                        value=value,
                        severity=_indicator_severity(source, value),
                        confidence=tag.confidence or confidence,
                    )
                )
                reasons.append(f"{reason}: {value}")

    for phrase in detect_emergency_phrases(transcript):
        score += 15
        indicators.append(
            EscalationIndicator(
                source="emergency", value=phrase, severity="critical", confidence=0.7
            )
        )
        reasons.append(f'Emergency phrase detected: "{phrase}"')

    score = min(score, 100)
    for threshold, level, should_escalate, action in ESCALATION_BANDS:
        if score >= threshold:
            return EscalationAssessment(
                should_escalate=should_escalate,
                score=score,
                level=level,
                indicators=indicators,
                reasons=reasons,
                recommended_action=action,
            )
    return EscalationAssessment(
        should_escalate=False, score=score, level="none", indicators=indicators, reasons=reasons
    )


class RuleBasedTagAnalyzer:
    """Keyword rules over tone, motion, risk-word and keyword tags."""

    name = "rules"

    def __init__(self) -> None:
        self.logger = logger.bind(component="rule_based_tag_analyzer")

    async def assess(self, tags: list[Tag], transcript: str | None) -> AlertAnalysis:
        return self.assess_sync(tags, transcript)

    def assess_sync(self, tags: list[Tag], transcript: str | None) -> AlertAnalysis:
        if not tags:
            return AlertAnalysis(
                tags=[],
                transcript=transcript,
                summary="No tags available for this recording.",
                escalation=score_escalation([], transcript, "low"),
                analyzer=self.name,
            )

        candidates = [
            self._tone_insight(_values(tags, "tone")),
            self._motion_insight(_values(tags, "motion")),
            *self._risk_word_insights(_values(tags, "risk_word")),
            self._keyword_insight(_values(tags, "keyword")),
        ]
        insights = [insight for insight in candidates if insight is not None]

        risk_level = self._risk_level(tags, insights)
        return AlertAnalysis(
            tags=list(tags),
            transcript=transcript,
            risk_level=risk_level,
            summary=self._summary(tags, insights, risk_level),
            insights=insights,
            key_findings=self._key_findings(tags, insights),
            escalation=score_escalation(tags, transcript, risk_level),
            analyzer=self.name,
        )

    @staticmethod
    def _tone_insight(tones: list[str]) -> TagInsight | None:
        if not tones:
            return None
        if DISTRESSED_TONES.intersection(tones):
            return TagInsight(
                kind="warning",
                title="Distressed Client Detected",
                message="Client appears distressed or anxious. Provide additional support.",
                severity="high",
                tags=tones,
            )
        if AGITATED_TONES.intersection(tones):
            return TagInsight(
                kind="warning",
                title="Agitated Client Detected",
                message="Client appears agitated or frustrated. Approach with care and patience.",
                severity="medium",
                tags=tones,
            )
        if CALM_TONES.intersection(tones):
            return TagInsight(
                kind="observation",
                title="Calm Client Interaction",
                message="Client maintained a calm tone throughout the conversation.",
                tags=tones,
            )
        return TagInsight(
            kind="observation",
            title="Tone Analysis",
            message=f"Detected tones: {', '.join(tones)}",
            tags=tones,
        )

    @staticmethod
    def _motion_insight(motions: list[str]) -> TagInsight | None:
        if not motions:
            return None
        if FALL_MOTIONS.intersection(motions):
            return TagInsight(
                kind="warning",
                title="Fall Detected",
                message="A fall was mentioned. This may require immediate medical assessment.",
                severity="high",
                tags=motions,
            )
        return TagInsight(
            kind="observation",
            title="Motion Detected",
            message=f"Motion keywords: {', '.join(motions)}",
            tags=motions,
        )

    @staticmethod
    def _risk_word_insights(words: list[str]) -> list[TagInsight]:
        insights: list[TagInsight] = []
        critical = [word for word in words if word in CRITICAL_RISK_WORDS]
        medical = [word for word in words if word in MEDICAL_RISK_WORDS]
        if critical:
            insights.append(
                TagInsight(
                    kind="warning",
                    title="Critical Risk Indicators",
                    message="Emergency-related keywords detected. Escalation may be required.",
                    severity="high",
                    tags=critical,
                )
            )
        if medical:
            insights.append(
                TagInsight(
                    kind="warning",
                    title="Medical Terms Detected",
                    message="Health-related keywords mentioned. Consider medical assessment.",
                    severity="high",
                    tags=medical,
                )
            )
        if len(words) > 3 and not critical and not medical:
            insights.append(
                TagInsight(
                    kind="observation",
                    title="Multiple Risk Words",
                    message=f"Multiple risk-related keywords detected: {', '.join(words)}.",
                    severity="medium",
                    tags=words,
                )
            )
        return insights

    @staticmethod
    def _keyword_insight(keywords: list[str]) -> TagInsight | None:
        if not keywords:
            return None
        false_alarm = [k for k in keywords if "false alarm" in k]
        resolved = [k for k in keywords if "resolved" in k]
        escalated = [k for k in keywords if "escalat" in k]
        if false_alarm:
            return TagInsight(
                kind="summary",
                title="False Alarm Confirmed",
                message="False alarm was mentioned. Further action may not be required.",
                tags=false_alarm,
            )
        if resolved:
            return TagInsight(
                kind="summary",
                title="Issue Resolved",
                message="Resolution mentioned. Verify completion and document appropriately.",
                tags=resolved,
            )
        if escalated:
            return TagInsight(
                kind="warning",
                title="Escalation Mentioned",
                message="Escalation was mentioned. Check escalation status and follow-up.",
                severity="medium",
                tags=escalated,
            )
        return TagInsight(
            kind="observation",
            title="Key Phrases",
            message=f"Important keywords: {', '.join(keywords)}",
            tags=keywords,
        )

    @staticmethod
    def _risk_level(tags: list[Tag], insights: list[TagInsight]) -> RiskLevel:
        risk_words = sum(1 for tag in tags if tag.tag_type == "risk_word")
        if any(insight.severity == "high" for insight in insights) or risk_words >= 3:
            return "high"
        if any(insight.severity == "medium" for insight in insights) or risk_words >= 1:
            return "medium"
        return "low"

    @staticmethod
    def _summary(tags: list[Tag], insights: list[TagInsight], risk_level: RiskLevel) -> str:
        parts = [f"Analysis of {len(tags)} tags indicates a {risk_level} risk level."]
        concerns = [insight.title for insight in insights if insight.severity == "high"]
        if concerns:
            parts.append(f"Key concerns: {', '.join(concerns)}.")
        tones = [tag.tag_value for tag in tags if tag.tag_type == "tone"]
        if tones:
            parts.append(f"Client tone: {', '.join(tones)}.")
        risk_words = sum(1 for tag in tags if tag.tag_type == "risk_word")
        if risk_words:
            parts.append(f"{risk_words} risk-related keywords detected.")
        return " ".join(parts)

    @staticmethod
    def _key_findings(tags: list[Tag], insights: list[TagInsight]) -> list[str]:
        findings = [insight.title for insight in insights if insight.severity == "high"]
        risk_words = list(
            dict.fromkeys(tag.tag_value for tag in tags if tag.tag_type == "risk_word")
        )
        if risk_words:
            findings.append(f"Risk words: {', '.join(risk_words)}")
        keywords = [tag.tag_value for tag in tags if tag.tag_type == "keyword"]
        if 0 < len(keywords) <= 5:
            findings.append(f"Keywords: {', '.join(keywords)}")
        return findings


class AIRiskAnalyzer:
    """
    Risk assessment by a Pydantic AI agent.

    Design principles:
    - Structured output: the agent must return an AIRiskAssessment
    - Bounded: every call is wrapped in a timeout
    - Graceful degradation: any failure falls back to the rule-based analyzer
    """

    name = "ai"

    def __init__(
        self,
        config: AIProviderConfig,
        *,
        fallback: RuleBasedTagAnalyzer | None = None,
        agent: Any = None,
    ) -> None:
        self.config = config
        self.fallback = fallback or RuleBasedTagAnalyzer()
        self.logger = logger.bind(component="ai_risk_analyzer")
        self.agent = agent or Agent(
            model=self.config.risk_analysis_model,
            output_type=AIRiskAssessment,
            system_prompt=self._build_system_prompt(),
        )

    def _build_system_prompt(self) -> str:
        return """You are an incident reviewer for a developmental-disability care provider.
You read AI tags and call transcripts from client monitoring alerts and judge how
serious the situation was.

Risk levels:
- LOW: routine interaction, no sign of harm
- MEDIUM: behavioral concern or minor issue that needs documentation
- HIGH: possible injury, fall, medical need or significant distress
- CRITICAL: emergency services involved or life-threatening situation

Only use CRITICAL when the tags or transcript clearly support it. Keep the
summary factual; it becomes part of an incident report."""

    def _build_user_prompt(self, tags: list[Tag], transcript: str | None) -> str:
        lines = [f"- {tag.tag_type}: {tag.tag_value}" for tag in tags] or ["- (no tags)"]
        excerpt = (transcript or "(no transcript)")[:2000]
        return "TAGS:\n" + "\n".join(lines) + f"\n\nTRANSCRIPT:\n{excerpt}"

    async def assess(self, tags: list[Tag], transcript: str | None) -> AlertAnalysis:
        if not tags and not transcript:
            return self.fallback.assess_sync(tags, transcript)

        start_time = datetime.now(UTC)
        try:
            result = await asyncio.wait_for(
                self.agent.run(user_prompt=self._build_user_prompt(tags, transcript)),
                timeout=self.config.timeout_seconds,
            )
            assessment = cast(AIRiskAssessment, cast(Any, result).output)
        except TimeoutError:
            self.logger.error(
                "ai_risk_analysis_timeout", timeout_seconds=self.config.timeout_seconds
            )
            return self.fallback.assess_sync(tags, transcript)
        except Exception as e:
            self.logger.error("ai_risk_analysis_failed", error=str(e))
            return self.fallback.assess_sync(tags, transcript)

        self.logger.info(
            "ai_risk_assessed",
            risk_level=assessment.risk_level,
            tag_count=len(tags),
            duration_seconds=round((datetime.now(UTC) - start_time).total_seconds(), 3),
        )
        return AlertAnalysis(
            tags=list(tags),
            transcript=transcript,
            risk_level=assessment.risk_level,
            summary=assessment.summary,
            key_findings=assessment.key_findings,
            escalation=score_escalation(tags, transcript, assessment.risk_level),
            analyzer=self.name,
        )


class TagAnalysisService:
    """Fetches an alert's tags and transcript and runs the configured analyzer."""

    def __init__(self, source: TagSource, analyzer: RiskAnalyzer | None = None) -> None:
        self.source = source
        self.analyzer = analyzer or RuleBasedTagAnalyzer()
        self.logger = logger.bind(component="tag_analysis")

    async def analyze(self, alert_id: str) -> AlertAnalysis | None:
        """None when the alert has no recording output (no tags and no transcript)."""
        tags = await self.source.get_tags(alert_id)
        transcript = await self.source.get_transcript(alert_id)
        if not tags and transcript is None:
            return None
        analysis = await self.analyzer.assess(tags, transcript)
        self.logger.debug(
            "alert_analyzed",
            alert_id=alert_id,
            risk_level=analysis.risk_level,
            escalation_level=analysis.escalation_level,
        )
        return analysis


def build_risk_analyzer(config: AIProviderConfig) -> RiskAnalyzer:
    """AI analyzer when enabled and configured, rule-based otherwise."""
    if config.enable_ai_analysis and config.openai_api_key:
        return AIRiskAnalyzer(config)
    return RuleBasedTagAnalyzer()
