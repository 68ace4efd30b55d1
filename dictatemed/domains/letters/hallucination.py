"""
Hallucination detection and risk scoring.

Rule-based checks flag statements in a generated letter that are not backed
by the sources: unsourced clinical values, doctor names, dates, coronary
vessel findings, medication changes, stent sizes and history details.
Critical flags block approval until dismissed.
"""

from __future__ import annotations

import json
import re
from typing import Dict, List, Sequence

from dictatemed.core.logging_config import get_logger
from dictatemed.core.models.domain.enums import ClinicalValueType, FlagSeverity, RiskLevel
from dictatemed.core.models.domain.letters import (
    ApprovalRecommendation,
    ClinicalValue,
    HallucinationFlag,
    HallucinationRisk,
    LetterSources,
    SourceAnchor,
)

logger = get_logger(__name__)

DOCTOR_PATTERN = re.compile(r"(?:dear|from)\s+dr\.?\s+([a-z]+)", re.IGNORECASE)
DATE_PATTERN = re.compile(
    r"\b(\d{1,2}\s+(?:Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec)\s+\d{4}|\d{1,2}/\d{1,2}/\d{4})\b",
    re.IGNORECASE,
)
VESSEL_FINDING_PATTERN = re.compile(r"(LMCA|LAD|LCx|RCA|D1|D2|OM1|OM2)\s+[^.]+(\d+%)", re.IGNORECASE)
MEDICATION_CHANGE_PATTERN = re.compile(
    r"(?:started|commenced|increased|decreased|ceased)\s+([a-z]+)\s+(\d+\.?\d*\s*mg)", re.IGNORECASE
)
STENT_SIZE_PATTERN = re.compile(r"(\d+\.?\d*)\s*(?:x|×)\s*(\d+)\s*mm\s+stent", re.IGNORECASE)
HISTORY_PATTERN = re.compile(r"(?:history of|previous|prior)\s+([^.,]{10,50})", re.IGNORECASE)

DATE_ANCHOR_DISTANCE = 100
HISTORY_ANCHOR_DISTANCE = 150
FINDING_ANCHOR_DISTANCE = 200
MIN_HISTORY_DETAIL_LENGTH = 15

CRITICAL_FLAG_WEIGHT = 30
WARNING_FLAG_WEIGHT = 10


def check_text_in_sources(text: str, sources: LetterSources) -> bool:
    """Case-insensitive substring search across every source."""
    needle = text.lower()
    if sources.transcript:
        if needle in sources.transcript.text.lower():
            return True
        if any(needle in segment.text.lower() for segment in sources.transcript.speakers or []):
            return True
    for doc in sources.documents:
        if needle in json.dumps(doc.extracted_data).lower():
            return True
        if doc.raw_text and needle in doc.raw_text.lower():
            return True
    if sources.user_input and needle in sources.user_input.text.lower():
        return True
    return False


def _anchor_near(anchors: Sequence[SourceAnchor], position: int, distance: int) -> bool:
    return any(abs(a.start_index - position) < distance for a in anchors)


class _FlagCollector:
    def __init__(self) -> None:
        self.flags: List[HallucinationFlag] = []

    def add(self, segment: str, start: int, reason: str, severity: FlagSeverity) -> None:
        self.flags.append(
            HallucinationFlag(
                id=f"hallucination-{len(self.flags)}",
                segment_text=segment,
                start_index=start,
                end_index=start + len(segment),
                reason=reason,
                severity=severity,
            )
        )


def detect_hallucinations(
    letter_text: str,
    sources: LetterSources,
    anchors: Sequence[SourceAnchor],
    clinical_values: Sequence[ClinicalValue],
) -> List[HallucinationFlag]:
    """
    Run every hallucination check over a generated letter.

    Args:
        letter_text: Letter text the anchor positions refer to
        sources: Original (de-obfuscated) sources
        anchors: Verified source anchors
        clinical_values: Values extracted from the same text

    Returns:
        Flags in check order with ids ``hallucination-N``
    """
    collector = _FlagCollector()

    for value in clinical_values:
        if value.source_anchor_id:
            continue
        value_text = f"{value.name} {value.value}{value.unit or ''}"
        position = letter_text.find(value_text)
        if position != -1:
            severity = FlagSeverity.CRITICAL if value.type == ClinicalValueType.MEASUREMENT else FlagSeverity.WARNING
            collector.add(value_text, position, f"Clinical {value.type.value} lacks source citation", severity)

    for m in DOCTOR_PATTERN.finditer(letter_text):
        name = m.group(1)
        if not check_text_in_sources(name, sources):
            collector.add(
                m.group(0), m.start(), f'Referring doctor name "{name}" not found in sources', FlagSeverity.WARNING
            )

    for m in DATE_PATTERN.finditer(letter_text):
        date = m.group(1)
        if check_text_in_sources(date, sources) or _anchor_near(anchors, m.start(), DATE_ANCHOR_DISTANCE):
            continue
        collector.add(m.group(0), m.start(), f'Specific date "{date}" not found in sources', FlagSeverity.WARNING)

    for m in VESSEL_FINDING_PATTERN.finditer(letter_text):
        vessel = m.group(1)
        cited = any(
            abs(a.start_index - m.start()) < FINDING_ANCHOR_DISTANCE and vessel.lower() in a.source_excerpt.lower()
            for a in anchors
        )
        if not cited:
            collector.add(
                m.group(0), m.start(), f"Vessel finding for {vessel} lacks source citation", FlagSeverity.CRITICAL
            )

    for m in MEDICATION_CHANGE_PATTERN.finditer(letter_text):
        medication, dose = m.group(1), m.group(2)
        if not (check_text_in_sources(medication, sources) and check_text_in_sources(dose, sources)):
            collector.add(
                m.group(0),
                m.start(),
                f'Medication change "{medication} {dose}" not found in sources',
                FlagSeverity.CRITICAL,
            )

    for m in STENT_SIZE_PATTERN.finditer(letter_text):
        diameter, length = m.group(1), m.group(2)
        cited = any(
            abs(a.start_index - m.start()) < FINDING_ANCHOR_DISTANCE
            and (diameter in a.source_excerpt or length in a.source_excerpt)
            for a in anchors
        )
        if not cited:
            collector.add(m.group(0), m.start(), "Stent size specification lacks source citation", FlagSeverity.CRITICAL)

    for m in HISTORY_PATTERN.finditer(letter_text):
        detail = m.group(1).strip()
        if len(detail) < MIN_HISTORY_DETAIL_LENGTH:
            continue
        if _anchor_near(anchors, m.start(), HISTORY_ANCHOR_DISTANCE) or check_text_in_sources(detail, sources):
            continue
        collector.add(m.group(0), m.start(), "Patient history detail lacks source citation", FlagSeverity.WARNING)

    flags = collector.flags
    critical = sum(1 for f in flags if f.severity == FlagSeverity.CRITICAL)
    logger.info(f"Hallucination detection raised {len(flags)} flag(s), {critical} critical")
    return flags


def group_flags_by_severity(flags: Sequence[HallucinationFlag]) -> Dict[FlagSeverity, List[HallucinationFlag]]:
    """Active (not dismissed) flags by severity."""
    return {
        FlagSeverity.CRITICAL: [f for f in flags if f.severity == FlagSeverity.CRITICAL and not f.dismissed],
        FlagSeverity.WARNING: [f for f in flags if f.severity == FlagSeverity.WARNING and not f.dismissed],
    }


def calculate_hallucination_risk(flags: Sequence[HallucinationFlag]) -> HallucinationRisk:
    grouped = group_flags_by_severity(flags)
    critical_count = len(grouped[FlagSeverity.CRITICAL])
    warning_count = len(grouped[FlagSeverity.WARNING])
    score = min(critical_count * CRITICAL_FLAG_WEIGHT + warning_count * WARNING_FLAG_WEIGHT, 100)

    if score >= 60 or critical_count >= 3:
        level = RiskLevel.CRITICAL
    elif score >= 40 or critical_count >= 2:
        level = RiskLevel.HIGH
    elif score >= 20 or critical_count >= 1:
        level = RiskLevel.MEDIUM
    else:
        level = RiskLevel.LOW

    return HallucinationRisk(score=score, level=level.value, flag_count=len(flags), critical_count=critical_count)


def generate_hallucination_report(flags: Sequence[HallucinationFlag]) -> str:
    if not flags:
        return "No potential hallucinations detected. All clinical statements are sourced."

    risk = calculate_hallucination_risk(flags)
    grouped = group_flags_by_severity(flags)
    lines = [f"Hallucination Risk: {risk.level.upper()} (score: {risk.score}/100)", ""]

    for severity, title in ((FlagSeverity.CRITICAL, "Critical Flags"), (FlagSeverity.WARNING, "Warnings")):
        if grouped[severity]:
            lines.append(f"{title} ({len(grouped[severity])}):")
            lines.extend(f'- {f.reason}: "{f.segment_text[:50]}..."' for f in grouped[severity])
            lines.append("")

    return "\n".join(lines)


def recommend_approval(flags: Sequence[HallucinationFlag]) -> ApprovalRecommendation:
    risk = calculate_hallucination_risk(flags)

    if risk.level == RiskLevel.CRITICAL.value:
        return ApprovalRecommendation(
            should_approve=False,
            reason=f"{risk.critical_count} critical hallucination(s) detected",
            action_required="Review and correct all critical flags before approval",
        )
    if risk.level == RiskLevel.HIGH.value:
        return ApprovalRecommendation(
            should_approve=False,
            reason=f"High hallucination risk (score: {risk.score})",
            action_required="Review all flagged sections and verify against sources",
        )
    if risk.level == RiskLevel.MEDIUM.value:
        return ApprovalRecommendation(
            should_approve=True,
            reason="Moderate hallucination risk - manual review recommended",
            action_required="Review flagged sections before final approval",
        )
    return ApprovalRecommendation(
        should_approve=True, reason="Low hallucination risk", action_required="Perform standard review"
    )
