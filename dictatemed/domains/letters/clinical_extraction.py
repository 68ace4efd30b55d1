"""
Clinical value extraction.

Measurements, diagnoses, medications and procedures are picked out of the
generated letter with regular expressions and linked to the nearest verified
source anchor. Values without a nearby anchor are the ones a clinician has
to check by hand.
"""

from __future__ import annotations

import re
from typing import Dict, List, NamedTuple, Optional, Sequence

from dictatemed.core.logging_config import get_logger
from dictatemed.core.models.domain.enums import ClinicalValueType
from dictatemed.core.models.domain.letters import ClinicalValue, SourceAnchor

logger = get_logger(__name__)

NEAREST_ANCHOR_MAX_DISTANCE = 200


class _Match(NamedTuple):
    name: str
    value: str
    unit: Optional[str]
    position: int


def _ci(pattern: str) -> re.Pattern:
    return re.compile(pattern, re.IGNORECASE)


# (pattern, name, unit)
MEASUREMENT_PATTERNS = [
    (_ci(r"LVEF\s+(?:of\s+|was\s+)?(\d+)%"), "LVEF", "%"),
    (_ci(r"RVEF\s+(?:of\s+|was\s+)?(\d+)%"), "RVEF", "%"),
    (_ci(r"GLS\s+(?:of\s+)?(-?\d+)%"), "GLS", "%"),
    (_ci(r"TAPSE\s+(?:of\s+)?(\d+)\s*mm"), "TAPSE", "mm"),
    (_ci(r"E/e'\s+(?:of\s+)?(\d+\.?\d*)"), "E/e'", ""),
    (_ci(r"BP\s+(\d+)/(\d+)"), "Blood Pressure", "mmHg"),
    (_ci(r"(?:heart rate|HR)\s+(?:of\s+)?(\d+)"), "Heart Rate", "bpm"),
    (_ci(r"LVEDP\s+(?:of\s+)?(\d+)\s*mmHg"), "LVEDP", "mmHg"),
    (_ci(r"mean gradient\s+(?:of\s+)?(\d+)\s*mmHg"), "Mean Gradient", "mmHg"),
    (_ci(r"peak gradient\s+(?:of\s+)?(\d+)\s*mmHg"), "Peak Gradient", "mmHg"),
    (_ci(r"valve area\s+(?:of\s+)?(\d+\.?\d*)\s*cm²"), "Valve Area", "cm²"),
    (_ci(r"(\d+)%\s+stenosis"), "Stenosis", "%"),
    (_ci(r"LVEDD\s+(?:of\s+)?(\d+\.?\d*)\s*mm"), "LVEDD", "mm"),
    (_ci(r"LVESD\s+(?:of\s+)?(\d+\.?\d*)\s*mm"), "LVESD", "mm"),
    (_ci(r"IVS\s+(?:of\s+)?(\d+\.?\d*)\s*mm"), "IVS", "mm"),
    (_ci(r"RVSP\s+(?:of\s+)?(\d+)\s*mmHg"), "RVSP", "mmHg"),
]

# Abbreviations are bounded so "HF" does not match inside other words.
DIAGNOSIS_PATTERNS = [
    _ci(r"(?:diagnosis|impression|assessment):\s*([^\n.]+)"),
    _ci(r"(?:severe|moderate|mild)\s+(aortic stenosis|mitral regurgitation|tricuspid regurgitation)"),
    _ci(r"\b(?:STEMI|NSTEMI|unstable angina)\b"),
    _ci(r"\b(?:atrial fibrillation|AF|AFL)\b"),
    _ci(r"\b(?:heart failure|HF|CHF)\b"),
    _ci(r"\b(?:coronary artery disease|CAD)\b"),
    _ci(r"\b(?:left ventricular|LV)\s+(?:dysfunction|impairment)"),
]

MEDICATIONS = (
    "metoprolol",
    "bisoprolol",
    "carvedilol",
    "ramipril",
    "perindopril",
    "irbesartan",
    "candesartan",
    "atorvastatin",
    "rosuvastatin",
    "apixaban",
    "rivaroxaban",
    "warfarin",
    "aspirin",
    "clopidogrel",
    "ticagrelor",
    "frusemide",
    "spironolactone",
)
MEDICATION_PATTERNS = [_ci(rf"{drug}\s+(\d+\.?\d*)\s*(mg)") for drug in MEDICATIONS]

PROCEDURE_PATTERNS = [
    _ci(r"(?:performed|underwent|scheduled for)\s+(coronary angiogram|angiography)"),
    _ci(r"(?:performed|underwent)\s+(PCI|percutaneous coronary intervention)"),
    _ci(r"(?:performed|underwent)\s+(CABG|coronary artery bypass)"),
    _ci(r"(?:stent|stenting)\s+(?:to|of)\s+([A-Z]+)"),
    _ci(r"(?:implanted|insertion of|placement of)\s+(ICD|pacemaker|CRT-D|CRT-P)"),
    _ci(r"(?:performed|underwent)\s+(TAVI|TAVR|valve replacement)"),
    _ci(r"(?:MitraClip|TEER)"),
    _ci(r"(?:performed|underwent)\s+(echocardiogram|echo|TTE|TOE)"),
    _ci(r"(?:performed|underwent)\s+(stress test|exercise tolerance test|ETT)"),
    _ci(r"(?:performed|underwent)\s+(CT coronary angiogram|CTCA)"),
]


def _extract_measurements(text: str) -> List[_Match]:
    found = []
    for pattern, name, unit in MEASUREMENT_PATTERNS:
        for m in pattern.finditer(text):
            value = f"{m.group(1)}/{m.group(2)}" if pattern.groups == 2 else m.group(1)
            found.append(_Match(name, value, unit, m.start()))
    return found


def _extract_diagnoses(text: str) -> List[_Match]:
    return [
        _Match("Diagnosis", m.group(0).strip(), None, m.start())
        for pattern in DIAGNOSIS_PATTERNS
        for m in pattern.finditer(text)
    ]


def _extract_medications(text: str) -> List[_Match]:
    found = []
    for pattern in MEDICATION_PATTERNS:
        for m in pattern.finditer(text):
            found.append(_Match(m.group(0).split()[0], m.group(1), m.group(2) or "mg", m.start()))
    return found


def _extract_procedures(text: str) -> List[_Match]:
    return [
        _Match("Procedure", m.group(0).strip(), None, m.start())
        for pattern in PROCEDURE_PATTERNS
        for m in pattern.finditer(text)
    ]


def find_nearest_anchor(position: int, anchors: Sequence[SourceAnchor]) -> Optional[SourceAnchor]:
    """Closest anchor by either edge, if it is within ``NEAREST_ANCHOR_MAX_DISTANCE``."""
    nearest = None
    min_distance = None
    for anchor in anchors:
        distance = min(abs(anchor.start_index - position), abs(anchor.end_index - position))
        if min_distance is None or distance < min_distance:
            min_distance = distance
            nearest = anchor
    if min_distance is not None and min_distance < NEAREST_ANCHOR_MAX_DISTANCE:
        return nearest
    return None


def extract_clinical_values(letter_text: str, anchors: Sequence[SourceAnchor]) -> List[ClinicalValue]:
    """
    Extract clinical values from a letter and link them to source anchors.

    ``letter_text`` must be the text the anchor positions refer to, i.e. the
    letter with anchors still inline.

    Args:
        letter_text: Generated letter text
        anchors: Verified anchors parsed from the same text

    Returns:
        Clinical values in extraction order: measurements, diagnoses,
        medications, procedures
    """
    groups = [
        (ClinicalValueType.MEASUREMENT, _extract_measurements(letter_text)),
        (ClinicalValueType.DIAGNOSIS, _extract_diagnoses(letter_text)),
        (ClinicalValueType.MEDICATION, _extract_medications(letter_text)),
        (ClinicalValueType.PROCEDURE, _extract_procedures(letter_text)),
    ]

    values: List[ClinicalValue] = []
    for value_type, matches in groups:
        for item in matches:
            anchor = find_nearest_anchor(item.position, anchors)
            values.append(
                ClinicalValue(
                    id=f"value-{len(values)}",
                    type=value_type,
                    name=item.name,
                    value=item.value,
                    unit=item.unit,
                    source_anchor_id=anchor.id if anchor else None,
                )
            )

    logger.info(
        f"Extracted {len(values)} clinical value(s)",
        extra={value_type.value: len(matches) for value_type, matches in groups},
    )
    return values


def group_values_by_type(values: Sequence[ClinicalValue]) -> Dict[ClinicalValueType, List[ClinicalValue]]:
    grouped: Dict[ClinicalValueType, List[ClinicalValue]] = {t: [] for t in ClinicalValueType}
    for value in values:
        grouped[value.type].append(value)
    return grouped


def get_unverified_values(values: Sequence[ClinicalValue]) -> List[ClinicalValue]:
    return [v for v in values if not v.verified or not v.source_anchor_id]


def calculate_verification_rate(values: Sequence[ClinicalValue]) -> Dict[str, float]:
    """Share of values linked to a source anchor, as a percentage (100 when empty)."""
    total = len(values)
    anchored = sum(1 for v in values if v.source_anchor_id is not None)
    rate = (anchored / total) * 100 if total else 100.0
    return {"total": total, "verified": anchored, "rate": rate}
