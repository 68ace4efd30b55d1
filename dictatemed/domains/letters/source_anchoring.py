"""
Source anchor parsing and verification.

The model cites its sources inline as ``{{SOURCE:id:excerpt}}``. Each anchor
is checked against the source it names: an exact (case-insensitive)
substring match is fully trusted, otherwise the share of the excerpt's
significant words found in the source must exceed ``SIMILARITY_THRESHOLD``.
"""

from __future__ import annotations

import json
import re
from typing import Dict, List, Sequence, Tuple

from pydantic import BaseModel

from dictatemed.core.logging_config import get_logger
from dictatemed.core.models.domain.letters import LetterSources, SourceAnchor

logger = get_logger(__name__)

ANCHOR_PATTERN = re.compile(r"\{\{SOURCE:([^:]+):([^}]+)\}\}")

SIMILARITY_THRESHOLD = 0.7
MIN_SIGNIFICANT_WORD_LENGTH = 4
ANCHOR_PROXIMITY_CHARS = 200
MIN_SOURCE_COVERAGE = 80.0

SOURCE_TRANSCRIPT = "transcript"
SOURCE_DOCUMENT = "document"
SOURCE_USER_INPUT = "user-input"

CLINICAL_STATEMENT_PATTERNS = [
    re.compile(r"LVEF\s+(?:was\s+)?(\d+%)", re.IGNORECASE),
    re.compile(r"BP\s+(\d+/\d+)", re.IGNORECASE),
    re.compile(r"HR\s+(\d+)", re.IGNORECASE),
    re.compile(r"stenosis\s+of\s+(\d+%)", re.IGNORECASE),
    re.compile(r"gradient\s+(?:of\s+)?(\d+\s*mmHg)", re.IGNORECASE),
    re.compile(r"medications?:\s*([^\n]+)", re.IGNORECASE),
    re.compile(r"(?:presented|presenting)\s+with\s+([^.]+)", re.IGNORECASE),
]


class ParsedAnchors(BaseModel):
    anchors: List[SourceAnchor]
    letter_without_anchors: str
    unverified_anchors: List[SourceAnchor]


class SourceCoverage(BaseModel):
    is_valid: bool
    unsourced_statements: List[str]
    coverage: float


def calculate_similarity(full_text: str, excerpt: str) -> float:
    """Share of the excerpt's significant words that appear in ``full_text``."""
    if excerpt in full_text:
        return 1.0
    words = [w for w in excerpt.split() if len(w) >= MIN_SIGNIFICANT_WORD_LENGTH]
    if not words:
        return 0.0
    return sum(1 for w in words if w in full_text) / len(words)


def _match_text(text: str, excerpt: str) -> Tuple[bool, float]:
    text = text.lower()
    if excerpt in text:
        return True, 1.0
    similarity = calculate_similarity(text, excerpt)
    if similarity > SIMILARITY_THRESHOLD:
        return True, similarity
    return False, 0.0


def verify_source_anchor(source_id: str, excerpt: str, sources: LetterSources) -> Tuple[str, bool, float]:
    """
    Resolve the source an anchor names and check the excerpt against it.

    Returns:
        Tuple of (source type, verified, confidence)
    """
    excerpt_lower = excerpt.lower()
    transcript = sources.transcript
    if transcript and (
        source_id == transcript.id or source_id.startswith("transcript") or source_id.startswith("recording")
    ):
        verified, confidence = _match_text(transcript.text, excerpt_lower)
        if verified:
            return SOURCE_TRANSCRIPT, True, confidence
        for segment in transcript.speakers or []:
            verified, confidence = _match_text(segment.text, excerpt_lower)
            if verified:
                return SOURCE_TRANSCRIPT, True, confidence
        logger.warning(f"Transcript anchor not verified: {source_id}", extra={"excerpt": excerpt[:50]})
        return SOURCE_TRANSCRIPT, False, 0.0

    if sources.documents and (source_id.startswith("document") or source_id.startswith("doc")):
        for doc in sources.documents:
            if doc.id != source_id and doc.id not in source_id:
                continue
            if excerpt_lower in json.dumps(doc.extracted_data).lower():
                return SOURCE_DOCUMENT, True, 1.0
            if doc.raw_text:
                verified, confidence = _match_text(doc.raw_text, excerpt_lower)
                if verified:
                    return SOURCE_DOCUMENT, True, confidence
            logger.warning(f"Document anchor not verified: {source_id}", extra={"excerpt": excerpt[:50]})
            return SOURCE_DOCUMENT, False, 0.0
        logger.warning(f"Document source not found: {source_id}")
        return SOURCE_DOCUMENT, False, 0.0

    user_input = sources.user_input
    if user_input and (source_id == user_input.id or source_id.startswith("user")):
        verified, confidence = _match_text(user_input.text, excerpt_lower)
        if not verified:
            logger.warning(f"User input anchor not verified: {source_id}", extra={"excerpt": excerpt[:50]})
        return SOURCE_USER_INPUT, verified, confidence

    logger.warning(f"Unknown source id in anchor: {source_id}")
    return SOURCE_DOCUMENT, False, 0.0


def parse_source_anchors(letter_text: str, sources: LetterSources) -> ParsedAnchors:
    """
    Extract and verify every ``{{SOURCE:id:excerpt}}`` anchor.

    Anchor positions refer to ``letter_text`` as given (anchors included).

    Args:
        letter_text: Generated letter with inline anchors
        sources: The sources the letter was generated from (not obfuscated)

    Returns:
        ParsedAnchors with verified anchors, unverified anchors and the
        letter with all anchors removed
    """
    anchors: List[SourceAnchor] = []
    unverified: List[SourceAnchor] = []

    for index, match in enumerate(ANCHOR_PATTERN.finditer(letter_text)):
        source_id = match.group(1).strip()
        excerpt = match.group(2).strip()
        source_type, verified, confidence = verify_source_anchor(source_id, excerpt, sources)
        anchor = SourceAnchor(
            id=f"anchor-{index}",
            segment_text=match.group(0),
            start_index=match.start(),
            end_index=match.end(),
            source_type=source_type,
            source_id=source_id,
            source_excerpt=excerpt,
            confidence=confidence,
        )
        (anchors if verified else unverified).append(anchor)

    logger.info(
        f"Parsed {len(anchors) + len(unverified)} source anchor(s), {len(unverified)} unverified",
    )
    return ParsedAnchors(
        anchors=anchors,
        letter_without_anchors=ANCHOR_PATTERN.sub("", letter_text).strip(),
        unverified_anchors=unverified,
    )


def count_anchors_by_type(anchors: Sequence[SourceAnchor]) -> Dict[str, int]:
    counts = {SOURCE_TRANSCRIPT: 0, SOURCE_DOCUMENT: 0, SOURCE_USER_INPUT: 0}
    for anchor in anchors:
        if anchor.source_type in counts:
            counts[anchor.source_type] += 1
    counts["total"] = len(anchors)
    return counts


def generate_source_summary(anchors: Sequence[SourceAnchor]) -> str:
    counts = count_anchors_by_type(anchors)
    parts = []
    for key, label in ((SOURCE_TRANSCRIPT, "Transcript"), (SOURCE_DOCUMENT, "Documents"), (SOURCE_USER_INPUT, "User Input")):
        n = counts[key]
        if n:
            parts.append(f"{label} ({n} citation{'s' if n > 1 else ''})")
    if not parts:
        return "No sources cited"
    return f"Sources used: {', '.join(parts)}"


def get_anchors_for_section(section_text: str, anchors: Sequence[SourceAnchor]) -> List[SourceAnchor]:
    return [a for a in anchors if a.segment_text in section_text]


def validate_clinical_sources(letter_text: str, anchors: Sequence[SourceAnchor]) -> SourceCoverage:
    """Share of recognisable clinical statements that have an anchor nearby."""
    unsourced: List[str] = []
    total = 0
    sourced = 0

    for pattern in CLINICAL_STATEMENT_PATTERNS:
        for match in pattern.finditer(letter_text):
            total += 1
            has_anchor = any(
                abs(a.start_index - match.start()) < ANCHOR_PROXIMITY_CHARS
                or abs(a.end_index - match.end()) < ANCHOR_PROXIMITY_CHARS
                for a in anchors
            )
            if has_anchor:
                sourced += 1
            else:
                unsourced.append(match.group(0))

    coverage = (sourced / total) * 100 if total else 100.0
    logger.debug(f"Clinical source coverage {coverage:.1f}% ({sourced}/{total})")
    return SourceCoverage(is_valid=coverage >= MIN_SOURCE_COVERAGE, unsourced_statements=unsourced, coverage=coverage)
