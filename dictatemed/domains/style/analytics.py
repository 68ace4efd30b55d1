"""
De-identified style analytics across clinicians.

Recorded style edits for one subspecialty are pooled across every clinician
and reduced to phrase and section-order counts for a weekly period. Nothing
that identifies a clinician or a patient is stored:

- a period is only aggregated when at least ``MIN_CLINICIANS_FOR_AGGREGATION``
  clinicians contributed and ``MIN_LETTERS_FOR_AGGREGATION`` edits exist;
- phrases that match a PHI pattern are dropped, not redacted;
- only counts, clinician totals and phrases are persisted.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Set, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from dictatemed.core.database.base import utc_now
from dictatemed.core.database.entities.style_profiles import StyleAnalyticsAggregate, StyleEdit
from dictatemed.core.database.repositories import (
    AuditLogRepository,
    LetterRepository,
    StyleAnalyticsRepository,
    StyleEditRepository,
)
from dictatemed.core.logging_config import get_logger
from dictatemed.core.models.domain.enums import LetterSectionType, Subspecialty
from dictatemed.core.models.domain.style import (
    AggregatedPattern,
    AggregatedPhrasePattern,
    SectionOrderPattern,
    StyleAnalyticsAggregateData,
    StyleAnalyticsSummary,
    SubspecialtyAnalyticsSummary,
)

from .diff_analyzer import parse_letter_sections

logger = get_logger(__name__)

MIN_CLINICIANS_FOR_AGGREGATION = 5
MIN_LETTERS_FOR_AGGREGATION = 10
MAX_PATTERNS_PER_CATEGORY = 50
MAX_SECTION_ORDER_PATTERNS = 20
MIN_PATTERN_FREQUENCY = 2
MIN_PHRASE_LENGTH = 5
MIN_PHRASING_LENGTH = 10
AGGREGATION_WINDOW = timedelta(days=7)

RESOURCE_STYLE_ANALYTICS = "style_analytics"
REDACTED = "[REDACTED]"

PHI_PATTERNS: Tuple[re.Pattern, ...] = (
    # Titled names
    re.compile(r"\b(?:Mr\.?|Mrs\.?|Ms\.?|Miss|Dr\.?|Prof\.?)\s+[A-Z][a-z]+(?:\s+[A-Z][a-z]+)*"),
    # Dates
    re.compile(r"\b\d{1,2}[/\-]\d{1,2}[/\-]\d{2,4}\b"),
    re.compile(
        r"\b\d{1,2}(?:st|nd|rd|th)?\s+(?:January|February|March|April|May|June|July|August|September|"
        r"October|November|December)\s+\d{2,4}\b",
        re.IGNORECASE,
    ),
    # Medicare and other 10-11 digit identifiers
    re.compile(r"\b\d{10,11}\b"),
    # Phone numbers
    re.compile(r"\b04\d{2}[-.\s]?\d{3}[-.\s]?\d{3}\b"),
    re.compile(r"\(?0[2-9]\)?\s?\d{4}[-.\s]?\d{4}\b"),
    re.compile(r"\+61\s?\d{1,3}[-.\s]?\d{3}[-.\s]?\d{3}[-.\s]?\d{0,3}\b"),
    re.compile(r"\b(?:\+?\d{1,3}[-.\s]?)?\(?\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4}\b"),
    # Email addresses
    re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"),
    # Street addresses
    re.compile(
        r"\b\d+\s+[A-Z][a-z]+\s+(?:Street|St|Avenue|Ave|Road|Rd|Drive|Dr|Court|Ct|Lane|Ln|Boulevard|Blvd)\b",
        re.IGNORECASE,
    ),
    # Named hospitals and clinics
    re.compile(
        r"\b(?:Hospital|Clinic|Medical Centre|Medical Center|Surgery)\s+[A-Z][a-z]+(?:\s+[A-Z][a-z]+)*",
        re.IGNORECASE,
    ),
    # URN / MRN
    re.compile(r"\b(?:URN|MRN|ID)\s*[:\s]?\s*\d+\b", re.IGNORECASE),
)

_REPEATED_REDACTIONS = re.compile(r"(?:\[REDACTED\]\s*)+")
_SENTENCE_BOUNDARY = re.compile(r"[.!?;]")


def strip_phi(text: str) -> str:
    """Replace anything that looks like PHI with ``[REDACTED]``."""
    result = text
    for pattern in PHI_PATTERNS:
        result = pattern.sub(REDACTED, result)
    return _REPEATED_REDACTIONS.sub(f"{REDACTED} ", result).strip()


def contains_phi(text: str) -> bool:
    return any(pattern.search(text) for pattern in PHI_PATTERNS)


def sanitize_phrase(phrase: str) -> Optional[str]:
    """
    Prepare a phrase for aggregation.

    Returns:
        The whitespace-normalised phrase, or None when it is too short or
        contains anything that looks like PHI
    """
    trimmed = phrase.strip()
    if len(trimmed) < MIN_PHRASE_LENGTH:
        return None

    stripped = strip_phi(trimmed)
    if REDACTED in stripped:
        return None

    normalized = " ".join(stripped.split())
    if len(normalized) < MIN_PHRASE_LENGTH:
        return None
    return normalized


def extract_key_phrases(text: str) -> List[str]:
    """Whole sentences of 3 to 8 words plus every 4-word run of 15+ characters."""
    phrases: List[str] = []
    for sentence in _SENTENCE_BOUNDARY.split(text):
        words = sentence.split()
        if not words:
            continue
        if 3 <= len(words) <= 8:
            phrases.append(" ".join(words))
        for i in range(len(words) - 2):
            run = " ".join(words[i : i + 4])
            if len(run) >= 15:
                phrases.append(run)
    return list(dict.fromkeys(phrases))


def _new_word_runs(reference: str, text: str) -> List[str]:
    known = {word.lower() for word in reference.split()}
    runs: List[str] = []
    current: List[str] = []
    for word in text.split():
        if word.lower() not in known and len(word) > 2:
            current.append(word)
            continue
        if len(current) >= 2:
            runs.append(" ".join(current))
        current = []
    if len(current) >= 2:
        runs.append(" ".join(current))
    return runs


def find_added_content(original: str, modified: str) -> List[str]:
    """Runs of two or more words in ``modified`` that ``original`` never uses."""
    return _new_word_runs(original, modified)


def find_removed_content(original: str, modified: str) -> List[str]:
    return _new_word_runs(modified, original)


def format_period(moment: datetime) -> str:
    """ISO week identifier, e.g. ``2026-W07``."""
    year, week, _ = moment.date().isocalendar()
    return f"{year}-W{week:02d}"


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(timezone.utc).replace(tzinfo=None)


@dataclass
class _PatternTally:
    count: int = 0
    clinicians: Set[str] = field(default_factory=set)


class _PatternCounter:
    """Counts phrases per (section, action) and who used them."""

    def __init__(self, min_length: int = MIN_PHRASE_LENGTH) -> None:
        self.min_length = min_length
        self._tallies: Dict[Tuple[str, str, str], _PatternTally] = {}

    def add_all(self, phrases: Iterable[str], section: str, action: str, user_id: str) -> None:
        for phrase in phrases:
            sanitized = sanitize_phrase(phrase)
            if sanitized is None or len(sanitized) < self.min_length:
                continue
            tally = self._tallies.setdefault((section, action, sanitized.lower()), _PatternTally())
            tally.count += 1
            tally.clinicians.add(user_id)

    def frequent(self, action: Optional[str] = None) -> List[Tuple[str, str, str, _PatternTally]]:
        rows = [
            (section, kind, phrase, tally)
            for (section, kind, phrase), tally in self._tallies.items()
            if tally.count >= MIN_PATTERN_FREQUENCY and (action is None or kind == action)
        ]
        rows.sort(key=lambda row: row[3].count, reverse=True)
        return rows[:MAX_PATTERNS_PER_CATEGORY]


def _percentage(count: int, total: int) -> int:
    return round(count / total * 100) if total else 0


def _edit_phrases(edit: StyleEdit) -> Tuple[List[str], List[str]]:
    before = edit.before_text or ""
    after = edit.after_text or ""
    if edit.edit_type == "added":
        return extract_key_phrases(after), []
    if edit.edit_type == "removed":
        return [], extract_key_phrases(before)
    if before == after:
        return [], []
    return find_added_content(before, after), find_removed_content(before, after)


def aggregate_edit_patterns(
    edits: Iterable[StyleEdit], total_clinicians: int
) -> Tuple[List[AggregatedPattern], List[AggregatedPattern], List[AggregatedPhrasePattern]]:
    """
    Count added and removed phrases across edits.

    Returns:
        Tuple of (common additions, common deletions, phrasing patterns)
    """
    changes = _PatternCounter()
    phrasing = _PatternCounter(min_length=MIN_PHRASING_LENGTH)

    for edit in edits:
        added, removed = _edit_phrases(edit)
        for counter in (changes, phrasing):
            counter.add_all(added, edit.section_type, "added", edit.user_id)
            counter.add_all(removed, edit.section_type, "removed", edit.user_id)

    def patterns(action: str) -> List[AggregatedPattern]:
        return [
            AggregatedPattern(
                pattern=phrase,
                section_type=section,
                frequency=tally.count,
                clinician_count=len(tally.clinicians),
                percentage_of_clinicians=_percentage(len(tally.clinicians), total_clinicians),
            )
            for section, _, phrase, tally in changes.frequent(action)
        ]

    phrasing_patterns = [
        AggregatedPhrasePattern(
            phrase=phrase,
            section_type=section,
            action=action,
            frequency=tally.count,
            clinician_count=len(tally.clinicians),
            percentage_of_clinicians=_percentage(len(tally.clinicians), total_clinicians),
        )
        for section, action, phrase, tally in phrasing.frequent()
    ]
    return patterns("added"), patterns("removed"), phrasing_patterns


def aggregate_section_orders(letter_texts: Iterable[str]) -> List[SectionOrderPattern]:
    """Most common orders of recognised sections in approved letters."""
    counts: Dict[Tuple[str, ...], int] = {}
    for text in letter_texts:
        order = tuple(
            section.type.value
            for section in parse_letter_sections(text)
            if section.type != LetterSectionType.OTHER
        )
        if len(order) >= 2:
            counts[order] = counts.get(order, 0) + 1

    frequent = [(order, n) for order, n in counts.items() if n >= MIN_PATTERN_FREQUENCY]
    frequent.sort(key=lambda item: item[1], reverse=True)
    return [SectionOrderPattern(order=list(order), frequency=n) for order, n in frequent[:MAX_SECTION_ORDER_PATTERNS]]


def to_aggregate_data(aggregate: StyleAnalyticsAggregate) -> StyleAnalyticsAggregateData:
    return StyleAnalyticsAggregateData(
        id=aggregate.id,
        subspecialty=aggregate.subspecialty,
        period=aggregate.period,
        common_additions=aggregate.get_patterns("common_additions"),
        common_deletions=aggregate.get_patterns("common_deletions"),
        section_order_patterns=aggregate.get_patterns("section_order_patterns"),
        phrasing_patterns=aggregate.get_patterns("phrasing_patterns"),
        sample_size=aggregate.sample_size,
        created_at=aggregate.created_at,
    )


async def aggregate_style_analytics(
    session: AsyncSession,
    subspecialty: Subspecialty,
    period_start: datetime,
    period_end: datetime,
    requested_by: str,
    min_sample_size: int = MIN_LETTERS_FOR_AGGREGATION,
) -> Optional[StyleAnalyticsAggregateData]:
    """
    Pool every clinician's edits for a subspecialty into one weekly aggregate.

    The aggregate for the ISO week containing ``period_start`` is created or
    replaced.

    Args:
        session: Database session
        subspecialty: Subspecialty to aggregate
        period_start: Start of the edit window (inclusive)
        period_end: End of the edit window (inclusive)
        requested_by: User recorded in the audit log
        min_sample_size: Minimum number of edits in the window

    Returns:
        The stored aggregate, or None when too few clinicians or edits exist
    """
    period_start, period_end = _as_utc(period_start), _as_utc(period_end)
    edits = await StyleEditRepository(session).list_in_window(subspecialty, period_start, period_end)
    clinicians = {edit.user_id for edit in edits}

    logger.info(
        f"Aggregating {len(edits)} style edit(s) from {len(clinicians)} clinician(s)",
        extra={"subspecialty": subspecialty},
    )

    if len(clinicians) < MIN_CLINICIANS_FOR_AGGREGATION:
        logger.info(
            f"Not enough clinicians to aggregate {subspecialty.value}: "
            f"{len(clinicians)} of {MIN_CLINICIANS_FOR_AGGREGATION}"
        )
        return None
    if len(edits) < min_sample_size:
        logger.info(f"Not enough edits to aggregate {subspecialty.value}: {len(edits)} of {min_sample_size}")
        return None

    additions, deletions, phrasing = aggregate_edit_patterns(edits, len(clinicians))
    letter_ids = list(dict.fromkeys(edit.letter_id for edit in edits if edit.letter_id))
    letters = await LetterRepository(session).list_by_ids(letter_ids)
    section_orders = aggregate_section_orders(letter.content_final for letter in letters if letter.content_final)

    period = format_period(period_start)
    repo = StyleAnalyticsRepository(session)
    aggregate = await repo.get_for_period(subspecialty, period)
    if aggregate is None:
        aggregate = StyleAnalyticsAggregate(subspecialty=subspecialty, period=period)
    aggregate.set_patterns("common_additions", [p.model_dump() for p in additions])
    aggregate.set_patterns("common_deletions", [p.model_dump() for p in deletions])
    aggregate.set_patterns("section_order_patterns", [p.model_dump() for p in section_orders])
    aggregate.set_patterns("phrasing_patterns", [p.model_dump() for p in phrasing])
    aggregate.sample_size = len(edits)
    aggregate.updated_at = utc_now()
    repo.stage(aggregate)
    await session.flush()

    AuditLogRepository(session).record(
        requested_by,
        "analytics.style_aggregated",
        RESOURCE_STYLE_ANALYTICS,
        aggregate.id,
        {
            "subspecialty": subspecialty.value,
            "period": period,
            "sample_size": len(edits),
            "unique_clinicians": len(clinicians),
            "patterns_found": {
                "additions": len(additions),
                "deletions": len(deletions),
                "section_order": len(section_orders),
                "phrasing": len(phrasing),
            },
        },
    )
    await session.commit()
    await session.refresh(aggregate)

    logger.info(f"Style analytics aggregated for {subspecialty.value} {period}", extra={"aggregate_id": aggregate.id})
    return to_aggregate_data(aggregate)


async def get_style_analytics(
    session: AsyncSession, subspecialty: Subspecialty, limit: int = 10
) -> List[StyleAnalyticsAggregateData]:
    aggregates = await StyleAnalyticsRepository(session).list(limit=limit, filters={"subspecialty": subspecialty})
    return [to_aggregate_data(a) for a in aggregates]


async def get_analytics_summary(session: AsyncSession) -> StyleAnalyticsSummary:
    """Latest aggregate per subspecialty with its five most common additions and deletions."""
    latest = await StyleAnalyticsRepository(session).latest_per_subspecialty()
    subspecialties = []
    for aggregate in latest:
        subspecialties.append(
            SubspecialtyAnalyticsSummary(
                subspecialty=aggregate.subspecialty,
                latest_period=aggregate.period,
                total_samples=aggregate.sample_size,
                top_additions=[p["pattern"] for p in aggregate.get_patterns("common_additions")[:5]],
                top_deletions=[p["pattern"] for p in aggregate.get_patterns("common_deletions")[:5]],
            )
        )
    last_updated = max((a.created_at for a in latest), default=None)
    return StyleAnalyticsSummary(subspecialties=subspecialties, last_updated=last_updated)


async def run_weekly_aggregation(
    session: AsyncSession, requested_by: str, now: Optional[datetime] = None
) -> Tuple[List[Subspecialty], List[Subspecialty]]:
    """
    Aggregate the last seven days for every subspecialty.

    A subspecialty whose aggregation fails is logged and counted as skipped.

    Returns:
        Tuple of (processed subspecialties, skipped subspecialties)
    """
    period_end = now or utc_now()
    period_start = period_end - AGGREGATION_WINDOW
    processed: List[Subspecialty] = []
    skipped: List[Subspecialty] = []

    for subspecialty in Subspecialty:
        try:
            result = await aggregate_style_analytics(session, subspecialty, period_start, period_end, requested_by)
        except SQLAlchemyError as e:
            await session.rollback()
            logger.error(f"Style analytics aggregation failed for {subspecialty.value}: {e}", exc_info=True)
            skipped.append(subspecialty)
            continue

        if result is None:
            skipped.append(subspecialty)
        else:
            processed.append(subspecialty)

    logger.info(f"Weekly style aggregation finished: {len(processed)} processed, {len(skipped)} skipped")
    return processed, skipped
