"""
Per-subspecialty style learning pipeline.

Approved letters feed section-level edits into ``style_edits``. Once enough
edits accumulate (``MIN_EDITS_FOR_ANALYSIS`` for the first analysis, then
every ``ANALYSIS_INTERVAL``), the recent edits are sent to the model, and
the detected preferences are merged into the subspecialty profile weighted
by how many edits each side was learned from.
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from dictatemed.core.database.base import utc_now
from dictatemed.core.database.entities.style_profiles import StyleEdit, StyleSeedLetter
from dictatemed.core.database.repositories import (
    AuditLogRepository,
    StyleEditRepository,
    StyleSeedLetterRepository,
)
from dictatemed.core.errors import AppError, ExternalServiceError, ValidationError
from dictatemed.core.llm import (
    LLM_SERVICE,
    TextGenerationClient,
    TextGenerationRequest,
    generate_text_with_retry,
)
from dictatemed.core.logging_config import get_logger
from dictatemed.core.models.domain.enums import Subspecialty
from dictatemed.core.models.domain.style import (
    CONFIDENCE_FIELDS,
    StyleAnalysisResult,
    SubspecialtyStyleProfileData,
)
from dictatemed.server.core.config import settings

from .diff_analyzer import LetterDiffAnalysis, analyze_diff
from .profile_service import RESOURCE_STYLE_PROFILE, get_style_profile, update_style_profile

logger = get_logger(__name__)

MIN_EDITS_FOR_ANALYSIS = 5
ANALYSIS_INTERVAL = 10
MAX_EDITS_PER_ANALYSIS = 50
MAX_EDITS_PER_SECTION_IN_PROMPT = 10
MAX_EDIT_TEXT_LENGTH = 500
MAX_SEED_LETTERS = 10
MAX_SEED_LETTER_LENGTH = 2000
MAX_PHRASES_PER_SECTION = 20

ANALYSIS_MAX_TOKENS = 4096
ANALYSIS_TEMPERATURE = 0.2

JSON_BLOCK_PATTERN = re.compile(r"```json\s*([\s\S]*?)\s*```")

ANALYSIS_SYSTEM_PROMPT = """You are an expert medical writing analyst specializing in identifying physician writing style preferences for specific medical subspecialties.

Your role is to analyze edits made by physicians to AI-generated medical letters and identify consistent patterns in their writing style specific to their subspecialty.

Focus on:
- Concrete, observable patterns (not subjective interpretations)
- Consistency across multiple examples
- Medical writing conventions and terminology specific to the subspecialty
- Australian medical practice standards (if evident)
- Section-level preferences (ordering, inclusion, verbosity)
- Phrase-level preferences (preferred phrases, avoided phrases)
- Word-level preferences (vocabulary substitutions)

Be conservative with confidence scores - only assign high confidence when patterns are clearly consistent across multiple examples."""

SEED_LETTER_SYSTEM_PROMPT = """You are an expert medical writing analyst specializing in identifying physician writing style preferences from their historical letters.

Your role is to analyze complete medical letters written by a physician to identify their consistent writing style patterns.

Focus on:
- Concrete, observable patterns (not subjective interpretations)
- Consistency across multiple letters
- Section structure and ordering
- Phrase patterns and vocabulary
- Sign-off and formality conventions

Be conservative with confidence scores since you're inferring from examples rather than seeing explicit editing preferences."""

ANALYSIS_JSON_FORMAT = """```json
{
  "detected_section_order": ["greeting", "history", "examination", "impression", "plan", "closing", "signoff"],
  "detected_section_inclusion": {"history": 0.95, "medications": 0.7, "family_history": 0.3},
  "detected_section_verbosity": {"history": "detailed", "plan": "brief", "impression": "normal"},
  "detected_phrasing": {"plan": ["will arrange", "recommend proceeding with"]},
  "detected_avoided_phrases": {"impression": ["It is felt that"]},
  "detected_vocabulary": {"utilize": "use", "commence": "start"},
  "detected_terminology_level": "specialist" | "lay" | "mixed" | null,
  "detected_greeting_style": "formal" | "casual" | "mixed" | null,
  "detected_closing_style": "formal" | "casual" | "mixed" | null,
  "detected_signoff": "Yours sincerely," | null,
  "detected_formality_level": "very-formal" | "formal" | "neutral" | "casual" | null,
  "detected_paragraph_structure": "long" | "short" | "mixed" | null,
  "confidence": {
    "section_order": 0.0-1.0,
    "section_inclusion": 0.0-1.0,
    "section_verbosity": 0.0-1.0,
    "phrasing_preferences": 0.0-1.0,
    "avoided_phrases": 0.0-1.0,
    "vocabulary_map": 0.0-1.0,
    "terminology_level": 0.0-1.0,
    "greeting_style": 0.0-1.0,
    "closing_style": 0.0-1.0,
    "signoff_template": 0.0-1.0,
    "formality_level": 0.0-1.0,
    "paragraph_structure": 0.0-1.0
  },
  "insights": ["The physician prefers formal greetings..."]
}
```"""


def _truncate(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    return text[: max_length - 3] + "..."


async def record_subspecialty_edits(
    session: AsyncSession,
    user_id: str,
    letter_id: str,
    draft_content: str,
    final_content: str,
    subspecialty: Subspecialty,
) -> Tuple[int, LetterDiffAnalysis]:
    """
    Store one style edit per changed section of an approved letter.

    Returns:
        Tuple of (number of edits stored, the diff analysis)
    """
    analysis = analyze_diff(letter_id, draft_content, final_content, subspecialty)
    stats = analysis.overall_stats

    edit_repo = StyleEditRepository(session)
    edit_count = 0
    for diff in analysis.section_diffs:
        if diff.status == "unchanged":
            continue
        edit_repo.stage(
            StyleEdit(
                user_id=user_id,
                letter_id=letter_id,
                subspecialty=subspecialty,
                section_type=diff.section_type.value,
                edit_type=diff.status,
                before_text=diff.draft_content or "",
                after_text=diff.final_content or "",
                character_changes=abs(diff.total_char_delta),
                word_changes=abs(diff.total_word_delta),
            )
        )
        edit_count += 1

    AuditLogRepository(session).record(
        user_id,
        "style.subspecialty_edits_recorded",
        "letter",
        letter_id,
        {
            "subspecialty": Subspecialty(subspecialty).value,
            "edit_count": edit_count,
            "sections_modified": stats.sections_modified,
            "sections_added": stats.sections_added,
            "sections_removed": stats.sections_removed,
        },
    )
    await session.commit()

    logger.info(f"Recorded {edit_count} style edit(s) for letter {letter_id}", extra={"subspecialty": subspecialty})
    return edit_count, analysis


async def should_trigger_analysis(
    session: AsyncSession, user_id: str, subspecialty: Subspecialty
) -> Tuple[bool, int, str]:
    """
    Decide whether enough new edits exist to (re)analyse a profile.

    Returns:
        Tuple of (should analyse, total edit count, human readable reason)
    """
    profile = await get_style_profile(session, user_id, subspecialty)
    total_edits = await StyleEditRepository(session).count(user_id, subspecialty)

    if profile is None:
        if total_edits >= MIN_EDITS_FOR_ANALYSIS:
            return True, total_edits, "Initial profile creation (minimum edits reached)"
        return False, total_edits, f"Need {MIN_EDITS_FOR_ANALYSIS - total_edits} more edits for initial analysis"

    new_edits = total_edits - profile.total_edits_analyzed
    if new_edits >= ANALYSIS_INTERVAL:
        return True, total_edits, f"{new_edits} new edits since last analysis"
    return False, total_edits, f"Need {ANALYSIS_INTERVAL - new_edits} more edits for next analysis"


def build_analysis_prompt(edits: Sequence[StyleEdit], subspecialty: Subspecialty) -> str:
    """Prompt listing edits grouped by section, at most 10 per section."""
    name = Subspecialty(subspecialty).value
    by_section: Dict[str, List[StyleEdit]] = {}
    for edit in edits:
        by_section.setdefault(edit.section_type or "other", []).append(edit)

    parts = [
        f"Analyze these physician edits for {name} letters to learn their writing style preferences.\n\n"
        f"Below are {len(edits)} examples of text edits the physician made to AI-generated medical letters "
        f"for {name}. Each edit shows the BEFORE (AI-generated) and AFTER (physician-edited) versions.\n\n"
        "Identify consistent patterns in section ordering, inclusion and verbosity, preferred and avoided "
        "phrases, vocabulary substitutions, terminology level, greeting, closing and sign-off, formality "
        "and paragraph structure.\n\n# EDIT EXAMPLES\n\n"
    ]
    for section, section_edits in by_section.items():
        parts.append(f"## {section.upper()} SECTION\n\n")
        for i, edit in enumerate(section_edits[:MAX_EDITS_PER_SECTION_IN_PROMPT], start=1):
            parts.append(
                f"### Edit {i} ({edit.edit_type})\n"
                f"BEFORE:\n{_truncate(edit.before_text or '', MAX_EDIT_TEXT_LENGTH)}\n\n"
                f"AFTER:\n{_truncate(edit.after_text or '', MAX_EDIT_TEXT_LENGTH)}\n\n---\n\n"
            )

    parts.append(
        "\n# YOUR ANALYSIS\n\nProvide your analysis in the following JSON format:\n\n"
        f"{ANALYSIS_JSON_FORMAT}\n\n"
        "Only include fields where you detected a pattern. Use null for fields with no clear preference. "
        "For arrays/objects, use empty [] or {} if no patterns detected.\n"
    )
    return "".join(parts)


def build_seed_letter_prompt(letters: Sequence[str], subspecialty: Subspecialty) -> str:
    name = Subspecialty(subspecialty).value
    parts = [
        f"Analyze these {name} medical letters to learn the physician's writing style.\n\n"
        f"Below are {len(letters)} complete medical letters written by this physician for {name}.\n\n"
        "# SAMPLE LETTERS\n\n"
    ]
    for i, letter in enumerate(letters, start=1):
        parts.append(f"## Letter {i}\n\n{_truncate(letter, MAX_SEED_LETTER_LENGTH)}\n\n---\n\n")
    parts.append(
        "\n# YOUR ANALYSIS\n\nProvide your analysis in the same JSON format as for edit-based analysis:\n\n"
        f"{ANALYSIS_JSON_FORMAT}\n\n"
        "Since these are complete letters (not before/after edits), keep confidence scores lower than for "
        "edit-based analysis.\n"
    )
    return "".join(parts)


def parse_analysis_response(content: str, edits_analyzed: int) -> StyleAnalysisResult:
    """
    Parse the fenced JSON block of an analysis response.

    Raises:
        ExternalServiceError: No JSON block, invalid JSON or an unexpected shape
    """
    match = JSON_BLOCK_PATTERN.search(content)
    try:
        if not match:
            raise ValueError("No JSON found in model response")
        parsed = json.loads(match.group(1))
        confidence = parsed.get("confidence") or {}
        parsed["confidence"] = {field: float(confidence.get(field) or 0.0) for field in CONFIDENCE_FIELDS}
        parsed["edits_analyzed"] = edits_analyzed
        for key in ("detected_section_inclusion", "detected_section_verbosity", "detected_phrasing",
                    "detected_avoided_phrases", "detected_vocabulary"):
            parsed[key] = parsed.get(key) or {}
        parsed["insights"] = parsed.get("insights") or []
        return StyleAnalysisResult.model_validate(parsed)
    except (ValueError, AttributeError, PydanticValidationError) as e:
        logger.error(f"Failed to parse subspecialty analysis response: {e}", extra={"content": content[:500]})
        raise ExternalServiceError(LLM_SERVICE, f"Failed to parse subspecialty analysis: {e}") from e


def _analysis_to_fields(analysis: StyleAnalysisResult) -> Dict[str, Any]:
    return {
        "section_order": analysis.detected_section_order or [],
        "section_inclusion": analysis.detected_section_inclusion,
        "section_verbosity": analysis.detected_section_verbosity,
        "phrasing_preferences": analysis.detected_phrasing,
        "avoided_phrases": analysis.detected_avoided_phrases,
        "vocabulary_map": analysis.detected_vocabulary,
        "terminology_level": analysis.detected_terminology_level,
        "greeting_style": analysis.detected_greeting_style,
        "closing_style": analysis.detected_closing_style,
        "signoff_template": analysis.detected_signoff,
        "formality_level": analysis.detected_formality_level,
        "paragraph_structure": analysis.detected_paragraph_structure,
        "confidence": dict(analysis.confidence),
    }


def _merge_phrase_maps(existing: Dict[str, List[str]], new: Dict[str, List[str]]) -> Dict[str, List[str]]:
    merged = {}
    for section in list(dict.fromkeys([*existing, *new])):
        combined = [*new.get(section, []), *existing.get(section, [])]
        merged[section] = list(dict.fromkeys(combined))[:MAX_PHRASES_PER_SECTION]
    return merged


# scalar profile field -> (detected field, confidence key)
SCALAR_MERGE_FIELDS = {
    "terminology_level": ("detected_terminology_level", "terminology_level"),
    "greeting_style": ("detected_greeting_style", "greeting_style"),
    "closing_style": ("detected_closing_style", "closing_style"),
    "signoff_template": ("detected_signoff", "signoff_template"),
    "formality_level": ("detected_formality_level", "formality_level"),
    "paragraph_structure": ("detected_paragraph_structure", "paragraph_structure"),
}


def merge_profile_analysis(
    existing: Optional[SubspecialtyStyleProfileData], analysis: StyleAnalysisResult
) -> Dict[str, Any]:
    """
    Merge a new analysis into an existing profile.

    Confidence and inclusion probabilities are averaged, weighted by edits
    analysed on each side. Section order, verbosity and scalar preferences
    take whichever side is more confident. Phrase lists put new phrases
    first and keep 20 per section; vocabulary entries from the new analysis
    override old ones.

    Returns:
        Profile fields to write
    """
    if existing is None:
        return _analysis_to_fields(analysis)

    existing_weight = existing.total_edits_analyzed
    new_weight = analysis.edits_analyzed
    total_weight = existing_weight + new_weight

    def weighted(old: float, new: float) -> float:
        if total_weight == 0:
            return new
        return (old * existing_weight + new * new_weight) / total_weight

    old_conf = existing.confidence
    new_conf = analysis.confidence

    def newer_wins(key: str) -> bool:
        return new_conf.get(key, 0.0) > old_conf.get(key, 0.0)

    inclusion = dict(existing.section_inclusion)
    for section, probability in analysis.detected_section_inclusion.items():
        inclusion[section] = weighted(existing.section_inclusion.get(section, 0.0), probability)

    fields: Dict[str, Any] = {
        "section_order": (analysis.detected_section_order or existing.section_order)
        if newer_wins("section_order")
        else existing.section_order,
        "section_inclusion": inclusion,
        "section_verbosity": {**existing.section_verbosity, **analysis.detected_section_verbosity}
        if newer_wins("section_verbosity")
        else existing.section_verbosity,
        "phrasing_preferences": _merge_phrase_maps(existing.phrasing_preferences, analysis.detected_phrasing),
        "avoided_phrases": _merge_phrase_maps(existing.avoided_phrases, analysis.detected_avoided_phrases),
        "vocabulary_map": {**existing.vocabulary_map, **analysis.detected_vocabulary},
        "confidence": {
            field: weighted(old_conf.get(field, 0.0), new_conf.get(field, 0.0)) for field in CONFIDENCE_FIELDS
        },
    }
    for field, (detected, key) in SCALAR_MERGE_FIELDS.items():
        fields[field] = getattr(analysis, detected) if newer_wins(key) else getattr(existing, field)
    return fields


def apply_learning_strength(profile: SubspecialtyStyleProfileData) -> SubspecialtyStyleProfileData:
    """
    Scale a profile's learned preferences by its learning strength.

    At 1.0 the profile is unchanged and at 0.0 the learned maps and
    confidences are cleared. In between, confidences are scaled, inclusion
    probabilities move toward 0.5 and phrase and vocabulary lists are cut to
    ``floor(n * strength)`` entries (at least one).
    """
    strength = profile.learning_strength
    if strength >= 1.0:
        return profile
    if strength <= 0:
        return profile.model_copy(
            update={
                "section_order": [],
                "section_inclusion": {},
                "section_verbosity": {},
                "phrasing_preferences": {},
                "avoided_phrases": {},
                "vocabulary_map": {},
                "confidence": {},
            }
        )

    def limit(n: int) -> int:
        return max(1, int(n * strength))

    vocabulary = list(profile.vocabulary_map.items())
    return profile.model_copy(
        update={
            "confidence": {k: v * strength for k, v in profile.confidence.items()},
            "section_inclusion": {k: 0.5 + (v - 0.5) * strength for k, v in profile.section_inclusion.items()},
            "phrasing_preferences": {k: v[: limit(len(v))] for k, v in profile.phrasing_preferences.items()},
            "avoided_phrases": {k: v[: limit(len(v))] for k, v in profile.avoided_phrases.items()},
            "vocabulary_map": dict(vocabulary[: limit(len(vocabulary))]),
        }
    )


async def _run_analysis(
    session: AsyncSession,
    client: TextGenerationClient,
    user_id: str,
    subspecialty: Subspecialty,
    prompt: str,
    system_prompt: str,
    sample_count: int,
    audit_action: str,
    purpose: str,
) -> StyleAnalysisResult:
    response = await generate_text_with_retry(
        client,
        TextGenerationRequest(
            prompt=prompt,
            system_prompt=system_prompt,
            model_id=settings.llm.standard_model,
            max_tokens=ANALYSIS_MAX_TOKENS,
            temperature=ANALYSIS_TEMPERATURE,
            purpose=purpose,
        ),
    )
    analysis = parse_analysis_response(response.content, sample_count)

    existing = await get_style_profile(session, user_id, subspecialty)
    fields = merge_profile_analysis(existing, analysis)
    fields["total_edits_analyzed"] = (existing.total_edits_analyzed if existing else 0) + sample_count
    fields["last_analyzed_at"] = utc_now()
    await update_style_profile(session, user_id, subspecialty, fields)

    AuditLogRepository(session).record(
        user_id,
        audit_action,
        RESOURCE_STYLE_PROFILE,
        f"{user_id}:{Subspecialty(subspecialty).value}",
        {"subspecialty": Subspecialty(subspecialty).value, "samples_analyzed": sample_count, "model_used": response.model_id},
    )
    await session.commit()
    return analysis


async def run_style_analysis(
    session: AsyncSession,
    client: TextGenerationClient,
    user_id: str,
    subspecialty: Subspecialty,
    force: bool = False,
    min_edits: int = MIN_EDITS_FOR_ANALYSIS,
    max_edits: int = MAX_EDITS_PER_ANALYSIS,
) -> StyleAnalysisResult:
    """
    Analyse recent edits with the model and merge the result into the profile.

    Args:
        session: Database session
        client: Text generation backend
        user_id: Clinician
        subspecialty: Profile to update
        force: Run even with fewer than ``min_edits`` edits
        min_edits: Edits required unless forced
        max_edits: Most recent edits sent to the model

    Raises:
        ValidationError: Too few edits and not forced
        ExternalServiceError: The model call failed or returned no usable JSON
    """
    edits = await StyleEditRepository(session).list(
        limit=max_edits, filters={"user_id": user_id, "subspecialty": subspecialty}
    )
    if len(edits) < min_edits and not force:
        raise ValidationError(
            f"Insufficient edits for analysis. Need at least {min_edits}, found {len(edits)}.",
            code="INSUFFICIENT_EDITS",
        )

    logger.info(f"Starting style analysis over {len(edits)} edit(s)", extra={"subspecialty": subspecialty})
    analysis = await _run_analysis(
        session,
        client,
        user_id,
        subspecialty,
        build_analysis_prompt(edits, subspecialty),
        ANALYSIS_SYSTEM_PROMPT,
        len(edits),
        "style.subspecialty_analysis_completed",
        "style_analysis",
    )
    logger.info(f"Style profile updated from {len(edits)} edit(s)", extra={"insights": len(analysis.insights)})
    return analysis


async def queue_style_analysis(
    session: AsyncSession,
    client: TextGenerationClient,
    user_id: str,
    subspecialty: Subspecialty,
    force: bool = False,
) -> Tuple[bool, str]:
    """
    Run an analysis if one is due (or forced).

    Analysis runs inline; failures are reported in the result rather than
    raised.

    Returns:
        Tuple of (analysis ran, reason)
    """
    if not force:
        should_analyze, _, reason = await should_trigger_analysis(session, user_id, subspecialty)
        if not should_analyze:
            logger.info(f"Style analysis not triggered: {reason}")
            return False, reason

    try:
        await run_style_analysis(session, client, user_id, subspecialty, force=force)
    except (AppError, ExternalServiceError) as e:
        logger.error(f"Style analysis failed: {e}", exc_info=True)
        await session.rollback()
        return False, f"Analysis failed: {e}"
    return True, "Analysis completed"


async def analyze_seed_letters(
    session: AsyncSession, client: TextGenerationClient, user_id: str, subspecialty: Subspecialty
) -> Optional[StyleAnalysisResult]:
    """Bootstrap a profile from up to 10 seed letters not analysed yet."""
    seed_repo = StyleSeedLetterRepository(session)
    seeds = [
        s
        for s in await seed_repo.list(filters={"user_id": user_id, "subspecialty": subspecialty})
        if s.analyzed_at is None
    ][:MAX_SEED_LETTERS]
    if not seeds:
        logger.info("No seed letters to analyze", extra={"user_id": user_id, "subspecialty": subspecialty})
        return None

    now = utc_now()
    for seed in seeds:
        seed.analyzed_at = now
        seed_repo.stage(seed)

    return await _run_analysis(
        session,
        client,
        user_id,
        subspecialty,
        build_seed_letter_prompt([s.letter_text for s in seeds], subspecialty),
        SEED_LETTER_SYSTEM_PROMPT,
        len(seeds),
        "style.seed_letters_analyzed",
        "seed_letter_analysis",
    )


async def get_edit_count_since_last_analysis(session: AsyncSession, user_id: str, subspecialty: Subspecialty) -> int:
    profile = await get_style_profile(session, user_id, subspecialty)
    since = profile.last_analyzed_at if profile else None
    return await StyleEditRepository(session).count(user_id, subspecialty, since=since)
