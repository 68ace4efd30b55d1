"""
Style-conditioned prompts.

Turns the effective style profile into natural-language guidance appended to
the letter generation prompt. A preference is only rendered when the
profile has data for it, its confidence reaches ``MIN_CONFIDENCE_THRESHOLD``
and the clinician's learning strength is above zero.
"""

from __future__ import annotations

import re
from typing import Dict, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from dictatemed.core.logging_config import get_logger
from dictatemed.core.models.domain.enums import StyleSource, Subspecialty
from dictatemed.core.models.domain.style import (
    ConditioningOverrides,
    LegacyStyleHints,
    StyleConditioningConfig,
    SubspecialtyStyleHints,
    SubspecialtyStyleProfileData,
)

from .profile_service import get_effective_profile

logger = get_logger(__name__)

MIN_CONFIDENCE_THRESHOLD = 0.5
MAX_PHRASES_PER_SECTION = 3
MAX_AVOIDED_PHRASES_PER_SECTION = 3
MAX_VOCABULARY_SUBSTITUTIONS = 8

INCLUDE_PROBABILITY = 0.8
EXCLUDE_PROBABILITY = 0.2
ESTABLISHED_STYLE_CONFIDENCE = 0.7

STYLE_HEADER = "# PHYSICIAN STYLE PREFERENCES"
SAFETY_NOTE = (
    "\nNote: Apply these style preferences while maintaining clinical accuracy and safety. "
    "Never compromise factual correctness for style."
)

# apply_* flag -> (profile attribute, confidence key)
CONDITIONED_FIELDS = {
    "apply_section_order": ("section_order", "section_order"),
    "apply_section_inclusion": ("section_inclusion", "section_inclusion"),
    "apply_section_verbosity": ("section_verbosity", "section_verbosity"),
    "apply_phrasing_preferences": ("phrasing_preferences", "phrasing_preferences"),
    "apply_avoided_phrases": ("avoided_phrases", "avoided_phrases"),
    "apply_vocabulary": ("vocabulary_map", "vocabulary_map"),
    "apply_signoff": ("signoff_template", "signoff_template"),
    "apply_formality": ("formality_level", "formality_level"),
    "apply_greeting": ("greeting_style", "greeting_style"),
    "apply_terminology": ("terminology_level", "terminology_level"),
}


def build_conditioning_config(
    profile: Optional[SubspecialtyStyleProfileData],
    source: StyleSource,
    overrides: Optional[ConditioningOverrides] = None,
) -> StyleConditioningConfig:
    """
    Decide which preferences of a profile are applied.

    An override can switch a preference off but never forces one on: a flag
    is set only when the override allows it, learning strength is positive,
    the profile has data for it and its confidence is high enough.
    """
    if profile is None:
        return StyleConditioningConfig(source=StyleSource.DEFAULT)

    allowed = overrides.model_dump(exclude_none=True) if overrides else {}
    strength = profile.learning_strength
    flags = {}
    for flag, (attribute, confidence_key) in CONDITIONED_FIELDS.items():
        flags[flag] = (
            allowed.get(flag, True)
            and strength > 0
            and bool(getattr(profile, attribute))
            and profile.confidence.get(confidence_key, 0.0) >= MIN_CONFIDENCE_THRESHOLD
        )

    return StyleConditioningConfig(source=source, profile=profile, effective_learning_strength=strength, **flags)


def format_section_name(section: str) -> str:
    """``past_medical_history`` or ``pastMedicalHistory`` -> ``Past Medical History``."""
    spaced = re.sub(r"([a-z])([A-Z])", r"\1 \2", section.replace("_", " "))
    return re.sub(r"\b\w", lambda m: m.group(0).upper(), spaced)


def format_subspecialty_name(subspecialty: Subspecialty) -> str:
    name = Subspecialty(subspecialty).value.replace("_", " ").lower()
    return re.sub(r"\b\w", lambda m: m.group(0).upper(), name)


def compute_overall_confidence(profile: SubspecialtyStyleProfileData) -> float:
    """Mean of the numeric per-field confidences (0 when there are none)."""
    values = [v for v in profile.confidence.values() if isinstance(v, (int, float))]
    if not values:
        return 0.0
    return sum(values) / len(values)


def build_section_order_instruction(section_order: List[str]) -> str:
    if not section_order:
        return ""
    return f"Arrange the letter sections in this order: {' → '.join(format_section_name(s) for s in section_order)}"


def build_verbosity_instruction(section_verbosity: Dict[str, str]) -> str:
    if not section_verbosity:
        return ""
    lines = []
    for section, level in section_verbosity.items():
        name = format_section_name(section)
        if level == "brief":
            lines.append(f"- {name}: Keep concise (2-3 sentences)")
        elif level == "detailed":
            lines.append(f"- {name}: Include comprehensive details")
        else:
            lines.append(f"- {name}: Standard detail level")
    return "Detail level by section:\n" + "\n".join(lines)


def build_inclusion_instructions(section_inclusion: Dict[str, float]) -> Tuple[Optional[str], Optional[str]]:
    """Returns (include instruction, exclude instruction); either may be None."""
    include = []
    exclude = []
    for section, probability in section_inclusion.items():
        if probability is None:
            continue
        if probability >= INCLUDE_PROBABILITY:
            include.append(format_section_name(section))
        elif probability <= EXCLUDE_PROBABILITY:
            exclude.append(format_section_name(section))
    return (
        f"Always include these sections: {', '.join(include)}" if include else None,
        f"Omit these sections unless specifically relevant: {', '.join(exclude)}" if exclude else None,
    )


def _phrase_lines(phrases_by_section: Dict[str, List[str]], limit: int, verb: str) -> List[str]:
    lines = []
    for section, phrases in phrases_by_section.items():
        if phrases:
            quoted = ", ".join(f'"{p}"' for p in phrases[:limit])
            lines.append(f"- In {format_section_name(section)}: {verb} {quoted}")
    return lines


def build_phrasing_instruction(phrasing_preferences: Dict[str, List[str]]) -> str:
    lines = _phrase_lines(phrasing_preferences, MAX_PHRASES_PER_SECTION, "prefer phrases like")
    return "Preferred phrases:\n" + "\n".join(lines) if lines else ""


def build_avoided_phrases_instruction(avoided_phrases: Dict[str, List[str]]) -> str:
    lines = _phrase_lines(avoided_phrases, MAX_AVOIDED_PHRASES_PER_SECTION, "avoid")
    return "Phrases to avoid:\n" + "\n".join(lines) if lines else ""


def build_vocabulary_instruction(vocabulary_map: Dict[str, str]) -> str:
    if not vocabulary_map:
        return ""
    entries = list(vocabulary_map.items())[:MAX_VOCABULARY_SUBSTITUTIONS]
    return "Vocabulary preferences: use " + ", ".join(f'"{to}" instead of "{frm}"' for frm, to in entries)


def build_greeting_instruction(greeting_style: str) -> str:
    if greeting_style == "formal":
        return 'Use a formal greeting (e.g., "Dear Dr. Smith," or "Dear Colleague,")'
    if greeting_style == "casual":
        return 'Use a casual greeting (e.g., "Hi," or first name)'
    if greeting_style == "mixed":
        return "Match greeting formality to the recipient"
    return ""


def build_signoff_instruction(signoff_template: str, closing_style: Optional[str] = None) -> str:
    style_note = f" ({closing_style} style)" if closing_style else ""
    return f'Use this closing{style_note}: "{signoff_template}"'


def build_formality_instruction(formality_level: str) -> str:
    return f"Maintain a {formality_level.replace('-', ' ', 1)} tone throughout the letter"


def build_terminology_instruction(terminology_level: str) -> str:
    if terminology_level == "specialist":
        return "Use specialist medical terminology appropriate for healthcare professionals"
    if terminology_level == "lay":
        return "Use lay terms accessible to patients and non-specialists"
    if terminology_level == "mixed":
        return "Balance specialist and lay terminology based on the letter recipient"
    return ""


def build_general_guidance(profile: SubspecialtyStyleProfileData, config: StyleConditioningConfig) -> str:
    parts = []

    confidence = compute_overall_confidence(profile)
    if confidence >= ESTABLISHED_STYLE_CONFIDENCE:
        parts.append(
            f"This physician has a well-established writing style ({profile.total_edits_analyzed} edits analyzed)."
        )
    elif confidence >= MIN_CONFIDENCE_THRESHOLD:
        parts.append(f"Writing style preferences are emerging ({profile.total_edits_analyzed} edits analyzed).")

    strength = config.effective_learning_strength
    if 0 < strength < 1.0:
        parts.append(f"Apply these preferences at {round(strength * 100)}% strength (clinician preference).")

    if (
        profile.paragraph_structure
        and profile.confidence.get("paragraph_structure", 0.0) >= MIN_CONFIDENCE_THRESHOLD
    ):
        if profile.paragraph_structure == "short":
            parts.append("Keep paragraphs concise (2-3 sentences each).")
        elif profile.paragraph_structure == "long":
            parts.append("Use longer, more detailed paragraphs.")

    return " ".join(parts)


def build_style_hints(
    profile: SubspecialtyStyleProfileData, config: StyleConditioningConfig
) -> SubspecialtyStyleHints:
    """Render the enabled preferences of ``profile`` as instruction fragments."""
    hints = SubspecialtyStyleHints(
        source_subspecialty=profile.subspecialty,
        profile_confidence=compute_overall_confidence(profile),
    )

    if config.apply_section_order:
        hints.section_order = build_section_order_instruction(profile.section_order)
    if config.apply_section_verbosity:
        hints.section_verbosity = build_verbosity_instruction(profile.section_verbosity)
    if config.apply_section_inclusion:
        hints.include_sections, hints.exclude_sections = build_inclusion_instructions(profile.section_inclusion)
    if config.apply_phrasing_preferences:
        hints.preferred_phrases = build_phrasing_instruction(profile.phrasing_preferences)
    if config.apply_avoided_phrases:
        hints.avoided_phrases = build_avoided_phrases_instruction(profile.avoided_phrases)
    if config.apply_vocabulary:
        hints.vocabulary_guidance = build_vocabulary_instruction(profile.vocabulary_map)
    if config.apply_greeting and profile.greeting_style:
        hints.greeting = build_greeting_instruction(profile.greeting_style)
    if config.apply_signoff and profile.signoff_template:
        hints.closing = build_signoff_instruction(profile.signoff_template, profile.closing_style)
    if config.apply_formality and profile.formality_level:
        hints.formality = build_formality_instruction(profile.formality_level)
    if config.apply_terminology and profile.terminology_level:
        hints.terminology = build_terminology_instruction(profile.terminology_level)

    hints.general_guidance = build_general_guidance(profile, config)
    return hints


def build_style_hints_from_profile(
    profile: SubspecialtyStyleProfileData, overrides: Optional[ConditioningOverrides] = None
) -> SubspecialtyStyleHints:
    """Hints for an already loaded profile, treated as a subspecialty profile."""
    return build_style_hints(profile, build_conditioning_config(profile, StyleSource.SUBSPECIALTY, overrides))


def format_style_guidance(
    hints: SubspecialtyStyleHints, profile: SubspecialtyStyleProfileData, letter_type: Optional[str] = None
) -> str:
    """
    Format hints as the prompt block appended to the generation prompt.

    The block starts with ``# PHYSICIAN STYLE PREFERENCES (<Subspecialty>)``,
    groups the fragments under ``##`` headings and always ends with the
    clinical-safety note.
    """
    sections = [f"{STYLE_HEADER} ({format_subspecialty_name(profile.subspecialty)})"]

    if letter_type:
        sections.append(f"Letter type: {letter_type}")
    if hints.section_order:
        sections.append(f"## Section Order\n{hints.section_order}")
    if hints.section_verbosity:
        sections.append(f"## {hints.section_verbosity}")
    if hints.include_sections or hints.exclude_sections:
        inclusion = [text for text in (hints.include_sections, hints.exclude_sections) if text]
        sections.append("## Section Inclusion\n" + "\n".join(inclusion))
    if hints.preferred_phrases:
        sections.append(f"## {hints.preferred_phrases}")
    if hints.avoided_phrases:
        sections.append(f"## {hints.avoided_phrases}")
    if hints.vocabulary_guidance:
        sections.append(f"## Vocabulary\n{hints.vocabulary_guidance}")

    tone = [f"• {text}" for text in (hints.greeting, hints.closing, hints.formality, hints.terminology) if text]
    if tone:
        sections.append("## Tone & Style\n" + "\n".join(tone))

    if hints.general_guidance:
        sections.append(f"\n{hints.general_guidance}")

    sections.append(SAFETY_NOTE)
    return "\n\n".join(sections)


def append_style_guidance(base_prompt: str, style_guidance: str) -> str:
    """Append the style block, replacing one that is already in the prompt."""
    start = base_prompt.find(STYLE_HEADER)
    if start == -1:
        return f"{base_prompt}\n\n{style_guidance}"

    after = base_prompt[start:]
    next_heading = after.find("\n#", 1)
    if next_heading > 0:
        return base_prompt[:start] + style_guidance + "\n\n" + after[next_heading:]
    return base_prompt[:start] + style_guidance


def has_active_hints(hints: SubspecialtyStyleHints) -> bool:
    return any(
        (
            hints.section_order,
            hints.section_verbosity,
            hints.include_sections,
            hints.exclude_sections,
            hints.preferred_phrases,
            hints.avoided_phrases,
            hints.vocabulary_guidance,
            hints.greeting,
            hints.closing,
            hints.formality,
            hints.terminology,
        )
    )


def convert_to_legacy_hints(hints: SubspecialtyStyleHints) -> LegacyStyleHints:
    """Map onto the flatter hint shape; verbosity, inclusion, phrases and terminology have no slot."""
    return LegacyStyleHints(
        greeting=hints.greeting or None,
        closing=hints.closing or None,
        section_order=hints.section_order or None,
        formality=hints.formality or None,
        vocabulary=hints.vocabulary_guidance or None,
        general_guidance=hints.general_guidance or None,
    )


async def build_style_conditioned_prompt(
    session: AsyncSession,
    base_prompt: str,
    user_id: str,
    subspecialty: Optional[Subspecialty] = None,
    letter_type: Optional[str] = None,
    overrides: Optional[ConditioningOverrides] = None,
) -> Tuple[str, SubspecialtyStyleHints, StyleConditioningConfig]:
    """
    Condition a letter prompt on the clinician's effective style profile.

    Args:
        session: Database session
        base_prompt: Prompt built for the letter type
        user_id: Clinician generating the letter
        subspecialty: Subspecialty to resolve the profile for
        letter_type: Included in the style block when given
        overrides: Switches to turn individual preferences off

    Returns:
        Tuple of (prompt, hints, config). The prompt is ``base_prompt``
        unchanged and the hints are empty when no profile applies or
        learning strength is zero.
    """
    profile, source = await get_effective_profile(session, user_id, subspecialty)
    config = build_conditioning_config(profile, source, overrides)

    if profile is None or config.effective_learning_strength == 0:
        logger.debug(f"No style conditioning for user {user_id}", extra={"source": source.value})
        return base_prompt, SubspecialtyStyleHints(), config

    hints = build_style_hints(profile, config)
    prompt = append_style_guidance(base_prompt, format_style_guidance(hints, profile, letter_type))
    logger.info(
        f"Prompt conditioned with {source.value} style profile",
        extra={"user_id": user_id, "subspecialty": profile.subspecialty, "active_hints": has_active_hints(hints)},
    )
    return prompt, hints, config
