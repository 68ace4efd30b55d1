"""Model selection for letter generation.

Complex letters (new patients, procedures, many or structured sources) go to
the quality model; routine letters go to the standard model. The clinician
may force either, or ask for ``balanced`` which raises the bar for the
quality model.
"""

from __future__ import annotations

import json
import math
from typing import Optional, Tuple

from dictatemed.core.logging_config import get_logger
from dictatemed.core.models.domain.enums import DocumentType, LetterType, ModelPreference
from dictatemed.core.models.domain.letters import LetterSources, ModelSelection
from dictatemed.server.core.config import settings

logger = get_logger(__name__)

LETTER_COMPLEXITY = {
    LetterType.NEW_PATIENT: 9,
    LetterType.ANGIOGRAM_PROCEDURE: 8,
    LetterType.ECHO_REPORT: 5,
    LetterType.FOLLOW_UP: 3,
}
DEFAULT_COMPLEXITY = 5
MULTIPLE_SOURCES_BONUS = 2
NO_SOURCES_REDUCTION = 2
COMPLEX_DOCUMENT_BONUS = 1
QUALITY_THRESHOLD = 7
BALANCED_MODE_THRESHOLD = 8

LETTER_OUTPUT_TOKENS = {
    LetterType.NEW_PATIENT: 3000,
    LetterType.ANGIOGRAM_PROCEDURE: 2500,
    LetterType.ECHO_REPORT: 1500,
    LetterType.FOLLOW_UP: 1000,
}
DEFAULT_OUTPUT_TOKENS = 2000
TOKEN_BUFFER = 1000

LETTER_TEMPERATURE = 0.3
CHARS_PER_TOKEN = 3.5
PROMPT_TEMPLATE_SIZE = 3000

COMPLEX_DOCUMENT_TYPES = (DocumentType.ANGIOGRAM_REPORT.value, DocumentType.ECHO_REPORT.value)


def compute_complexity(letter_type: LetterType, sources: LetterSources) -> int:
    score = LETTER_COMPLEXITY.get(letter_type, DEFAULT_COMPLEXITY)

    source_count = sources.count
    if source_count >= 3:
        score += MULTIPLE_SOURCES_BONUS
    elif source_count == 0:
        score -= NO_SOURCES_REDUCTION

    if any(doc.type in COMPLEX_DOCUMENT_TYPES for doc in sources.documents):
        score += COMPLEX_DOCUMENT_BONUS
    return score


def estimate_source_tokens(sources: LetterSources) -> int:
    """Rough input token estimate for the rendered prompt."""
    total_chars = 0

    if sources.transcript:
        total_chars += len(sources.transcript.text)
        for segment in sources.transcript.speakers or []:
            total_chars += len(segment.text) + 50

    for doc in sources.documents:
        total_chars += len(json.dumps(doc.extracted_data))
        if doc.raw_text:
            total_chars += min(len(doc.raw_text), 500)
        total_chars += 200

    if sources.user_input:
        total_chars += len(sources.user_input.text)

    total_chars += PROMPT_TEMPLATE_SIZE
    return math.ceil(total_chars / CHARS_PER_TOKEN)


def select_model(
    letter_type: LetterType, sources: LetterSources, preference: Optional[ModelPreference] = None
) -> ModelSelection:
    """
    Choose the generation model and its parameters.

    Args:
        letter_type: Letter being generated
        sources: Sources that will be rendered into the prompt
        preference: Clinician preference, if any

    Returns:
        ModelSelection with the model id, a human readable reason and limits
    """
    llm_config = settings.llm
    score = compute_complexity(letter_type, sources)
    source_count = sources.count

    if preference == ModelPreference.QUALITY:
        model_id = llm_config.quality_model
        reason = "User preference: quality (Opus)"
    elif preference == ModelPreference.COST:
        model_id = llm_config.standard_model
        reason = "User preference: cost (Sonnet)"
    else:
        label = "High" if score >= QUALITY_THRESHOLD else "Moderate"
        model_id = llm_config.quality_model if score >= QUALITY_THRESHOLD else llm_config.standard_model
        reason = f"{label} complexity (score: {score}): {letter_type.value} with {source_count} source(s)"

        if preference == ModelPreference.BALANCED:
            if score >= BALANCED_MODE_THRESHOLD:
                model_id = llm_config.quality_model
                reason += " (balanced mode, high complexity detected)"
            else:
                model_id = llm_config.standard_model
                reason += " (balanced mode)"

    estimated_output = LETTER_OUTPUT_TOKENS.get(letter_type, DEFAULT_OUTPUT_TOKENS)
    selection = ModelSelection(
        model_id=model_id,
        reason=reason,
        complexity_score=score,
        estimated_input_tokens=estimate_source_tokens(sources),
        estimated_output_tokens=estimated_output,
        max_tokens=estimated_output + TOKEN_BUFFER,
        temperature=LETTER_TEMPERATURE,
    )
    logger.info(
        f"Model selected for {letter_type.value}: {model_id}",
        extra={"complexity_score": score, "source_count": source_count},
    )
    return selection


def get_recommended_model(letter_type: LetterType) -> Tuple[str, str]:
    """Default model for a letter type, ignoring sources."""
    if LETTER_COMPLEXITY.get(letter_type, DEFAULT_COMPLEXITY) >= QUALITY_THRESHOLD:
        return settings.llm.quality_model, f"{letter_type.value} letters are complex and benefit from Opus quality"
    return settings.llm.standard_model, f"{letter_type.value} letters are routine and work well with Sonnet"
