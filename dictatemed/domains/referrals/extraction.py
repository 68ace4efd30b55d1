"""
Referral text extraction and LLM response parsing.

Text comes from pypdf for PDFs and from a UTF-8 decode for plain text. The
fast pass asks the model for the patient's name, date of birth and MRN
only; the structured pass extracts patient, GP, referrer and referral
context. Both parsers tolerate code fences and commentary around the JSON.
"""

from __future__ import annotations

import io
import json
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pypdf import PdfReader
from pypdf.errors import PdfReadError

from dictatemed.core.logging_config import get_logger
from dictatemed.core.models.domain.referrals import (
    ExtractedGPInfo,
    ExtractedPatientInfo,
    ExtractedReferralContext,
    ExtractedReferrerInfo,
    FastExtractedData,
    ReferralExtractedData,
    create_field_confidence,
)

logger = get_logger(__name__)

MAX_FAST_EXTRACTION_TEXT_LENGTH = 50000
TEXT_PREVIEW_LENGTH = 500

FAST_NAME_WEIGHT = 0.4
FAST_DOB_WEIGHT = 0.35
FAST_MRN_WEIGHT = 0.25

FAST_EXTRACTION_SYSTEM_PROMPT = "Extract patient identifiers from medical documents. Return only JSON."

FAST_PATIENT_EXTRACTION_PROMPT = """Extract patient identifiers from this medical document. Return ONLY a JSON object.

Required JSON format:
{
  "name": <string or null>,
  "dob": <YYYY-MM-DD or null>,
  "mrn": <string or null>,
  "name_confidence": <number 0-1>,
  "dob_confidence": <number 0-1>,
  "mrn_confidence": <number 0-1>
}

Rules:
- Extract patient name exactly as written (include title if present)
- Parse date of birth to YYYY-MM-DD format
- MRN may be labeled as MRN, URN, UR No., patient ID, or hospital number
- Confidence: 0.9+ for clearly labeled, 0.7-0.9 for unlabeled but clear, <0.7 for uncertain
- Use null if value is not found

Return ONLY the JSON object, no other text."""

STRUCTURED_EXTRACTION_SYSTEM_PROMPT = (
    "You are a medical document parser. Extract structured data from referral letters accurately."
)

REFERRAL_EXTRACTION_PROMPT = """You are a medical document parser specializing in referral letters.
Analyze this referral letter and extract structured information.

Extract the following data if present. Use null for any values not clearly stated.
Be conservative - only extract information that is explicitly stated.

Required JSON structure:
{
  "patient": {
    "full_name": <string or null>,
    "date_of_birth": <ISO date string YYYY-MM-DD or null>,
    "sex": <"male"|"female"|"other" or null>,
    "medicare": <string or null>,
    "mrn": <string or null>,
    "urn": <string or null>,
    "address": <string or null>,
    "phone": <string or null>,
    "email": <string or null>,
    "confidence": <number 0-1 based on how clearly information was stated>
  },
  "gp": {
    "full_name": <string or null>,
    "practice_name": <string or null>,
    "address": <string or null>,
    "phone": <string or null>,
    "fax": <string or null>,
    "email": <string or null>,
    "provider_number": <string or null>,
    "confidence": <number 0-1>
  },
  "referrer": <null if same as GP, otherwise an object with full_name, specialty, organisation,
               address, phone, fax, email and confidence>,
  "referral_context": {
    "reason_for_referral": <1-3 sentence summary or null>,
    "key_problems": [<medical problems/conditions mentioned>],
    "investigations_mentioned": [<tests/procedures mentioned>],
    "medications_mentioned": [<medications mentioned>],
    "urgency": <"routine"|"urgent"|"emergency" or null>,
    "referral_date": <ISO date string or null>,
    "confidence": <number 0-1>
  },
  "overall_confidence": <number 0-1 based on document clarity and completeness>
}

Rules:
1. Extract patient name exactly as written (include titles like Mr, Mrs if present)
2. Parse dates to ISO format YYYY-MM-DD when possible
3. If GP and referring doctor are the same person, set referrer to null
4. Keep reason for referral concise but complete (1-3 sentences)
5. List key problems as separate items, not sentences
6. Confidence: 0.9-1.0 explicitly labeled, 0.7-0.9 clearly stated, 0.5-0.7 implied, below 0.5 uncertain

Return ONLY the JSON object, no additional text."""

_FENCE_START = re.compile(r"^```(?:json)?\n?")
_FENCE_END = re.compile(r"\n?```$")
_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")
_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_DAY_FIRST_DATE = re.compile(r"^(\d{1,2})[/.-](\d{1,2})[/.-](\d{4})$")
_TEXT_DATE_FORMATS = ("%d %B %Y", "%d %b %Y", "%B %d, %Y", "%b %d, %Y", "%B %d %Y")


class ExtractionParseError(ValueError):
    """The model response could not be turned into extraction data."""


class UnsupportedDocumentError(ValueError):
    """The document's MIME type has no text extractor."""


def extract_text(content: bytes, mime_type: str) -> str:
    """
    Pull plain text out of an uploaded referral.

    Raises:
        UnsupportedDocumentError: MIME type is not PDF or plain text
        ExtractionParseError: The PDF could not be read
    """
    if mime_type == "text/plain":
        return content.decode("utf-8", errors="replace").strip()
    if mime_type == "application/pdf":
        try:
            reader = PdfReader(io.BytesIO(content))
            return "\n".join(page.extract_text() or "" for page in reader.pages).strip()
        except PdfReadError as e:
            raise ExtractionParseError(f"Could not read PDF: {e}") from e
    raise UnsupportedDocumentError(f"Unsupported MIME type: {mime_type}")


def parse_json_object(content: str) -> Dict[str, Any]:
    """Parse a JSON object from a response that may carry fences or commentary."""
    cleaned = _FENCE_END.sub("", _FENCE_START.sub("", content.strip())).strip()
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        match = _JSON_OBJECT.search(cleaned)
        if not match:
            raise ExtractionParseError("No valid JSON found in response")
        try:
            data = json.loads(match.group(0))
        except json.JSONDecodeError as e:
            raise ExtractionParseError("Failed to parse extracted JSON") from e
    if not isinstance(data, dict):
        raise ExtractionParseError("Response is not a valid JSON object")
    return data


def clamp_confidence(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value != value:
        return 0.0
    return max(0.0, min(1.0, float(value)))


def parse_string(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_string_list(value: Any) -> Optional[List[str]]:
    if not isinstance(value, list):
        return None
    items = [str(v).strip() for v in value if v not in (None, "")]
    return items or None


def normalize_date(value: Any) -> Optional[str]:
    """
    Normalise a date to ``YYYY-MM-DD``.

    Accepts ISO dates, day-first dates separated by ``/``, ``-`` or ``.``
    (Australian order) and spelled-out dates such as ``5 March 1960``.
    Returns None when the value cannot be read as a date.
    """
    text = parse_string(value)
    if text is None:
        return None
    if _ISO_DATE.match(text):
        return text

    match = _DAY_FIRST_DATE.match(text)
    if match:
        day, month, year = match.groups()
        return f"{year}-{int(month):02d}-{int(day):02d}"

    for fmt in _TEXT_DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date().isoformat()
        except ValueError:
            continue
    return None


def _parse_choice(value: Any, choices: Dict[str, str]) -> Optional[str]:
    if not isinstance(value, str):
        return None
    return choices.get(value.strip().lower())


def fast_overall_confidence(
    name: Optional[str], name_conf: float, dob: Optional[str], dob_conf: float, mrn: Optional[str], mrn_conf: float
) -> float:
    """Weighted confidence over the fields that were found (name 0.4, DOB 0.35, MRN 0.25)."""
    weighted = 0.0
    total = 0.0
    for value, confidence, weight in (
        (name, name_conf, FAST_NAME_WEIGHT),
        (dob, dob_conf, FAST_DOB_WEIGHT),
        (mrn, mrn_conf, FAST_MRN_WEIGHT),
    ):
        if value:
            weighted += confidence * weight
            total += weight
    return min(1.0, weighted / total) if total else 0.0


def build_fast_extraction_prompt(document_text: str) -> str:
    return f"{FAST_PATIENT_EXTRACTION_PROMPT}\n\n---\n\nDOCUMENT:\n{document_text[:MAX_FAST_EXTRACTION_TEXT_LENGTH]}"


def parse_fast_extraction(content: str, model_used: str, processing_time_ms: int) -> FastExtractedData:
    data = parse_json_object(content)
    name = parse_string(data.get("name"))
    raw_dob = parse_string(data.get("dob"))
    mrn = parse_string(data.get("mrn"))
    name_conf = clamp_confidence(data.get("name_confidence"))
    dob_conf = clamp_confidence(data.get("dob_confidence"))
    mrn_conf = clamp_confidence(data.get("mrn_confidence"))

    return FastExtractedData(
        patient_name=create_field_confidence(name, name_conf),
        date_of_birth=create_field_confidence(normalize_date(raw_dob), dob_conf),
        mrn=create_field_confidence(mrn, mrn_conf),
        overall_confidence=fast_overall_confidence(name, name_conf, raw_dob, dob_conf, mrn, mrn_conf),
        extracted_at=datetime.now(timezone.utc),
        model_used=model_used,
        processing_time_ms=processing_time_ms,
    )


def has_fast_extraction_data(data: FastExtractedData) -> bool:
    return any(f.value is not None for f in (data.patient_name, data.date_of_birth, data.mrn))


def build_structured_extraction_prompt(document_text: str) -> str:
    return f"{REFERRAL_EXTRACTION_PROMPT}\n\n---\n\nREFERRAL LETTER TEXT:\n{document_text}"


def _section(data: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = data.get(key)
    return value if isinstance(value, dict) else {}


def parse_structured_extraction(content: str, model_used: str) -> ReferralExtractedData:
    """Parse a full referral extraction; missing sections get zero confidence."""
    data = parse_json_object(content)

    patient_raw = _section(data, "patient")
    patient = ExtractedPatientInfo(
        full_name=parse_string(patient_raw.get("full_name")),
        date_of_birth=normalize_date(patient_raw.get("date_of_birth")),
        sex=_parse_choice(patient_raw.get("sex"), {"male": "male", "m": "male", "female": "female", "f": "female", "other": "other"}),
        medicare=parse_string(patient_raw.get("medicare")),
        mrn=parse_string(patient_raw.get("mrn")),
        urn=parse_string(patient_raw.get("urn")),
        address=parse_string(patient_raw.get("address")),
        phone=parse_string(patient_raw.get("phone")),
        email=parse_string(patient_raw.get("email")),
        confidence=clamp_confidence(patient_raw.get("confidence")),
    )

    gp_raw = _section(data, "gp")
    gp = ExtractedGPInfo(
        **{k: parse_string(gp_raw.get(k)) for k in ("full_name", "practice_name", "address", "phone", "fax", "email", "provider_number")},
        confidence=clamp_confidence(gp_raw.get("confidence")),
    )

    referrer = None
    referrer_raw = _section(data, "referrer")
    if referrer_raw:
        referrer = ExtractedReferrerInfo(
            **{k: parse_string(referrer_raw.get(k)) for k in ("full_name", "specialty", "organisation", "address", "phone", "fax", "email")},
            confidence=clamp_confidence(referrer_raw.get("confidence")),
        )

    context_raw = _section(data, "referral_context")
    context = ExtractedReferralContext(
        reason_for_referral=parse_string(context_raw.get("reason_for_referral")),
        key_problems=parse_string_list(context_raw.get("key_problems")),
        investigations_mentioned=parse_string_list(context_raw.get("investigations_mentioned")),
        medications_mentioned=parse_string_list(context_raw.get("medications_mentioned")),
        urgency=_parse_choice(context_raw.get("urgency"), {"routine": "routine", "urgent": "urgent", "emergency": "emergency"}),
        referral_date=normalize_date(context_raw.get("referral_date")),
        confidence=clamp_confidence(context_raw.get("confidence")),
    )

    if isinstance(data.get("overall_confidence"), (int, float)):
        overall = clamp_confidence(data["overall_confidence"])
    else:
        # Patient details count double
        weighted = [(patient.confidence, 2), (gp.confidence, 1), (context.confidence, 1)]
        if referrer:
            weighted.append((referrer.confidence, 1))
        overall = clamp_confidence(sum(c * w for c, w in weighted) / sum(w for _, w in weighted))

    return ReferralExtractedData(
        patient=patient,
        gp=gp,
        referrer=referrer,
        referral_context=context,
        overall_confidence=overall,
        extracted_at=datetime.now(timezone.utc),
        model_used=model_used,
    )


def get_low_confidence_sections(data: ReferralExtractedData, threshold: float) -> List[str]:
    sections = [("patient", data.patient.confidence), ("gp", data.gp.confidence)]
    if data.referrer:
        sections.append(("referrer", data.referrer.confidence))
    sections.append(("referral_context", data.referral_context.confidence))
    return [name for name, confidence in sections if confidence < threshold]
