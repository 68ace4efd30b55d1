"""
Patient identifier obfuscation.

Before any source text reaches the model, the patient's name, date of birth,
Medicare number and other identifiers are replaced with per-session tokens
such as ``PATIENT_1a2b3c4d``. The generated letter is de-obfuscated with the
same map afterwards.
"""

from __future__ import annotations

import re
import time
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from dictatemed.core.logging_config import get_logger
from dictatemed.core.models.domain.letters import PatientPHI

logger = get_logger(__name__)

MONTH_ABBREVIATIONS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


class ObfuscatedTokens(BaseModel):
    name: str
    dob: str
    medicare: str
    gender: str
    address: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None


class DeobfuscationMap(BaseModel):
    tokens: ObfuscatedTokens
    phi: PatientPHI
    extra: Dict[str, str] = Field(default_factory=dict, description="Additional token -> value pairs")


class ObfuscationResult(BaseModel):
    obfuscated_text: str
    deobfuscation_map: DeobfuscationMap
    tokens_replaced: int


def build_tokens(phi: PatientPHI, session_id: Optional[str] = None) -> ObfuscatedTokens:
    """Tokens for one generation session. The suffix keeps sessions distinct."""
    suffix = f"_{session_id[:8]}" if session_id else f"_{int(time.time() * 1000):x}"
    return ObfuscatedTokens(
        name=f"PATIENT{suffix}",
        dob=f"DOB{suffix}",
        medicare=f"MEDICARE{suffix}" if phi.medicare_number else "MEDICARE_UNKNOWN",
        gender=f"GENDER{suffix}" if phi.gender else "GENDER_UNKNOWN",
        address=f"ADDRESS{suffix}" if phi.address else None,
        phone=f"PHONE{suffix}" if phi.phone_number else None,
        email=f"EMAIL{suffix}" if phi.email else None,
    )


def _word_pattern(value: str, ignore_case: bool = True) -> re.Pattern:
    # Lookarounds instead of \b so values starting or ending with punctuation still match.
    flags = re.IGNORECASE if ignore_case else 0
    return re.compile(rf"(?<!\w){re.escape(value)}(?!\w)", flags)


def generate_dob_variants(dob: str) -> List[str]:
    """Common written forms of a date of birth (ISO or DD/MM/YYYY input)."""
    variants = [dob]

    iso = re.match(r"^(\d{4})-(\d{2})-(\d{2})$", dob)
    if iso:
        year, month, day = iso.groups()
        variants.append(f"{day}/{month}/{year}")
        variants.append(f"{month}/{day}/{year}")
        variants.append(f"{day}-{month}-{year}")
        month_index = int(month) - 1
        if 0 <= month_index < 12:
            variants.append(f"{int(day)} {MONTH_ABBREVIATIONS[month_index]} {year}")

    dmy = re.match(r"^(\d{1,2})/(\d{1,2})/(\d{4})$", dob)
    if dmy:
        day, month, year = dmy.groups()
        variants.append(f"{year}-{month.zfill(2)}-{day.zfill(2)}")
        variants.append(f"{day}-{month}-{year}")

    return list(dict.fromkeys(variants))


def generate_phone_variants(phone: str) -> List[str]:
    variants = [phone]
    digits = re.sub(r"\D", "", phone)
    if digits:
        variants.append(digits)
    if len(digits) == 10:
        variants.append(f"{digits[:4]} {digits[4:7]} {digits[7:]}")
        variants.append(f"({digits[:2]}) {digits[2:6]} {digits[6:]}")
    return list(dict.fromkeys(variants))


def _medicare_variants(medicare: str) -> List[str]:
    variants = [medicare, re.sub(r"\s", "", medicare), re.sub(r"(\d{4})\s?(\d{5})\s?(\d)", r"\1 \2 \3", medicare)]
    return list(dict.fromkeys(variants))


def _replace(text: str, pattern: re.Pattern, token: str) -> Tuple[str, int]:
    return pattern.subn(token, text)


def obfuscate_phi(text: str, phi: PatientPHI, session_id: Optional[str] = None) -> ObfuscationResult:
    """
    Replace patient identifiers in ``text`` with session tokens.

    Args:
        text: Source text
        phi: The patient's identifiers
        session_id: Generation session; its first 8 characters suffix the tokens

    Returns:
        ObfuscationResult with the new text, the map to reverse it and the
        number of replacements made
    """
    tokens = build_tokens(phi, session_id)
    replacements: List[Tuple[re.Pattern, str]] = []

    if phi.name:
        replacements.append((_word_pattern(phi.name), tokens.name))
    for variant in generate_dob_variants(phi.date_of_birth):
        replacements.append((_word_pattern(variant), tokens.dob))
    if phi.medicare_number:
        for variant in _medicare_variants(phi.medicare_number):
            replacements.append((_word_pattern(variant, ignore_case=False), tokens.medicare))
    if phi.gender:
        replacements.append((_word_pattern(phi.gender), tokens.gender))
    if phi.address and tokens.address:
        replacements.append((_word_pattern(phi.address), tokens.address))
    if phi.phone_number and tokens.phone:
        for variant in generate_phone_variants(phi.phone_number):
            replacements.append((_word_pattern(variant, ignore_case=False), tokens.phone))
    if phi.email and tokens.email:
        replacements.append((_word_pattern(phi.email), tokens.email))

    obfuscated = text
    count = 0
    for pattern, token in replacements:
        obfuscated, replaced = _replace(obfuscated, pattern, token)
        count += replaced

    logger.debug(f"PHI obfuscation replaced {count} identifier(s)", extra={"session_id": session_id})
    return ObfuscationResult(
        obfuscated_text=obfuscated,
        deobfuscation_map=DeobfuscationMap(tokens=tokens, phi=phi),
        tokens_replaced=count,
    )


def deobfuscate_phi(text: str, mapping: DeobfuscationMap) -> str:
    """Put the real identifiers back in place of their tokens."""
    tokens, phi = mapping.tokens, mapping.phi
    pairs = [(tokens.name, phi.name), (tokens.dob, phi.date_of_birth)]
    if phi.medicare_number:
        pairs.append((tokens.medicare, phi.medicare_number))
    if phi.gender:
        pairs.append((tokens.gender, phi.gender))
    if phi.address and tokens.address:
        pairs.append((tokens.address, phi.address))
    if phi.phone_number and tokens.phone:
        pairs.append((tokens.phone, phi.phone_number))
    if phi.email and tokens.email:
        pairs.append((tokens.email, phi.email))
    pairs.extend(mapping.extra.items())

    for token, value in pairs:
        text = text.replace(token, value)
    return text


def validate_obfuscation(obfuscated_text: str, phi: PatientPHI) -> Tuple[bool, List[str]]:
    """Check that no identifier survived obfuscation.

    Returns:
        Tuple of (is_safe, names of leaked fields)
    """
    leaked: List[str] = []

    if phi.name and _word_pattern(phi.name).search(obfuscated_text):
        leaked.append("name")

    if any(_word_pattern(v).search(obfuscated_text) for v in generate_dob_variants(phi.date_of_birth)):
        leaked.append("date_of_birth")

    if phi.medicare_number and re.sub(r"\s", "", phi.medicare_number) in obfuscated_text:
        leaked.append("medicare_number")

    if phi.email and phi.email in obfuscated_text:
        leaked.append("email")

    return not leaked, leaked
