"""
Section-level diff analysis between a generated draft and the approved letter.

Both versions are split into sections by header patterns, sections are
aligned by type, and each pair is classified as added, removed, modified or
unchanged with character and word deltas. The learning pipeline stores one
style edit per changed section.
"""

from __future__ import annotations

import re
from typing import List, Optional, Sequence, Tuple

from pydantic import BaseModel, Field

from dictatemed.core.models.domain.enums import LetterSectionType, Subspecialty

SIMILAR_SENTENCE_THRESHOLD = 0.5
MIN_PHRASE_LENGTH = 5
MIN_SUBSTITUTION_WORD_LENGTH = 3


def _header(pattern: str) -> re.Pattern:
    return re.compile(rf"^(?:##?\s*)?(?:{pattern})[:.]?$", re.IGNORECASE)


# Ordered by specificity; the first match wins.
SECTION_PATTERNS: List[Tuple[LetterSectionType, List[re.Pattern]]] = [
    (
        LetterSectionType.GREETING,
        [
            re.compile(r"^(dear\s+(?:dr\.?|doctor|professor|prof\.?|mr\.?|mrs\.?|ms\.?|miss)\s+[\w\s-]+,?)", re.I),
            re.compile(r"^(to\s+whom\s+it\s+may\s+concern,?)", re.I),
            re.compile(r"^(dear\s+colleagues?,?)", re.I),
        ],
    ),
    (
        LetterSectionType.SIGNOFF,
        [
            re.compile(r"^(yours\s+(?:sincerely|faithfully|truly),?)", re.I),
            re.compile(r"^(kind\s+regards,?)", re.I),
            re.compile(r"^(best\s+(?:wishes|regards),?)", re.I),
            re.compile(r"^(with\s+(?:kind\s+)?regards,?)", re.I),
            re.compile(r"^(sincerely,?)", re.I),
            re.compile(r"^(regards,?)", re.I),
        ],
    ),
    (
        LetterSectionType.PRESENTING_COMPLAINT,
        [_header(r"presenting\s+complaint|chief\s+complaint|reason\s+for\s+(?:referral|visit|consultation)|pc|cc")],
    ),
    (
        LetterSectionType.HISTORY,
        [_header(r"history\s+of\s+present(?:ing)?\s+illness|hpi|history|clinical\s+history|background")],
    ),
    (
        LetterSectionType.PAST_MEDICAL_HISTORY,
        [_header(r"past\s+medical\s+history|pmh|pmhx|medical\s+history|past\s+history")],
    ),
    (
        LetterSectionType.MEDICATIONS,
        [_header(r"medications?|current\s+medications?|drug\s+list|medication\s+list|meds")],
    ),
    (LetterSectionType.FAMILY_HISTORY, [_header(r"family\s+history|fhx|fh")]),
    (LetterSectionType.SOCIAL_HISTORY, [_header(r"social\s+history|shx|sh")]),
    (
        LetterSectionType.EXAMINATION,
        [
            _header(
                r"(?:physical\s+)?examination|exam|clinical\s+examination|o/e|on\s+examination"
                r"|examination\s+findings?"
            )
        ],
    ),
    (
        LetterSectionType.INVESTIGATIONS,
        [
            _header(
                r"investigations?|results?|test\s+results?|laboratory|labs?|imaging|ecg|echo(?:cardiogram)?"
                r"|angiography"
            )
        ],
    ),
    (
        LetterSectionType.IMPRESSION,
        [_header(r"impression|diagnosis|diagnoses|assessment|clinical\s+impression|summary")],
    ),
    (
        LetterSectionType.PLAN,
        [
            _header(
                r"plan|management\s+plan|treatment\s+plan|recommendations?|management|proposed\s+management"
            )
        ],
    ),
    (LetterSectionType.FOLLOW_UP, [_header(r"follow[- ]?up|fu|next\s+appointment|review|ongoing\s+care")]),
    (
        LetterSectionType.INTRODUCTION,
        [_header(r"introduction|re:|regarding|referral|thank\s+you\s+for\s+(?:referring|your\s+referral)")],
    ),
    (
        LetterSectionType.CLOSING,
        [
            _header(
                r"closing|conclusion|in\s+summary|please\s+(?:do\s+not\s+hesitate|feel\s+free)"
                r"|if\s+you\s+have\s+(?:any\s+)?(?:further\s+)?questions?"
            )
        ],
    ),
]

GENERIC_HEADER_PATTERNS = [
    re.compile(r"^##?\s+\w+"),
    re.compile(r"^[A-Z][A-Z\s]+:$"),
    re.compile(r"^[A-Z][a-z]+(?:\s+[A-Z][a-z]+)*:$"),
]

MEDICAL_PHRASE_PATTERNS = [
    re.compile(r"\b(?:LVEF|EF|BP|HR|RR)\s*(?:of\s*)?\d+%?", re.I),
    re.compile(r"\b\w+\s+\d+\s*(?:mg|mcg|g|mL|units?)", re.I),
    re.compile(r"\b(?:normal|abnormal|elevated|reduced|mild|moderate|severe)\s+\w+", re.I),
    re.compile(r"\b(?:recommend|suggest|advise|plan to|will)\s+[\w\s]+", re.I),
]

_PUNCTUATION = re.compile(r"[.,;:!?]")


class ParsedSection(BaseModel):
    type: LetterSectionType
    header: Optional[str] = None
    content: str
    start_index: int
    end_index: int


class SectionChange(BaseModel):
    type: str = Field(description="addition, deletion or modification")
    original: Optional[str] = None
    modified: Optional[str] = None
    char_delta: int
    word_delta: int
    position: int


class SectionDiff(BaseModel):
    section_type: LetterSectionType
    draft_content: Optional[str] = None
    final_content: Optional[str] = None
    status: str = Field(description="added, removed, modified or unchanged")
    changes: List[SectionChange] = Field(default_factory=list)
    total_char_delta: int = 0
    total_word_delta: int = 0


class DiffStats(BaseModel):
    total_char_added: int = 0
    total_char_removed: int = 0
    total_word_added: int = 0
    total_word_removed: int = 0
    sections_added: int = 0
    sections_removed: int = 0
    sections_modified: int = 0
    section_order_changed: bool = False


class LetterDiffAnalysis(BaseModel):
    letter_id: str
    subspecialty: Optional[Subspecialty] = None
    draft_sections: List[ParsedSection]
    final_sections: List[ParsedSection]
    section_diffs: List[SectionDiff]
    overall_stats: DiffStats


class VocabularySubstitution(BaseModel):
    original: str
    replacement: str


def detect_section_type(line: str) -> Optional[LetterSectionType]:
    trimmed = line.strip()
    if not trimmed:
        return None
    for section_type, patterns in SECTION_PATTERNS:
        if any(p.search(trimmed) for p in patterns):
            return section_type
    return None


def is_section_header(line: str) -> bool:
    trimmed = line.strip()
    if not trimmed:
        return False
    if detect_section_type(trimmed) is not None:
        return True
    return any(p.search(trimmed) for p in GENERIC_HEADER_PATTERNS)


def _infer_initial_section_type(first_line: str) -> LetterSectionType:
    trimmed = first_line.strip().lower()
    if re.match(r"^dear\s+", trimmed) or re.match(r"^to\s+whom", trimmed):
        return LetterSectionType.GREETING
    if re.match(r"^thank\s+you\s+for\s+(?:referring|seeing)", trimmed):
        return LetterSectionType.INTRODUCTION
    if trimmed.startswith("re:") or trimmed.startswith("regarding:"):
        return LetterSectionType.INTRODUCTION
    return LetterSectionType.OTHER


def _post_process_sections(sections: List[ParsedSection]) -> List[ParsedSection]:
    last = len(sections) - 1
    for index, section in enumerate(sections):
        if section.type != LetterSectionType.OTHER:
            continue
        if index == 0:
            detected = detect_section_type(section.content.split("\n")[0])
            if detected:
                section.type = detected
                continue
        if index == last:
            if any(detect_section_type(line) == LetterSectionType.SIGNOFF for line in section.content.split("\n")):
                section.type = LetterSectionType.SIGNOFF
    return sections


def parse_letter_sections(content: str) -> List[ParsedSection]:
    """
    Split a letter into typed sections.

    Recognised lines (headers, greetings and sign-offs) open a new section
    and are kept in ``header`` rather than the content. Text before the
    first recognised line is typed from its first line (greeting,
    introduction) or ``other``.

    Args:
        content: Full letter text

    Returns:
        Sections in document order with character offsets
    """
    if not content.strip():
        return []

    sections: List[ParsedSection] = []
    current: Optional[dict] = None
    char_index = 0

    def close() -> None:
        sections.append(
            ParsedSection(
                type=current["type"],
                header=current["header"],
                content="\n".join(current["lines"]).strip(),
                start_index=current["start_index"],
                end_index=char_index - 1,
            )
        )

    for i, line in enumerate(content.split("\n")):
        detected = detect_section_type(line)

        if detected is not None or (i == 0 and current is None):
            if current is not None:
                close()
            header = is_section_header(line)
            current = {
                "type": detected or _infer_initial_section_type(line),
                "header": line.strip() if header else None,
                "start_index": char_index,
                "lines": [] if header else [line],
            }
        else:
            current["lines"].append(line)

        char_index += len(line) + 1

    if current is not None:
        close()

    return _post_process_sections(sections)


def align_sections(
    draft_sections: Sequence[ParsedSection], final_sections: Sequence[ParsedSection]
) -> List[Tuple[Optional[ParsedSection], Optional[ParsedSection]]]:
    """Pair sections of the same type, then append unmatched ones, in document order."""
    aligned: List[Tuple[Optional[ParsedSection], Optional[ParsedSection]]] = []
    used_draft = set()
    used_final = set()

    for fi, final in enumerate(final_sections):
        for di, draft in enumerate(draft_sections):
            if di in used_draft:
                continue
            if draft.type == final.type:
                aligned.append((draft, final))
                used_draft.add(di)
                used_final.add(fi)
                break

    aligned.extend((draft, None) for di, draft in enumerate(draft_sections) if di not in used_draft)
    aligned.extend((None, final) for fi, final in enumerate(final_sections) if fi not in used_final)

    aligned.sort(key=lambda pair: (pair[0] or pair[1]).start_index)
    return aligned


def count_words(text: str) -> int:
    return len(text.split())


def _normalize(text: str) -> str:
    return " ".join(text.lower().split())


def _lcs_length(a: str, b: str) -> int:
    prev = [0] * (len(b) + 1)
    for ca in a:
        curr = [0] * (len(b) + 1)
        for j, cb in enumerate(b, start=1):
            curr[j] = prev[j - 1] + 1 if ca == cb else max(prev[j], curr[j - 1])
        prev = curr
    return prev[-1]


def text_similarity(a: str, b: str) -> float:
    """LCS length over the longer normalised string, in 0..1."""
    if not a and not b:
        return 1.0
    if not a or not b:
        return 0.0
    norm_a, norm_b = _normalize(a), _normalize(b)
    if norm_a == norm_b:
        return 1.0
    longest = max(len(norm_a), len(norm_b))
    return _lcs_length(norm_a, norm_b) / longest if longest else 0.0


def _tokenize_sentences(text: str) -> List[Tuple[str, int]]:
    sentences = []
    position = 0
    for part in re.split(r"(?<=[.!?])\s+", text):
        trimmed = part.strip()
        if trimmed:
            sentences.append((trimmed, position))
            position += len(part) + 1
    return sentences


def find_detailed_changes(original: str, modified: str) -> List[SectionChange]:
    """Sentence-level additions, deletions and modifications, ordered by position."""
    original_sentences = _tokenize_sentences(original)
    modified_sentences = _tokenize_sentences(modified)
    matched_original = set()
    matched_modified = set()
    changes: List[SectionChange] = []

    for oi, (orig_text, _) in enumerate(original_sentences):
        normalized = _normalize(orig_text)
        for mi, (mod_text, _) in enumerate(modified_sentences):
            if mi not in matched_modified and _normalize(mod_text) == normalized:
                matched_original.add(oi)
                matched_modified.add(mi)
                break

    for oi, (orig_text, orig_pos) in enumerate(original_sentences):
        if oi in matched_original:
            continue
        best_index, best_similarity = None, 0.0
        for mi, (mod_text, _) in enumerate(modified_sentences):
            if mi in matched_modified:
                continue
            similarity = text_similarity(orig_text, mod_text)
            if similarity > SIMILAR_SENTENCE_THRESHOLD and similarity > best_similarity:
                best_index, best_similarity = mi, similarity
        if best_index is None:
            continue
        mod_text = modified_sentences[best_index][0]
        matched_original.add(oi)
        matched_modified.add(best_index)
        changes.append(
            SectionChange(
                type="modification",
                original=orig_text,
                modified=mod_text,
                char_delta=len(mod_text) - len(orig_text),
                word_delta=count_words(mod_text) - count_words(orig_text),
                position=orig_pos,
            )
        )

    for oi, (orig_text, orig_pos) in enumerate(original_sentences):
        if oi not in matched_original:
            changes.append(
                SectionChange(
                    type="deletion",
                    original=orig_text,
                    char_delta=-len(orig_text),
                    word_delta=-count_words(orig_text),
                    position=orig_pos,
                )
            )

    for mi, (mod_text, mod_pos) in enumerate(modified_sentences):
        if mi not in matched_modified:
            changes.append(
                SectionChange(
                    type="addition",
                    modified=mod_text,
                    char_delta=len(mod_text),
                    word_delta=count_words(mod_text),
                    position=mod_pos,
                )
            )

    changes.sort(key=lambda c: c.position)
    return changes


def compute_section_diff(draft: Optional[ParsedSection], final: Optional[ParsedSection]) -> SectionDiff:
    section_type = (draft or final).type if (draft or final) else LetterSectionType.OTHER

    if final is None:
        content = draft.content if draft else ""
        return SectionDiff(
            section_type=section_type,
            draft_content=content,
            status="removed",
            changes=[
                SectionChange(
                    type="deletion",
                    original=content,
                    char_delta=-len(content),
                    word_delta=-count_words(content),
                    position=0,
                )
            ],
            total_char_delta=-len(content),
            total_word_delta=-count_words(content),
        )

    if draft is None:
        content = final.content
        return SectionDiff(
            section_type=section_type,
            final_content=content,
            status="added",
            changes=[
                SectionChange(
                    type="addition",
                    modified=content,
                    char_delta=len(content),
                    word_delta=count_words(content),
                    position=0,
                )
            ],
            total_char_delta=len(content),
            total_word_delta=count_words(content),
        )

    if _normalize(draft.content) == _normalize(final.content):
        return SectionDiff(
            section_type=section_type,
            draft_content=draft.content,
            final_content=final.content,
            status="unchanged",
        )

    changes = find_detailed_changes(draft.content, final.content)
    return SectionDiff(
        section_type=section_type,
        draft_content=draft.content,
        final_content=final.content,
        status="modified",
        changes=changes,
        total_char_delta=sum(c.char_delta for c in changes),
        total_word_delta=sum(c.word_delta for c in changes),
    )


def _section_order_changed(draft: Sequence[ParsedSection], final: Sequence[ParsedSection]) -> bool:
    draft_order = [s.type for s in draft if s.type != LetterSectionType.OTHER]
    final_order = [s.type for s in final if s.type != LetterSectionType.OTHER]
    return draft_order != final_order


def _overall_stats(
    diffs: Sequence[SectionDiff], draft: Sequence[ParsedSection], final: Sequence[ParsedSection]
) -> DiffStats:
    stats = DiffStats(section_order_changed=_section_order_changed(draft, final))
    for diff in diffs:
        if diff.status == "added":
            stats.sections_added += 1
            stats.total_char_added += diff.total_char_delta
            stats.total_word_added += diff.total_word_delta
        elif diff.status == "removed":
            stats.sections_removed += 1
            stats.total_char_removed += abs(diff.total_char_delta)
            stats.total_word_removed += abs(diff.total_word_delta)
        elif diff.status == "modified":
            stats.sections_modified += 1
            for change in diff.changes:
                if change.char_delta > 0:
                    stats.total_char_added += change.char_delta
                else:
                    stats.total_char_removed += abs(change.char_delta)
                if change.word_delta > 0:
                    stats.total_word_added += change.word_delta
                else:
                    stats.total_word_removed += abs(change.word_delta)
    return stats


def analyze_diff(
    letter_id: str, draft_content: str, final_content: str, subspecialty: Optional[Subspecialty] = None
) -> LetterDiffAnalysis:
    """
    Compare a draft letter with its approved version section by section.

    Args:
        letter_id: Letter the versions belong to
        draft_content: Generated draft
        final_content: Clinician-approved text
        subspecialty: Subspecialty the edits are attributed to

    Returns:
        LetterDiffAnalysis with parsed sections, per-section diffs and totals
    """
    draft_sections = parse_letter_sections(draft_content)
    final_sections = parse_letter_sections(final_content)
    section_diffs = [compute_section_diff(d, f) for d, f in align_sections(draft_sections, final_sections)]

    return LetterDiffAnalysis(
        letter_id=letter_id,
        subspecialty=subspecialty,
        draft_sections=draft_sections,
        final_sections=final_sections,
        section_diffs=section_diffs,
        overall_stats=_overall_stats(section_diffs, draft_sections, final_sections),
    )


def _meaningful_phrases(text: str) -> List[str]:
    phrases = []
    for sentence in re.split(r"[.!?;]", text):
        trimmed = sentence.strip()
        if not trimmed:
            continue
        if 2 <= len(trimmed.split()) <= 8:
            phrases.append(trimmed)
        for pattern in MEDICAL_PHRASE_PATTERNS:
            phrases.extend(m.group(0) for m in pattern.finditer(trimmed))
    return [p for p in phrases if len(p) >= MIN_PHRASE_LENGTH]


def _words_missing_from(reference: str, text: str) -> Optional[str]:
    reference_words = set(reference.lower().split())
    missing = [w for w in text.lower().split() if w not in reference_words]
    return " ".join(missing) if missing else None


def extract_added_phrases(diff: SectionDiff) -> List[str]:
    phrases: List[str] = []
    for change in diff.changes:
        if change.type == "addition" and change.modified:
            phrases.extend(_meaningful_phrases(change.modified))
        elif change.type == "modification" and change.original and change.modified:
            added = _words_missing_from(change.original, change.modified)
            if added:
                phrases.extend(_meaningful_phrases(added))
    return list(dict.fromkeys(phrases))


def extract_removed_phrases(diff: SectionDiff) -> List[str]:
    phrases: List[str] = []
    for change in diff.changes:
        if change.type == "deletion" and change.original:
            phrases.extend(_meaningful_phrases(change.original))
        elif change.type == "modification" and change.original and change.modified:
            removed = _words_missing_from(change.modified, change.original)
            if removed:
                phrases.extend(_meaningful_phrases(removed))
    return list(dict.fromkeys(phrases))


def _clean_word(word: str) -> str:
    return _PUNCTUATION.sub("", word.lower())


def _word_substitutions(original: str, modified: str) -> List[VocabularySubstitution]:
    orig_words = original.split()
    mod_words = modified.split()
    found: List[VocabularySubstitution] = []

    if len(orig_words) == len(mod_words):
        for orig_word, mod_word in zip(orig_words, mod_words):
            before, after = _clean_word(orig_word), _clean_word(mod_word)
            if before != after and len(before) >= MIN_SUBSTITUTION_WORD_LENGTH and len(after) >= MIN_SUBSTITUTION_WORD_LENGTH:
                found.append(VocabularySubstitution(original=before, replacement=after))
    elif abs(len(orig_words) - len(mod_words)) <= 2:
        orig_clean = [_clean_word(w) for w in orig_words]
        mod_clean = [_clean_word(w) for w in mod_words]
        removed = [w for w in orig_clean if len(w) >= MIN_SUBSTITUTION_WORD_LENGTH and w not in set(mod_clean)]
        added = [w for w in mod_clean if len(w) >= MIN_SUBSTITUTION_WORD_LENGTH and w not in set(orig_clean)]
        for before in removed:
            for after in added:
                if abs(len(before) - len(after)) <= 4:
                    found.append(VocabularySubstitution(original=before, replacement=after))
                    break

    return found


def extract_vocabulary_substitutions(diff: SectionDiff) -> List[VocabularySubstitution]:
    """Word swaps found in modified sentences, e.g. ``commenced`` -> ``started``."""
    substitutions: List[VocabularySubstitution] = []
    for change in diff.changes:
        if change.type == "modification" and change.original and change.modified:
            substitutions.extend(_word_substitutions(change.original, change.modified))
    return substitutions
