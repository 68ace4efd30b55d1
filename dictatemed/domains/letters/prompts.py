"""Letter generation prompts.

Every letter prompt is the shared base prompt (safety rules, anchoring
format, terminology and formatting standards) followed by a letter-type task
block and the formatted sources. Patient identifiers only ever appear as
obfuscation tokens.
"""

from __future__ import annotations

import json
from typing import Callable, Dict

from pydantic import BaseModel

from dictatemed.core.models.domain.enums import LetterType
from dictatemed.core.models.domain.letters import LetterSources

SYSTEM_PROMPT = "You are an expert cardiology medical correspondence assistant. Follow every safety rule in the prompt."

SAFETY_CONSTRAINTS = """
## CRITICAL SAFETY RULES - YOU MUST FOLLOW THESE EXACTLY

1. **Source Grounding**: ONLY include clinical information that is explicitly stated in the provided sources (transcript, documents, or user input). Do NOT infer, assume, or add clinical facts that are not in the sources.

2. **No Fabrication**: If information is missing, write "[NOT STATED IN SOURCES]" instead of inventing details.

3. **Exact Values**: Copy every clinical measurement EXACTLY as written in the sources. Do not round, estimate, or paraphrase numbers.

4. **Source Attribution**: Follow every clinical fact with a source reference in the form {{SOURCE:id:excerpt}} where:
   - id = the source identifier (recording-123, document-456, or user-input)
   - excerpt = the exact source text supporting the statement

5. **Uncertainty**: If a source is unclear or conflicting, say so explicitly instead of picking one interpretation.

6. **No Medical Advice**: This is a documentation tool. Do not add clinical recommendations beyond those stated in the sources.

7. **Conservative Language**: Use factual, conservative language. Avoid superlatives and emotive wording unless quoting a source.

8. **Completeness Check**: End your response with a list of standard sections that could not be completed because the sources lacked the information.
"""

SOURCE_ANCHORING_INSTRUCTIONS = """
## Source Anchoring Format

Immediately after each clinical statement add a source reference in exactly this format:

{{SOURCE:sourceId:excerpt}}

Examples:
- "The patient presented with chest pain {{SOURCE:recording-123:patient reports 'crushing chest pain radiating to left arm'}}"
- "LVEF was 45% {{SOURCE:document-789:echo report shows 'LVEF 45% by Simpson's biplane method'}}"
- "Patient denies smoking {{SOURCE:recording-123:patient states 'I've never smoked'}}"

IMPORTANT:
- The sourceId must exactly match one of the source IDs listed below
- The excerpt must be a verbatim quote from the source (2-15 words)
- Every clinical fact MUST have a source anchor
- Statements without sources will be flagged as potential hallucinations
"""

CARDIOLOGY_TERMINOLOGY = """
## Cardiology Terminology Standards

Use these standard abbreviations and terms:
- **Vessels**: LMCA, LAD, LCx (or Cx), RCA, D1, D2, OM1, OM2, PDA, PLV
- **Measurements**: LVEF, RVEF, GLS, TAPSE, E/e', LVEDP, LVEDV, LVESV
- **Valves**: AS (aortic stenosis), AR (aortic regurgitation), MS (mitral stenosis), MR (mitral regurgitation), TR (tricuspid regurgitation)
- **Procedures**: PCI, CABG, TAVI/TAVR, TEER/MitraClip, ICD, CRT-D, CRT-P, PPM
- **Medications**: generic names with doses (e.g. "aspirin 100mg daily", "atorvastatin 40mg nocte")
- **Conditions**: STEMI, NSTEMI, HFrEF, HFpEF, HFmrEF, AF, AFL, VT, VF
- **Severity**: mild, moderate, severe (lowercase unless starting a sentence)

Vessel stenosis: "LAD 80% stenosis" (percentage before "stenosis")
LVEF: "LVEF 45%" (not "EF" alone)
Gradients: "mean gradient 25 mmHg" (always with units)
"""

LETTER_FORMATTING_STANDARDS = """
## Letter Format Standards (Australian Medical Correspondence)

### Structure:
1. **Salutation**: "Dear Dr [Surname]," (or "Dear [Title] [Surname]," for non-doctors)
2. **Opening**: "Re: [Patient Name], DOB: [DD/MM/YYYY], Medicare: [number]"
3. **Body**: Clear sections as described in the task below
4. **Closing**: "Yours sincerely," or "Kind regards,"
5. **Signature Block**: Name, qualifications, position

### Style:
- Australian English spelling ("colour", "centre", "litre")
- Dates as DD/MM/YYYY
- Metric units (mg, mL, cm, kg, mmHg)
- Professional, concise and respectful tone
- Spell out abbreviations on first use when writing to GPs

### Medications:
Format as "Drug name dose frequency route", e.g. "Aspirin 100mg once daily orally"
"""

DEFAULT_STYLE_GUIDANCE = "## Style Guidance\n\nUse standard professional medical correspondence style as outlined above."

CLOSING_REMINDER = (
    "Remember: Your primary responsibility is accuracy and source grounding. Every clinical statement must be "
    "traceable to a source. If you're unsure about any information, err on the side of omission rather than invention."
)

RAW_TEXT_PREVIEW_CHARS = 500


class PatientTokens(BaseModel):
    """Obfuscated patient identifiers used in the Re: line."""

    name: str
    dob: str
    medicare: str
    gender: str


def build_base_prompt() -> str:
    return "\n\n".join(
        [
            "You are an expert cardiology medical correspondence assistant helping Australian cardiologists "
            "draft clinical letters.",
            SAFETY_CONSTRAINTS,
            SOURCE_ANCHORING_INSTRUCTIONS,
            CARDIOLOGY_TERMINOLOGY,
            LETTER_FORMATTING_STANDARDS,
            DEFAULT_STYLE_GUIDANCE,
            CLOSING_REMINDER,
        ]
    )


def _format_timestamp(seconds: int) -> str:
    return f"{seconds // 60}:{seconds % 60:02d}"


def format_sources(sources: LetterSources) -> str:
    """Render the sources block the model cites from."""
    parts = []

    if sources.transcript:
        transcript = sources.transcript
        block = f"**Transcript** (ID: {transcript.id}, Mode: {transcript.mode.value})\n```\n"
        if transcript.speakers:
            for segment in transcript.speakers:
                block += f"[{segment.speaker} at {_format_timestamp(segment.timestamp)}] {segment.text}\n"
        else:
            block += transcript.text + "\n"
        block += "```\n\n"
        parts.append(block)

    for doc in sources.documents:
        block = f"**Document** (ID: {doc.id}, Type: {doc.type}, Name: {doc.name})\n"
        block += "```json\n" + json.dumps(doc.extracted_data, indent=2) + "\n```\n"
        if doc.raw_text:
            ellipsis = "..." if len(doc.raw_text) > RAW_TEXT_PREVIEW_CHARS else ""
            block += f"Raw text: {doc.raw_text[:RAW_TEXT_PREVIEW_CHARS]}{ellipsis}\n"
        parts.append(block + "\n")

    if sources.user_input:
        parts.append(f"**User Input** (ID: {sources.user_input.id})\n```\n{sources.user_input.text}\n```\n\n")

    return "".join(parts) or "(No sources provided - this should not happen)\n"


def _re_line(patient: PatientTokens) -> str:
    return f'"Re: {patient.name}, DOB: {patient.dob}, Medicare: {patient.medicare}"'


def _compose(task: str, sources: LetterSources, instructions: str, closing: str) -> str:
    return (
        f"{build_base_prompt()}\n\n{task}\n\n### Sources Available:\n\n{format_sources(sources)}\n"
        f"### Instructions:\n\n{instructions}\n\n{closing}\n"
    )


def build_new_patient_prompt(sources: LetterSources, patient: PatientTokens) -> str:
    task = f"""## Task: Generate New Patient Consultation Letter

You are drafting a letter to a referring GP about a NEW PATIENT cardiology consultation.

### Required Sections:

1. **Salutation and Re: Line**
   - "Dear Dr [Referring Doctor]," (if available in sources)
   - {_re_line(patient)}
2. **Opening/Introduction**: thank the GP for the referral and state the reason for referral
3. **History of Presenting Complaint**: onset, duration, character, aggravating/relieving factors, associated symptoms, functional impact
4. **Past Medical History**: cardiac history, other significant conditions, previous procedures
5. **Medications**: current cardiac medications with doses and frequencies, other relevant medications, allergies
6. **Family History**: relevant family cardiac history (if discussed)
7. **Social History**: smoking, alcohol, occupation, exercise tolerance
8. **Examination Findings**: vital signs (BP, HR if recorded) and cardiovascular examination
9. **Investigations**: echo, angiogram, ECG and blood results from the sources
10. **Assessment**: clinical impression and risk stratification (if applicable)
11. **Management Plan**: medication changes, planned procedures, lifestyle advice, follow-up
12. **Closing**: "Please don't hesitate to contact me if you have any questions." then "Yours sincerely," or "Kind regards,\""""
    instructions = """- Use ALL information from the sources to create a comprehensive letter
- For ambient transcripts, take clinical information from the physician's statements to the patient
- Include exact measurements and values from documents
- If key information is missing, omit that section or write "[Not discussed]"
- Focus on information relevant to the referring GP's ongoing care"""
    closing = "Generate the complete letter now, ensuring every clinical fact has a {{SOURCE:id:excerpt}} anchor."
    return _compose(task, sources, instructions, closing)


def build_follow_up_prompt(sources: LetterSources, patient: PatientTokens) -> str:
    task = f"""## Task: Generate Follow-Up Consultation Letter

You are drafting a letter to a referring GP about a FOLLOW-UP cardiology consultation.

### Required Sections:

1. **Salutation and Re: Line**
   - "Dear Dr [Referring Doctor],"
   - {_re_line(patient)}
2. **Opening**: "I reviewed {patient.name} in clinic on [date]" and brief context of ongoing care
3. **Interval History**: symptom changes, medication compliance, cardiac events or admissions, functional status
4. **Current Medications**: current cardiac medications and changes since the last visit
5. **Examination**: key findings today and changes from previous examination
6. **Investigations**: new results reviewed today, compared with previous results where relevant
7. **Assessment**: status of each cardiac condition, response to treatment, new concerns
8. **Plan**: medication changes, investigations ordered, follow-up timing, referrals
9. **Closing**: "Yours sincerely," or "Kind regards,\""""
    instructions = """- Focus on what has CHANGED since the last visit
- Be concise - GPs appreciate brevity for follow-up letters
- Highlight new issues or changes in management
- If the patient is stable with no changes, state this clearly"""
    return _compose(task, sources, instructions, "Generate the complete follow-up letter now with source anchors.")


def build_angiogram_procedure_prompt(sources: LetterSources, patient: PatientTokens) -> str:
    task = f"""## Task: Generate Angiogram Procedure Letter

You are drafting a letter to a referring GP about a coronary angiogram with or without PCI.

### Required Sections:

1. **Salutation and Re: Line**
   - "Dear Dr [Referring Doctor],"
   - {_re_line(patient)}
2. **Opening**: "I performed a coronary angiogram on {patient.name} on [date]" and the indication
3. **Clinical Context**: presentation (STEMI, NSTEMI, stable angina, positive stress test) and relevant history
4. **Procedure Details**: access site (radial/femoral), sedation, complications
5. **Angiographic Findings**: dominance, then LMCA, LAD, LCx and RCA with % stenosis, significant branch disease, graft assessment
6. **Intervention (if PCI performed)**: vessels treated, lesion characteristics, stent type, size and number, dilatation, final TIMI flow, result
7. **Hemodynamics** (if measured): LVEDP, aortic pressures, cardiac output
8. **Post-Procedure Course**: recovery, access site haemostasis, complications
9. **Medications**: dual antiplatelet therapy with duration, other cardiac medications, changes
10. **Plan**: follow-up, return to activities, driving restrictions, when to stop DAPT
11. **Closing**: "Yours sincerely," or "Kind regards,\""""
    instructions = """- Be precise with vessel descriptions and stenosis percentages
- Use standard coronary anatomy nomenclature
- If PCI was performed, describe clearly what was done and why
- Include pre- and post-intervention appearance when stenting was done
- Use TIMI flow grades (0-3) if mentioned"""
    return _compose(task, sources, instructions, "Generate the complete procedure letter now with source anchors.")


def build_echo_report_prompt(sources: LetterSources, patient: PatientTokens) -> str:
    task = f"""## Task: Generate Echocardiogram Report Letter

You are drafting a letter to a referring GP summarising an echocardiogram report.

### Required Sections:

1. **Salutation and Re: Line**
   - "Dear Dr [Referring Doctor],"
   - {_re_line(patient)}
   - "Echocardiogram Report - [Date]"
2. **Opening**: indication for the echo and comparison with a previous study (if mentioned)
3. **Left Ventricular Function**: LVEF with method, LV dimensions (LVEDD, LVESD, IVS, PW), regional wall motion, GLS
4. **Right Ventricular Function**: RV function or RVEF, TAPSE, RV S' velocity, RV dimensions
5. **Valvular Assessment**: aortic, mitral, tricuspid and pulmonary valve findings with gradients, areas and severity; RVSP estimate
6. **Diastolic Function**: E/A ratio, E/e' (septal and lateral), LA pressure estimate, deceleration time
7. **Other Findings**: pericardial effusion, masses or thrombi, aortic root dimensions
8. **Summary/Impression**: key findings in 2-3 sentences and their clinical significance
9. **Recommendations**: follow-up echo timing, other investigations, clinical correlation
10. **Closing**: "Yours sincerely," or "Kind regards,\""""
    instructions = """- Extract exact measurements from the echo document
- Use standard echo terminology and abbreviations
- Report valve findings quantitatively (gradients, areas) and qualitatively (severity)
- Include units for all measurements
- If the echo is normal, state this clearly and concisely"""
    return _compose(task, sources, instructions, "Generate the complete echo report letter now with source anchors.")


LETTER_PROMPTS: Dict[LetterType, Callable[[LetterSources, PatientTokens], str]] = {
    LetterType.NEW_PATIENT: build_new_patient_prompt,
    LetterType.FOLLOW_UP: build_follow_up_prompt,
    LetterType.ANGIOGRAM_PROCEDURE: build_angiogram_procedure_prompt,
    LetterType.ECHO_REPORT: build_echo_report_prompt,
}


def build_letter_prompt(letter_type: LetterType, sources: LetterSources, patient: PatientTokens) -> str:
    return LETTER_PROMPTS[letter_type](sources, patient)
