"""
Unit tests for clinical value extraction.
"""

import pytest

from dictatemed.core.models.domain.enums import ClinicalValueType
from dictatemed.core.models.domain.letters import ClinicalValue, SourceAnchor
from dictatemed.domains.letters.clinical_extraction import (
    calculate_verification_rate,
    extract_clinical_values,
    find_nearest_anchor,
    get_unverified_values,
    group_values_by_type,
)

LETTER = (
    "Echo showed LVEF of 45% and BP 130/85. "
    "Impression: moderate aortic stenosis. "
    "Continue aspirin 100mg. "
    "He underwent PCI last year."
)


def anchor(anchor_id: str, start: int, end: int) -> SourceAnchor:
    return SourceAnchor(
        id=anchor_id,
        segment_text="{{SOURCE:rec-1:x}}",
        start_index=start,
        end_index=end,
        source_type="transcript",
        source_id="rec-1",
        source_excerpt="x",
        confidence=1.0,
    )


class TestExtractClinicalValues:
    def test_values_in_type_order(self):
        values = extract_clinical_values(LETTER, [])

        assert [(v.type, v.name, v.value, v.unit) for v in values] == [
            (ClinicalValueType.MEASUREMENT, "LVEF", "45", "%"),
            (ClinicalValueType.MEASUREMENT, "Blood Pressure", "130/85", "mmHg"),
            (ClinicalValueType.DIAGNOSIS, "Diagnosis", "Impression: moderate aortic stenosis", None),
            (ClinicalValueType.DIAGNOSIS, "Diagnosis", "moderate aortic stenosis", None),
            (ClinicalValueType.MEDICATION, "aspirin", "100", "mg"),
            (ClinicalValueType.PROCEDURE, "Procedure", "underwent PCI", None),
        ]
        assert [v.id for v in values] == [f"value-{i}" for i in range(6)]
        assert all(v.source_anchor_id is None for v in values)

    def test_values_link_to_nearby_anchor(self):
        padding = " " * 300
        letter = f"LVEF of 45% noted.{padding}He underwent PCI."

        values = extract_clinical_values(letter, [anchor("anchor-0", 20, 40)])

        linked = {v.name: v.source_anchor_id for v in values}
        assert linked == {"LVEF": "anchor-0", "Procedure": None}

    @pytest.mark.parametrize("text", ["Chronic HFrEF noted.", "Patient is shaft worker."])
    def test_abbreviations_need_word_boundaries(self, text):
        assert extract_clinical_values(text, []) == []

    def test_abbreviation_diagnosis(self):
        values = extract_clinical_values("Known AF and CAD.", [])

        assert [v.value for v in values] == ["AF", "CAD"]


class TestFindNearestAnchor:
    def test_closest_edge_wins(self):
        anchors = [anchor("a0", 0, 10), anchor("a1", 250, 260)]

        assert find_nearest_anchor(300, anchors).id == "a1"

    def test_too_far(self):
        assert find_nearest_anchor(500, [anchor("a0", 0, 10)]) is None

    def test_no_anchors(self):
        assert find_nearest_anchor(0, []) is None


class TestVerificationHelpers:
    @pytest.fixture
    def values(self):
        return [
            ClinicalValue(id="v0", type=ClinicalValueType.MEASUREMENT, name="LVEF", value="45", source_anchor_id="a0"),
            ClinicalValue(
                id="v1",
                type=ClinicalValueType.MEDICATION,
                name="aspirin",
                value="100",
                source_anchor_id="a1",
                verified=True,
            ),
            ClinicalValue(id="v2", type=ClinicalValueType.DIAGNOSIS, name="Diagnosis", value="AF"),
        ]

    def test_verification_rate(self, values):
        rate = calculate_verification_rate(values)

        assert rate["total"] == 3
        assert rate["verified"] == 2
        assert rate["rate"] == pytest.approx(200 / 3)

    def test_empty_rate(self):
        assert calculate_verification_rate([])["rate"] == 100.0

    def test_unverified_values(self, values):
        assert [v.id for v in get_unverified_values(values)] == ["v0", "v2"]

    def test_group_by_type(self, values):
        grouped = group_values_by_type(values)

        assert [v.id for v in grouped[ClinicalValueType.MEASUREMENT]] == ["v0"]
        assert grouped[ClinicalValueType.PROCEDURE] == []
