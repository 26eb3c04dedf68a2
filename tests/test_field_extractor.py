"""
Tests for field extraction from OCR text.
"""

from datetime import date, datetime

import pytest

from credverify.ocr.models import LayoutBlock
from pipelines.extraction import DocumentType, FieldExtractor, classify_document, parse_date
from pipelines.identity.evidence import EvidenceKind, Region
from pipelines.identity.record import EnrollmentPeriod

from conftest import IIT_CERTIFICATE


@pytest.fixture
def extractor() -> FieldExtractor:
    return FieldExtractor(clock=lambda: datetime(2024, 6, 1))


class TestLabelledFields:
    """Label-anchored rules."""

    def test_certificate_fields(self, extractor):
        """A labelled certificate yields every labelled field."""
        record = extractor.extract(IIT_CERTIFICATE, source="scan.pdf")

        assert record.full_name.value == "Ananya Rao"
        assert record.full_name.confidence == 0.92
        assert record.institution.value == "Indian Institute Of Technology Delhi"
        assert record.program_or_degree.value == "Bachelor of Technology in Computer Science and Engineering"
        assert record.enrollment_period.value == EnrollmentPeriod(2016, 2020)
        assert record.enrollment_period.confidence == 0.9
        assert record.roll_number.value == "2016CS10234"

    def test_evidence_points_at_source(self, extractor):
        """Every field carries an OCR evidence reference."""
        record = extractor.extract(IIT_CERTIFICATE, source="scan.pdf")

        for name in record.present_fields():
            ev = record.get(name).evidence[0]
            assert ev.kind == EvidenceKind.DOCUMENT_OCR
            assert ev.source == "scan.pdf"
            assert ev.extracted_at == datetime(2024, 6, 1)

    def test_supplementary_fields(self, extractor):
        """Father's name, birth date and department are picked up."""
        text = "\n".join(
            [
                "Student Name: PRIYA SHARMA",
                "Father's Name: Rajesh Sharma",
                "Date of Birth: 12/03/1998",
                "Department: Electrical Engineering",
                "Enrollment No: ee-2016-044",
            ]
        )
        record = extractor.extract(text, source="t.pdf")

        assert record.full_name.value == "Priya Sharma"
        assert record.fathers_name.value == "Rajesh Sharma"
        assert record.date_of_birth.value == date(1998, 3, 12)
        assert record.department.value == "Electrical Engineering"
        assert record.roll_number.value == "EE-2016-044"

    def test_birth_year_not_enrollment(self, extractor):
        """Years on date-of-birth lines are not enrollment years."""
        text = "Name: Priya Sharma\nDate of Birth: 12/03/1998\nYear of Passing: 2020"
        record = extractor.extract(text, source="t.pdf")

        assert record.enrollment_period.value == EnrollmentPeriod(2016, 2020)
        assert record.enrollment_period.confidence == 0.55

    def test_certify_sentence(self, extractor):
        """Names inside 'certify that ...' sentences are found."""
        text = "This is to certify that Mr. Arjun Mehta s/o Shri Vikram Mehta has been awarded the degree"
        record = extractor.extract(text, source="c.pdf")

        assert record.full_name.value == "Arjun Mehta"
        assert record.full_name.confidence == 0.85
        assert record.fathers_name.value == "Vikram Mehta"


class TestHeuristics:
    """Fallbacks when no label is present."""

    def test_name_and_institution_without_labels(self, extractor):
        """Capitalised first lines and institution keywords are used."""
        text = "Meera Iyer\nSt. Xavier's College Mumbai\nBachelor of Science, 2019"
        record = extractor.extract(text, source="h.pdf")

        assert record.full_name.value == "Meera Iyer"
        assert record.full_name.confidence == 0.65
        assert record.institution.value == "St. Xavier's College Mumbai"
        assert record.institution.confidence == 0.7
        assert record.program_or_degree.value == "Bachelor of Science"
        assert record.program_or_degree.confidence == 0.85

    def test_all_caps_name_line(self, extractor):
        """An unlabelled name printed in capitals is picked up and tidied."""
        text = "UNIVERSITY OF MUMBAI\nANANYA RAO\nBachelor of Commerce, 2019"
        record = extractor.extract(text, source="caps.pdf")

        assert record.full_name.value == "Ananya Rao"
        assert record.full_name.confidence == 0.65
        assert record.full_name.evidence[0].source == "caps.pdf"

    def test_all_caps_header_is_not_a_name(self, extractor):
        """Capitalised institution headers are still skipped."""
        record = extractor.extract("GOVERNMENT OF INDIA\nDEGREE CERTIFICATE", source="hdr.pdf")

        assert record.full_name is None

    def test_degree_abbreviation(self, extractor):
        """Abbreviated degrees in running text are found."""
        record = extractor.extract("Awarded B.Tech Computer Science in 2020", source="a.pdf")

        assert record.program_or_degree.value.startswith("B.Tech Computer Science")
        assert record.program_or_degree.confidence == 0.8

    def test_year_spread(self, extractor):
        """Several scattered years span the enrollment period."""
        text = "Admitted 2015\nSemester results 2016 2017\nGraduated 2019"
        record = extractor.extract(text, source="y.pdf")

        assert record.enrollment_period.value == EnrollmentPeriod(2015, 2019)
        assert record.enrollment_period.confidence == 0.75

    def test_two_digit_range_suffix(self, extractor):
        """'2016-20' reads as 2016 to 2020."""
        record = extractor.extract("Batch 2016-20", source="b.pdf")

        assert record.enrollment_period.value == EnrollmentPeriod(2016, 2020)

    def test_iso_date_is_not_a_range(self, extractor):
        """'2020-07-15' is a date, not 2020 to 2007."""
        record = extractor.extract("Result declared 2020-07-15", source="d.pdf")

        assert record.enrollment_period.value == EnrollmentPeriod(2016, 2020)
        assert record.enrollment_period.confidence == 0.55


class TestRobustness:
    """Garbage in, empty record out."""

    @pytest.mark.parametrize("text", [None, "", "   \n\t  ", "@@@ ### %%%"])
    def test_unusable_text_gives_empty_record(self, extractor, text):
        """Empty or garbled text never raises."""
        assert extractor.extract(text, source="x").is_empty()

    def test_non_string_rejected(self, extractor):
        """Bytes are a caller bug."""
        with pytest.raises(TypeError):
            extractor.extract(b"Name: X", source="x")

    def test_deterministic(self, extractor):
        """Same input, same output."""
        assert extractor.extract(IIT_CERTIFICATE, "s") == extractor.extract(IIT_CERTIFICATE, "s")


class TestLayout:
    """Layout blocks add page and region to evidence."""

    def test_region_from_matching_block(self, extractor):
        """Evidence carries the block's page and bounding box."""
        blocks = [
            LayoutBlock("Name: Ananya Rao", page=1, region=Region(10, 20, 300, 18)),
            LayoutBlock("Session: 2016-2020", page=1, region=Region(10, 60, 200, 18)),
        ]
        record = extractor.extract("Name: Ananya Rao\nSession: 2016-2020", "scan.pdf", blocks, page=1)

        ev = record.full_name.evidence[0]
        assert ev.page == 1
        assert ev.region == Region(10, 20, 300, 18)
        assert record.enrollment_period.evidence[0].region == Region(10, 60, 200, 18)

    def test_one_record_per_page(self, extractor):
        """Multi-page layout yields one partial record per page."""
        blocks = [
            LayoutBlock("Name: Ananya Rao", page=1),
            LayoutBlock("Name: Ananya Rao", page=2),
            LayoutBlock("Session: 2016-2020", page=2),
        ]
        records = extractor.extract_document("ignored", "scan.pdf", blocks)

        assert len(records) == 2
        assert records[0].enrollment_period is None
        assert records[1].full_name.evidence[0].page == 2

    def test_single_page_uses_raw_text(self, extractor):
        """Without multi-page layout the whole text is one record."""
        records = extractor.extract_document(IIT_CERTIFICATE, "scan.pdf")

        assert len(records) == 1
        assert records[0].full_name.value == "Ananya Rao"


class TestParseDate:
    """Date parsing helper."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("12/03/1998", date(1998, 3, 12)),
            ("12-03-1998", date(1998, 3, 12)),
            ("1998-03-12", date(1998, 3, 12)),
            ("12th March 1998", date(1998, 3, 12)),
            ("Mar. 12, 1998", date(1998, 3, 12)),
            ("not a date", None),
            ("31/02/1998", None),
        ],
    )
    def test_formats(self, raw, expected):
        """Numeric and month-name formats parse; nonsense does not."""
        assert parse_date(raw) == expected


class TestClassifier:
    """Document type guessing."""

    def test_degree_certificate(self):
        """Degree certificates are recognised."""
        result = classify_document(IIT_CERTIFICATE)
        assert result.document_type == DocumentType.DEGREE_CERTIFICATE
        assert result.confidence == 0.5

    def test_provisional_wins(self):
        """'Provisional degree certificate' is provisional."""
        result = classify_document("PROVISIONAL DEGREE CERTIFICATE")
        assert result.document_type == DocumentType.PROVISIONAL_CERTIFICATE

    def test_transcript_confidence_capped(self):
        """Confidence grows with matches and caps at 0.9."""
        result = classify_document("Official Transcript\nMark Sheet\nGrade Report\nAcademic Record")
        assert result.document_type == DocumentType.TRANSCRIPT
        assert result.confidence == 0.9

    def test_unknown(self):
        """No pattern means UNKNOWN at 0.1."""
        result = classify_document("hello world")
        assert result.to_dict() == {"document_type": "UNKNOWN", "confidence": 0.1}
