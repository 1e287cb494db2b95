"""Unit tests for the patient code sequence model"""
import pytest

from patient_code.domain.errors import CapacityExceeded, StateCorrupt
from patient_code.domain.model import (
    CAPACITY,
    CodeGenerationResult,
    SequencePosition,
    format_patient_code,
    next_suffix,
)


def test_next_suffix_advances_rightmost_letter_first():
    assert next_suffix("AAA") == "AAB"
    assert next_suffix("AAZ") == "ABA"
    assert next_suffix("AZZ") == "BAA"
    assert next_suffix("ZZY") == "ZZZ"


def test_next_suffix_past_zzz_is_capacity_exceeded():
    with pytest.raises(CapacityExceeded):
        next_suffix("ZZZ")


def test_number_increments_within_suffix():
    assert SequencePosition(41, "AAA").next() == SequencePosition(42, "AAA")


def test_number_wraps_to_one_and_advances_suffix():
    assert SequencePosition(999, "AAA").next() == SequencePosition(1, "AAB")
    assert SequencePosition(999, "AZZ").next() == SequencePosition(1, "BAA")


def test_empty_position_allocates_first_code():
    assert SequencePosition.empty().next() == SequencePosition(1, "AAA")


def test_position_at_capacity_cannot_advance():
    last = SequencePosition(999, "ZZZ")
    assert last.at_capacity
    with pytest.raises(CapacityExceeded):
        last.next()


def test_ordinal_counts_issued_codes():
    assert SequencePosition(1, "AAA").ordinal == 1
    assert SequencePosition(1, "AAB").ordinal == 1000
    assert SequencePosition(999, "ZZZ").ordinal == CAPACITY == 17_558_424


def test_is_ahead_of_follows_allocation_order():
    assert SequencePosition(1, "AAB").is_ahead_of(SequencePosition(999, "AAA"))
    assert not SequencePosition(5, "AAA").is_ahead_of(SequencePosition(5, "AAA"))


class TestCacheEncoding:
    def test_encode(self):
        assert SequencePosition(42, "AAB").encode() == "42:AAB"

    def test_decode_accepts_bytes(self):
        assert SequencePosition.decode(b"7:ABC") == SequencePosition(7, "ABC")

    @pytest.mark.parametrize("raw", ["garbage", "12", "x:AAA", "1000:AAA", "-1:AAA", "5:aaa", "5:AAAA", "1:2:AAA"])
    def test_decode_rejects_malformed_values(self, raw):
        with pytest.raises(StateCorrupt):
            SequencePosition.decode(raw)


def test_format_patient_code_pads_number():
    assert format_patient_code("CENTREA", 2025, SequencePosition(1, "AAA")) == "CENTREA-2025-001-AAA"
    assert format_patient_code("T", 2025, SequencePosition(999, "ZZZ")) == "T-2025-999-ZZZ"


def test_generation_result_build():
    result = CodeGenerationResult.build("CENTREA", 2025, SequencePosition(12, "AAC"), "cache", 2010)

    assert result.code_patient == "CENTREA-2025-012-AAC"
    assert result.number == 12
    assert result.suffix == "AAC"
    assert result.source == "cache"
    assert result.generated_count == 2010
    assert result.generated_at is not None
