"""Tests for model code normalization and lookup variants."""

import pytest

from subsidy_hub.infrastructure.matching import normalize, variant_chain, variants

MODEL_CODES = [
    "SM-S928N",
    "sm_s928n",
    " SM S928 N ",
    "SMS928N",
    "SM-F741N",
    "AIP16-128",
    "iPhone 16 Pro",
    "UIP15_256",
    "LM-V510N",
    "",
    "---",
    "갤럭시 S24",
]


class TestNormalize:
    """normalize() canonicalization."""

    @pytest.mark.parametrize("code", MODEL_CODES)
    def test_idempotent(self, code):
        assert normalize(normalize(code)) == normalize(code)

    def test_separator_and_case_spellings_meet(self):
        assert normalize("SM-S928N") == normalize("sm_s928n") == normalize(" SM S928 N ")
        assert normalize("SM-S928N") == "sms928n"

    def test_empty_and_none(self):
        assert normalize("") == ""
        assert normalize(None) == ""
        assert normalize("- _ ") == ""

    def test_non_string_input_is_stringified(self):
        assert normalize(12345) == "12345"
        assert normalize(3.5) == "3.5"


class TestVariants:
    """variants() / variant_chain() lookup candidates."""

    def test_chain_starts_with_exact_code(self):
        chain = variant_chain("SM-S928N")
        assert chain[:4] == ("SM-S928N", "sm-s928n", "sms928n", "SMS928N")

    def test_chain_is_deduplicated(self):
        chain = variant_chain("SMS928N")
        assert len(chain) == len(set(chain))

    def test_prefix_hyphen_inserted(self):
        assert "SM-S928N" in variants("SMS928N")
        assert "sm-s928n" in variants("sms928n")
        assert "LM-V510N" in variants("lmv510n")

    def test_brand_digit_split(self):
        assert "AIP-16128" in variants("AIP16128")

    def test_variants_include_case_and_normalized_forms(self):
        result = variants("Sm-S928n")
        assert {"Sm-S928n", "sm-s928n", "SM-S928N", "sms928n", "SMS928N"} <= result

    def test_chain_matches_set(self):
        assert frozenset(variant_chain("SM-F741N")) == variants("SM-F741N")

    def test_empty_input_has_no_variants(self):
        assert variant_chain("") == ()
        assert variants(None) == frozenset()

    def test_deterministic(self):
        assert variant_chain("UIP15_256") == variant_chain("UIP15_256")
