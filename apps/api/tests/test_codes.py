"""Tests for verification code generation and normalization."""

import re

import pytest

from forj_api.ledger.codes import (
    ALPHABET,
    check_character,
    format_code,
    generate_code,
    has_valid_checksum,
    normalize_code,
)

CODE_PATTERN = re.compile(r"^[A-HJ-NP-Z2-9]{4}(-[A-HJ-NP-Z2-9]{4}){3}$")


def _valid_code() -> str:
    payload = "K7QM2XWD9HRTC4N"
    return payload + check_character(payload)


def test_generated_codes_are_well_formed():
    for _ in range(50):
        code = generate_code()
        assert CODE_PATTERN.match(code)
        assert normalize_code(code) == code.replace("-", "")


def test_alphabet_has_no_lookalikes():
    assert len(ALPHABET) == 32
    for char in "01IO":
        assert char not in ALPHABET


@pytest.mark.parametrize(
    "variant",
    [
        lambda c: format_code(c),
        lambda c: format_code(c).lower(),
        lambda c: c.lower(),
        lambda c: " " + format_code(c).replace("-", " ") + " ",
        lambda c: format_code(c).replace("-", "_"),
        lambda c: format_code(c).replace("-", "."),
    ],
)
def test_normalization_ignores_case_and_separators(variant):
    code = _valid_code()
    assert normalize_code(variant(code)) == code


def test_every_single_character_typo_is_rejected():
    code = _valid_code()
    for position in range(len(code)):
        for replacement in ALPHABET:
            if replacement == code[position]:
                continue
            typo = code[:position] + replacement + code[position + 1:]
            assert not has_valid_checksum(typo)


@pytest.mark.parametrize("bad", ["", None, "ABCD-EFGH", "K7QM-2XWD-9HRT-C4NBX", "O0I1-2XWD-9HRT-C4NB"])
def test_malformed_codes_normalize_to_none(bad):
    assert normalize_code(bad) is None
