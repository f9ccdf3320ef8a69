"""Tests for insurance_kernel.domain.direction -- the pairing direction table."""

import pytest

from insurance_kernel.domain.direction import DIRECTION_TABLE, resolve, sign_of
from insurance_kernel.exceptions import DirectionResolutionError


@pytest.mark.parametrize(
    "pairing_sign, original_sign, line_direction, expected",
    [
        (-1, 1, -1, -1),
        (-1, 1, 1, 1),
        (-1, -1, 1, -1),
        (-1, -1, -1, 1),
        (1, 1, 1, -1),
        (1, 1, -1, 1),
        (1, -1, -1, -1),
        (1, -1, 1, 1),
    ],
)
def test_every_combination(pairing_sign, original_sign, line_direction, expected):
    assert resolve(pairing_sign, original_sign, line_direction) == expected


def test_table_is_total_over_signs():
    assert len(DIRECTION_TABLE) == 8


def test_negative_pairing_sign_keeps_posting_side_when_signs_agree():
    assert resolve(-1, 1, 1) == 1
    assert resolve(-1, -1, -1) == 1


def test_positive_pairing_sign_reverses_line():
    for original in (1, -1):
        for line in (1, -1):
            assert resolve(1, original, line) == -resolve(-1, original, line)


@pytest.mark.parametrize("inputs", [(0, 1, 1), (1, 0, 1), (1, 1, 0), (2, 1, 1)])
def test_undefined_combination_raises(inputs):
    with pytest.raises(DirectionResolutionError) as exc_info:
        resolve(*inputs)
    assert exc_info.value.code == "DIRECTION_UNRESOLVED"
    assert (
        exc_info.value.pairing_sign,
        exc_info.value.original_sign,
        exc_info.value.line_direction,
    ) == inputs


def test_sign_of_zero_is_negative():
    assert sign_of(5) == 1
    assert sign_of(0) == -1
    assert sign_of(-3) == -1
