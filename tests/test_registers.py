import math

import pytest

from export_limiter.services.device.registers import (
    WordOrder,
    decode_float32,
    decode_scaled_int16,
    encode_float32,
    encode_int16,
    to_signed16,
)


def test_negative_value_with_positive_scale():
    assert decode_scaled_int16(0xFFFF, 0x0001) == pytest.approx(-10.0)


def test_negative_scale_factor():
    # 12345 * 10^-2
    assert decode_scaled_int16(12345, 0xFFFE) == pytest.approx(123.45)


@pytest.mark.parametrize("raw, expected", [
    (0x0000, 0),
    (0x7FFF, 32767),
    (0x8000, -32768),
    (0xFFFF, -1),
])
def test_to_signed16(raw, expected):
    assert to_signed16(raw) == expected


def test_float32_low_word_first():
    # 7400.0 is 0x45E74000
    assert decode_float32([0x4000, 0x45E7], WordOrder.LITTLE) == 7400.0
    assert decode_float32([0x45E7, 0x4000], WordOrder.BIG) == 7400.0


def test_encode_float32_word_order():
    assert encode_float32(7400.0, WordOrder.LITTLE) == [0x4000, 0x45E7]
    assert encode_float32(7400.0, WordOrder.BIG) == [0x45E7, 0x4000]


def test_float32_nan_is_not_a_value():
    assert decode_float32(encode_float32(math.nan, WordOrder.LITTLE), WordOrder.LITTLE) is None
    assert decode_float32(encode_float32(math.inf)) is None


def test_float32_needs_two_registers():
    assert decode_float32([]) is None
    assert decode_float32([0x45E7]) is None


def test_encode_int16():
    assert encode_int16(-1) == 0xFFFF
    assert encode_int16(1234) == 1234
    with pytest.raises(ValueError):
        encode_int16(40000)
