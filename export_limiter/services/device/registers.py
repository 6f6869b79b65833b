"""
Register Value Codecs

Conversion between raw 16-bit holding registers and typed values.
"""

import math
import struct
from enum import Enum


class WordOrder(str, Enum):
    """Order of 16-bit words in multi-register values"""
    BIG = "big"        # high word in the first register
    LITTLE = "little"  # low word in the first register


def to_signed16(value: int) -> int:
    """Interpret a raw register as two's-complement"""
    value &= 0xFFFF
    if value >= 0x8000:
        value -= 0x10000
    return value


def decode_scaled_int16(value_register: int, scale_register: int) -> float:
    """SunSpec value with a power-of-ten scale factor, both signed"""
    value = to_signed16(value_register)
    scale = to_signed16(scale_register)
    return value * 10.0 ** scale


def decode_float32(registers: list[int], word_order: WordOrder = WordOrder.BIG) -> float | None:
    """
    IEEE-754 float from two registers.

    Returns None for short input and for NaN or infinite values.
    """
    if len(registers) < 2:
        return None

    first, second = registers[0] & 0xFFFF, registers[1] & 0xFFFF
    if word_order == WordOrder.LITTLE:
        first, second = second, first

    value = struct.unpack(">f", struct.pack(">HH", first, second))[0]
    if math.isnan(value) or math.isinf(value):
        return None
    return value


def encode_float32(value: float, word_order: WordOrder = WordOrder.BIG) -> list[int]:
    """Split a float32 into two registers"""
    high, low = struct.unpack(">HH", struct.pack(">f", value))
    if word_order == WordOrder.LITTLE:
        return [low, high]
    return [high, low]


def encode_int16(value: int) -> int:
    """Two's-complement register value for a signed integer"""
    if not -0x8000 <= value <= 0x7FFF:
        raise ValueError(f"{value} does not fit in a signed 16-bit register")
    return value & 0xFFFF
