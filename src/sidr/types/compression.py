"""
Compression - Decoders for compressed column values

The first byte of a compressed value selects the scheme (upper 5 bits):
    1  7-bit ASCII     characters packed 7 bits each, LSB first
    2  7-bit Unicode   same packing, each character widened to UTF-16LE
    3  XPRESS          [size:2][plain LZ77 stream]
For the 7-bit schemes the lower 3 bits hold (valid bits in the last byte - 1).
"""

import struct
from typing import Optional

from ..exceptions import InvalidValue

SCHEME_SEVEN_BIT_ASCII = 1
SCHEME_SEVEN_BIT_UNICODE = 2
SCHEME_XPRESS = 3


def _unpack_seven_bit(data: bytes) -> bytes:
    if len(data) < 2:
        return b''
    last_bits = (data[0] & 0x7) + 1
    total_bits = (len(data) - 2) * 8 + last_bits
    count = total_bits // 7

    value = int.from_bytes(data[1:], 'little')
    return bytes((value >> (7 * i)) & 0x7F for i in range(count))


def decompress_lz77(data: bytes, limit: Optional[int] = None) -> bytes:
    """
    Decompress a plain LZ77 (XPRESS) stream

    Args:
        data: Compressed stream
        limit: Maximum number of output bytes, None for no limit

    Raises:
        InvalidValue: If a match refers before the start of the output
            or would grow the output past limit
    """
    output = bytearray()
    position = 0
    flags = 0
    flag_count = 0
    half_byte_position = None
    size = len(data)

    while limit is None or len(output) < limit:
        if flag_count == 0:
            if position + 4 > size:
                break
            flags = struct.unpack_from('<I', data, position)[0]
            position += 4
            flag_count = 32
        flag_count -= 1

        if not flags & (1 << flag_count):
            if position >= size:
                break
            output.append(data[position])
            position += 1
            continue

        if position + 2 > size:
            break
        match = struct.unpack_from('<H', data, position)[0]
        position += 2
        length = match & 0x7
        offset = (match >> 3) + 1

        if length == 7:
            if half_byte_position is None:
                if position >= size:
                    raise InvalidValue("LZ77 stream truncated in match length")
                length = data[position] & 0xF
                half_byte_position = position
                position += 1
            else:
                length = data[half_byte_position] >> 4
                half_byte_position = None
            if length == 15:
                if position >= size:
                    raise InvalidValue("LZ77 stream truncated in match length")
                length = data[position]
                position += 1
                if length == 255:
                    length = struct.unpack_from('<H', data, position)[0]
                    position += 2
                    if length == 0:
                        length = struct.unpack_from('<I', data, position)[0]
                        position += 4
                    if length < 15 + 7:
                        raise InvalidValue("LZ77 match length underflow")
                    length -= 15 + 7
                length += 15
            length += 7
        length += 3

        if offset > len(output):
            raise InvalidValue(f"LZ77 match offset {offset} before start of output")
        if limit is not None and len(output) + length > limit:
            raise InvalidValue(f"LZ77 match of {length} bytes overruns declared size {limit}")
        for _ in range(length):
            output.append(output[-offset])

    return bytes(output)


def decompress(data: bytes) -> bytes:
    """
    Decompress a column value

    Args:
        data: Compressed bytes including the scheme byte

    Returns:
        Uncompressed bytes (UTF-16LE for the 7-bit Unicode scheme)

    Raises:
        InvalidValue: For unknown schemes or malformed streams
    """
    if not data:
        return b''

    scheme = data[0] >> 3
    if scheme == SCHEME_SEVEN_BIT_ASCII:
        return _unpack_seven_bit(data)
    if scheme == SCHEME_SEVEN_BIT_UNICODE:
        return _unpack_seven_bit(data).decode('ascii').encode('utf-16-le')
    if scheme == SCHEME_XPRESS:
        if len(data) < 3:
            raise InvalidValue("XPRESS value without size header")
        size = struct.unpack_from('<H', data, 1)[0]
        try:
            output = decompress_lz77(data[3:], size)
        except struct.error as e:
            raise InvalidValue(f"LZ77 stream truncated: {e}") from e
        return output[:size]
    raise InvalidValue(f"Unsupported compression scheme {scheme}")
