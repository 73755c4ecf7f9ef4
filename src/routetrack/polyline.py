#!/usr/bin/env python3
"""
Decoder for the encoded polyline algorithm format (precision 5).

An encoded polyline stores each coordinate as a zig-zag encoded delta from
the previous one, written as 5-bit chunks offset by 63 into printable ASCII.
A chunk with bit 0x20 set is followed by another chunk of the same value.
"""

from typing import List, Tuple

from .exceptions import PolylineDecodeError
from .geometry import Position

PRECISION = 1e5


def _decode_value(encoded: str, index: int) -> Tuple[int, int]:
    """
    Decode one signed value starting at index.

    Returns:
        Tuple of (value, index of the next unread character)

    Raises:
        PolylineDecodeError: If the string ends mid-value or holds a
            character outside the polyline alphabet
    """
    result = 0
    shift = 0

    while True:
        if index >= len(encoded):
            raise PolylineDecodeError(
                f"Encoded polyline ends mid-value at position {index}"
            )
        chunk = ord(encoded[index]) - 63
        if chunk < 0 or chunk > 0x3F:
            raise PolylineDecodeError(
                f"Invalid polyline character {encoded[index]!r} at position {index}"
            )
        index += 1
        result |= (chunk & 0x1F) << shift
        shift += 5
        if chunk < 0x20:
            break

    value = ~(result >> 1) if result & 1 else result >> 1
    return value, index


def decode(encoded: str) -> List[Position]:
    """
    Decode an encoded polyline into an ordered list of positions.

    Args:
        encoded: Encoded polyline string

    Returns:
        List of Position objects in the order they were encoded (empty for an
        empty string)

    Raises:
        PolylineDecodeError: If the string is truncated or malformed
    """
    positions = []
    index = 0
    lat = 0
    lng = 0

    while index < len(encoded):
        dlat, index = _decode_value(encoded, index)
        if index >= len(encoded):
            raise PolylineDecodeError(
                "Encoded polyline has a latitude without a matching longitude"
            )
        dlng, index = _decode_value(encoded, index)

        lat += dlat
        lng += dlng
        positions.append(Position(latitude=lat / PRECISION, longitude=lng / PRECISION))

    return positions
