"""Structural checks for generated JPEG thumbnails.

Validation works on raw bytes only, so it can be exercised without an
image codec. The result is either ``Valid`` or ``Invalid(reason)``; an
``Invalid`` output is replaced by a placeholder before it reaches the
cache.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

logger = logging.getLogger(__name__)

JPEG_SOI = b"\xff\xd8"
JPEG_EOI = b"\xff\xd9"

# Start-of-frame markers carrying dimensions (DHT, JPG and DAC excluded)
_SOF_MARKERS = {0xC0, 0xC1, 0xC2, 0xC3, 0xC5, 0xC6, 0xC7, 0xC9, 0xCA, 0xCB, 0xCD, 0xCE, 0xCF}
# Markers without a length field
_STANDALONE_MARKERS = {0x01, 0xD0, 0xD1, 0xD2, 0xD3, 0xD4, 0xD5, 0xD6, 0xD7}


class Reason(str, Enum):
    """Machine-readable reason a placeholder was cached."""

    TRUNCATION = "truncation"
    MARKER_MISMATCH = "marker-mismatch"
    DIMENSION_MISMATCH = "dimension-mismatch"
    SUSPICIOUSLY_SMALL = "suspiciously-small-output"
    DECODE_ERROR = "decode-error"


@dataclass(frozen=True)
class ValidationPolicy:
    target_width: int
    min_output_bytes: int = 512
    tiny_source_pixels: int = 4096


@dataclass(frozen=True)
class Valid:
    data: bytes
    width: int
    height: int


@dataclass(frozen=True)
class Invalid:
    reason: Reason
    detail: str = ""


ValidationResult = Union[Valid, Invalid]


def has_jpeg_markers(data: bytes) -> bool:
    """True when ``data`` starts with SOI and ends with EOI."""
    return len(data) >= 4 and data.startswith(JPEG_SOI) and data.endswith(JPEG_EOI)


def jpeg_frame_header(data: bytes) -> Optional[tuple[int, int, int]]:
    """Read (width, height, components) from the first SOF segment, or None."""
    if not data.startswith(JPEG_SOI):
        return None
    pos = 2
    end = len(data)
    while pos + 4 <= end:
        if data[pos] != 0xFF:
            return None
        marker = data[pos + 1]
        if marker == 0xFF:  # fill byte
            pos += 1
            continue
        if marker in _STANDALONE_MARKERS:
            pos += 2
            continue
        if marker in (0xD9, 0xDA):  # EOI / SOS before any frame header
            return None
        length = int.from_bytes(data[pos + 2:pos + 4], "big")
        if length < 2:
            return None
        if marker in _SOF_MARKERS:
            if pos + 10 > end:
                return None
            height = int.from_bytes(data[pos + 5:pos + 7], "big")
            width = int.from_bytes(data[pos + 7:pos + 9], "big")
            components = data[pos + 9]
            if width == 0 or height == 0 or components == 0:
                return None
            return width, height, components
        pos += 2 + length
    return None


def jpeg_dimensions(data: bytes) -> Optional[tuple[int, int]]:
    """Read (width, height) from the first SOF segment, or None."""
    header = jpeg_frame_header(data)
    return header[:2] if header else None


def validate_thumbnail(
    data: bytes,
    policy: ValidationPolicy,
    source_width: int = 0,
    source_height: int = 0,
) -> ValidationResult:
    """Check encoder output against the source it was produced from."""
    if not data:
        return Invalid(Reason.TRUNCATION, "empty output")
    if not data.startswith(JPEG_SOI):
        return Invalid(Reason.MARKER_MISMATCH, "missing start-of-image marker")
    if not data.endswith(JPEG_EOI):
        return Invalid(Reason.TRUNCATION, "missing end-of-image marker")

    header = jpeg_frame_header(data)
    if header is None:
        return Invalid(Reason.DIMENSION_MISMATCH, "no frame header")
    width, height, components = header
    if width > policy.target_width:
        return Invalid(
            Reason.DIMENSION_MISMATCH,
            f"width {width} exceeds target {policy.target_width}",
        )
    # Orientation correction may swap axes, so compare against the long edge
    long_edge = max(source_width, source_height)
    if long_edge and width > long_edge:
        return Invalid(
            Reason.DIMENSION_MISMATCH, f"width {width} exceeds source {long_edge}"
        )

    # min_output_bytes is calibrated for three-channel output
    min_bytes = policy.min_output_bytes * min(components, 3) // 3
    source_pixels = source_width * source_height
    if len(data) < min_bytes and source_pixels > policy.tiny_source_pixels:
        logger.warning(
            "Small thumbnail output rejected: %d bytes (min %d) for %dx%d source",
            len(data),
            min_bytes,
            source_width,
            source_height,
        )
        return Invalid(
            Reason.SUSPICIOUSLY_SMALL,
            f"{len(data)} bytes for {source_width}x{source_height} source",
        )

    return Valid(data, width, height)
