"""Tests for thumbnail output validation."""
import io

from PIL import Image as PILImage

from codec import placeholder_jpeg
from validation import (
    Invalid,
    Reason,
    Valid,
    ValidationPolicy,
    has_jpeg_markers,
    jpeg_dimensions,
    jpeg_frame_header,
    validate_thumbnail,
)

POLICY = ValidationPolicy(target_width=320, min_output_bytes=512, tiny_source_pixels=4096)


def encode(size=(320, 240), progressive=False) -> bytes:
    im = PILImage.effect_noise(size, 60).convert("RGB")
    buf = io.BytesIO()
    im.save(buf, "JPEG", quality=80, progressive=progressive)
    return buf.getvalue()


class TestMarkers:
    def test_valid_jpeg_has_markers(self):
        assert has_jpeg_markers(encode())

    def test_truncated_jpeg_lacks_end_marker(self):
        assert not has_jpeg_markers(encode()[:-10])

    def test_empty(self):
        assert not has_jpeg_markers(b"")

    def test_png_is_not_jpeg(self):
        buf = io.BytesIO()
        PILImage.new("RGB", (4, 4)).save(buf, "PNG")
        assert not has_jpeg_markers(buf.getvalue())


class TestDimensions:
    def test_baseline(self):
        assert jpeg_dimensions(encode((300, 200))) == (300, 200)

    def test_progressive(self):
        assert jpeg_dimensions(encode((120, 90), progressive=True)) == (120, 90)

    def test_placeholder_is_one_pixel(self):
        assert jpeg_dimensions(placeholder_jpeg()) == (1, 1)

    def test_markers_without_frame(self):
        assert jpeg_dimensions(b"\xff\xd8\xff\xd9") is None

    def test_not_a_jpeg(self):
        assert jpeg_dimensions(b"GIF89a....") is None

    def test_component_count(self):
        assert jpeg_frame_header(encode((40, 30)))[2] == 3
        buf = io.BytesIO()
        PILImage.new("L", (40, 30)).save(buf, "JPEG")
        assert jpeg_frame_header(buf.getvalue()) == (40, 30, 1)


class TestValidateThumbnail:
    def test_valid_output(self):
        data = encode((320, 240))
        result = validate_thumbnail(data, POLICY, 2000, 1500)
        assert isinstance(result, Valid)
        assert (result.width, result.height) == (320, 240)
        assert result.data == data

    def test_empty_output_is_truncation(self):
        result = validate_thumbnail(b"", POLICY, 2000, 1500)
        assert isinstance(result, Invalid)
        assert result.reason is Reason.TRUNCATION

    def test_missing_start_marker(self):
        result = validate_thumbnail(b"\x00\x00" + encode()[2:], POLICY, 2000, 1500)
        assert result.reason is Reason.MARKER_MISMATCH

    def test_missing_end_marker_is_truncation(self):
        result = validate_thumbnail(encode()[:-100], POLICY, 2000, 1500)
        assert result.reason is Reason.TRUNCATION

    def test_no_frame_header(self):
        result = validate_thumbnail(b"\xff\xd8\xff\xd9", POLICY, 2000, 1500)
        assert result.reason is Reason.DIMENSION_MISMATCH

    def test_wider_than_target(self):
        result = validate_thumbnail(encode((400, 300)), POLICY, 2000, 1500)
        assert result.reason is Reason.DIMENSION_MISMATCH

    def test_wider_than_source(self):
        result = validate_thumbnail(encode((200, 100)), POLICY, 100, 50)
        assert result.reason is Reason.DIMENSION_MISMATCH

    def test_rotated_source_is_not_a_mismatch(self):
        # Portrait output from a landscape-stored source with EXIF rotation
        result = validate_thumbnail(encode((150, 200)), POLICY, 200, 150)
        assert isinstance(result, Valid)

    def test_suspiciously_small_for_large_source(self):
        policy = ValidationPolicy(target_width=320, min_output_bytes=10**6)
        result = validate_thumbnail(encode(), policy, 2000, 1500)
        assert result.reason is Reason.SUSPICIOUSLY_SMALL

    def test_flat_grayscale_output_is_not_small(self):
        buf = io.BytesIO()
        PILImage.new("L", (320, 213), 128).save(buf, "JPEG", quality=80, optimize=True)
        data = buf.getvalue()
        assert len(data) < POLICY.min_output_bytes

        result = validate_thumbnail(data, POLICY, 900, 600)
        assert isinstance(result, Valid)

    def test_grayscale_threshold_still_applies(self):
        policy = ValidationPolicy(target_width=320, min_output_bytes=10**6)
        data = encode()
        gray = io.BytesIO()
        PILImage.open(io.BytesIO(data)).convert("L").save(gray, "JPEG")
        result = validate_thumbnail(gray.getvalue(), policy, 2000, 1500)
        assert result.reason is Reason.SUSPICIOUSLY_SMALL

    def test_small_output_from_tiny_source_is_fine(self):
        policy = ValidationPolicy(target_width=320, min_output_bytes=10**6)
        result = validate_thumbnail(encode((16, 16)), policy, 16, 16)
        assert isinstance(result, Valid)

    def test_reason_values_are_wire_codes(self):
        assert Reason.SUSPICIOUSLY_SMALL.value == "suspiciously-small-output"
        assert Reason.MARKER_MISMATCH.value == "marker-mismatch"
