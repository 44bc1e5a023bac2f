"""Pillow-backed image codec used to probe sources and render thumbnails."""
import io
import logging
import struct
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from PIL import Image as PILImage, ImageCms, ImageOps, UnidentifiedImageError

from errors import CorruptSource, NotFound, TransientFailure
from validation import Reason

logger = logging.getLogger(__name__)

OUTPUT_FORMAT = "JPEG"
OUTPUT_EXT = "jpg"
OUTPUT_MEDIA_TYPE = "image/jpeg"

ALPHA_MODES = {"RGBA", "LA", "PA", "RGBa", "La"}
DISPLAY_MODES = {"RGB", "L"}

# Substrings of decoder messages that mean the file itself is bad
_CORRUPT_PATTERNS = (
    "broken data stream",
    "cannot identify",
    "decoder error",
    "premature end",
    "corrupt",
    "not enough data",
    "unrecognized data stream",
    "tile cannot extend",
    "bad ",
    "invalid",
)


@dataclass(frozen=True)
class SourceInfo:
    """What a header read tells us about a source image."""
    width: int
    height: int
    colorspace: str
    has_alpha: bool
    byte_size: int = 0
    has_icc_profile: bool = False

    @property
    def pixels(self) -> int:
        return self.width * self.height


@dataclass(frozen=True)
class TranscodeOptions:
    width: int
    quality: int = 80
    flatten_alpha: bool = False
    convert_colorspace: bool = False


def classify_error(exc: BaseException) -> Exception:
    """Map a codec exception onto the pipeline's error taxonomy."""
    if isinstance(exc, (CorruptSource, TransientFailure, NotFound)):
        return exc
    if isinstance(exc, FileNotFoundError):
        return NotFound(f"Source file disappeared: {exc.filename}")
    if isinstance(exc, UnidentifiedImageError):
        return CorruptSource(Reason.DECODE_ERROR, str(exc))
    if isinstance(exc, PILImage.DecompressionBombError):
        return CorruptSource(Reason.DECODE_ERROR, str(exc))
    if isinstance(exc, MemoryError):
        return TransientFailure("Out of memory while decoding")
    if isinstance(exc, (SyntaxError, struct.error, EOFError)):
        return CorruptSource(Reason.DECODE_ERROR, str(exc))

    message = str(exc).lower()
    if isinstance(exc, OSError) and exc.errno is not None:
        # Real filesystem errors carry an errno; decoder errors do not
        return TransientFailure(f"I/O error reading source: {exc}")
    if isinstance(exc, (OSError, ValueError, IndexError)):
        if "truncated" in message:
            return CorruptSource(Reason.TRUNCATION, str(exc))
        if any(p in message for p in _CORRUPT_PATTERNS):
            return CorruptSource(Reason.DECODE_ERROR, str(exc))
    return TransientFailure(f"Unrecognized codec error: {exc!r}")


@lru_cache(maxsize=1)
def placeholder_jpeg() -> bytes:
    """A fixed 1x1 white JPEG."""
    buf = io.BytesIO()
    PILImage.new("RGB", (1, 1), (255, 255, 255)).save(buf, OUTPUT_FORMAT, quality=75)
    return buf.getvalue()


def _has_alpha(im: PILImage.Image) -> bool:
    return im.mode in ALPHA_MODES or "transparency" in im.info


def _to_srgb(im: PILImage.Image) -> PILImage.Image:
    """Convert embedded ICC profiles and non-display modes to sRGB."""
    icc = im.info.get("icc_profile")
    if icc and im.mode in ("RGB", "CMYK"):
        try:
            src = ImageCms.ImageCmsProfile(io.BytesIO(icc))
            dst = ImageCms.createProfile("sRGB")
            return ImageCms.profileToProfile(im, src, dst, outputMode="RGB")
        except (ImageCms.PyCMSError, OSError) as exc:
            logger.debug("Unusable ICC profile, converting without it: %s", exc)
    if im.mode not in DISPLAY_MODES and not _has_alpha(im):
        return im.convert("RGB")
    return im


def _flatten_alpha(im: PILImage.Image) -> PILImage.Image:
    """Composite onto white so transparent areas do not turn black."""
    rgba = im.convert("RGBA")
    background = PILImage.new("RGB", rgba.size, (255, 255, 255))
    background.paste(rgba, mask=rgba.getchannel("A"))
    return background


class PillowCodec:
    """Codec adapter: header probing and thumbnail transcoding."""

    def probe(self, path: Path) -> SourceInfo:
        """Read dimensions and color information without decoding pixels."""
        try:
            with PILImage.open(path) as im:
                width, height = im.size
                info = SourceInfo(
                    width=width,
                    height=height,
                    colorspace=im.mode,
                    has_alpha=_has_alpha(im),
                    byte_size=path.stat().st_size,
                    has_icc_profile=bool(im.info.get("icc_profile")),
                )
        except Exception as exc:
            raise classify_error(exc) from exc
        return info

    def transcode(self, path: Path, options: TranscodeOptions) -> bytes:
        """Render ``path`` as a JPEG no wider than ``options.width``."""
        try:
            with PILImage.open(path) as src:
                # Let the JPEG decoder downscale by powers of two up front
                src.draft("RGB", (options.width, options.width))
                im = ImageOps.exif_transpose(src)
                if options.convert_colorspace or im.info.get("icc_profile"):
                    im = _to_srgb(im)
                if options.flatten_alpha or _has_alpha(im):
                    im = _flatten_alpha(im)
                elif im.mode not in DISPLAY_MODES:
                    im = im.convert("RGB")

                if im.width > options.width:
                    height = max(1, round(im.height * options.width / im.width))
                    im = im.resize((options.width, height), PILImage.Resampling.LANCZOS)

                buf = io.BytesIO()
                im.save(buf, OUTPUT_FORMAT, quality=options.quality, optimize=True)
        except Exception as exc:
            raise classify_error(exc) from exc
        return buf.getvalue()
