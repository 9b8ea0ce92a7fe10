"""
Image validation and composition pipeline.

Turns an uploaded portrait into a landscape composite: the photo, cover-fit
and blurred, fills the canvas as a backdrop, and a sharp, scaled copy of the
same photo sits centered on top.

Stages:
- normalize: HEIC/HEIF containers are transcoded to JPEG, everything else
  passes through untouched
- validate_image: decode, check format and require portrait orientation
- ImageCompositor.compose: cover fit + blur, inside fit, center, encode JPEG

Every stage is a pure function of its inputs, so the same bytes and settings
always produce byte-identical output.
"""

import base64
import logging
from dataclasses import dataclass
from enum import Enum
from io import BytesIO
from typing import Optional, Tuple

import pillow_heif
from PIL import Image, ImageFilter, ImageOps

from .errors import CompositionError, ErrorKind
from .staging import ImageMetadata

logger = logging.getLogger("backdrop.compositor")


# Brand codes found at offset 8 of an ISO-BMFF "ftyp" box for HEIF-family files
HEIF_BRANDS = {b"heic", b"heix", b"hevc", b"hevx", b"heim", b"heis", b"mif1", b"msf1"}

# Formats accepted after normalization (Pillow names, lower-cased)
ALLOWED_FORMATS = {"jpeg", "png"}

# Pillow reports multi-picture camera JPEGs as MPO
_FORMAT_ALIASES = {"mpo": "jpeg"}

# Transcoding HEIC is lossy; keep as much as the encoder allows
HEIF_TRANSCODE_QUALITY = 100


class OutputSize(str, Enum):
    """Which canvas a composition renders to."""
    PREVIEW = "preview"
    FULL = "full"


@dataclass(frozen=True)
class CompositionSettings:
    """
    Per-call composition parameters.

    blur_radius and scale_percent are expected to be clamped by the caller.
    """
    blur_radius: int
    scale_percent: int
    output_size: OutputSize = OutputSize.FULL


@dataclass(frozen=True)
class ValidationResult:
    """
    Outcome of validate_image.

    Attributes:
        valid: True if the image may be staged
        error_kind: Why the image was rejected (None when valid)
        error: Human-readable reason (None when valid)
        metadata: Decoded facts about the image (None when invalid)
    """
    valid: bool
    error_kind: Optional[ErrorKind] = None
    error: Optional[str] = None
    metadata: Optional[ImageMetadata] = None

    @classmethod
    def reject(cls, kind: ErrorKind, error: str) -> "ValidationResult":
        return cls(valid=False, error_kind=kind, error=error)


@dataclass(frozen=True)
class ForegroundLayout:
    """Size and top-left position of the foreground on the canvas."""
    width: int
    height: int
    left: int
    top: int


# =============================================================================
# NORMALIZATION
# =============================================================================


def is_heif_container(data: bytes) -> bool:
    """
    Sniff an ISO-BMFF HEIF-family container from its first 12 bytes.

    Bytes 4-8 hold the box type ("ftyp"), bytes 8-12 the major brand.
    """
    if len(data) < 12:
        return False
    if data[4:8] != b"ftyp":
        return False
    return bytes(data[8:12]) in HEIF_BRANDS


def _transcode_heif(data: bytes) -> bytes:
    heif_file = pillow_heif.open_heif(BytesIO(data), convert_hdr_to_8bit=True)
    image = Image.frombytes(
        heif_file.mode,
        heif_file.size,
        heif_file.data,
        "raw",
        heif_file.mode,
        heif_file.stride,
    )
    if image.mode != "RGB":
        image = image.convert("RGB")
    out = BytesIO()
    image.save(out, format="JPEG", quality=HEIF_TRANSCODE_QUALITY)
    return out.getvalue()


def normalize(data: bytes) -> bytes:
    """
    Return bytes every later stage can decode.

    HEIF-family buffers are transcoded to JPEG; all others are returned as-is.

    Raises:
        Exception: Whatever the HEIF decoder raises for a corrupt container
    """
    if is_heif_container(data):
        logger.debug("Transcoding HEIF container (%d bytes) to JPEG", len(data))
        return _transcode_heif(data)
    return data


# =============================================================================
# VALIDATION
# =============================================================================


def _format_name(image: Image.Image) -> Optional[str]:
    if not image.format:
        return None
    name = image.format.lower()
    return _FORMAT_ALIASES.get(name, name)


def validate_image(data: bytes, original_name: str = "") -> ValidationResult:
    """
    Decode an upload and check it may be staged.

    Checks, in order: decodable, format is JPEG or PNG (HEIC counts as JPEG
    once normalized), dimensions known, height strictly greater than width.

    Args:
        data: Raw upload bytes
        original_name: Client filename, recorded in the metadata

    Returns:
        ValidationResult; never raises for bad input
    """
    try:
        image = Image.open(BytesIO(normalize(data)))
        image.load()
    except Exception as e:
        return ValidationResult.reject(
            ErrorKind.DECODE_FAILURE, f"Failed to read image: {e}"
        )

    fmt = _format_name(image)
    if fmt not in ALLOWED_FORMATS:
        return ValidationResult.reject(
            ErrorKind.INVALID_FORMAT,
            f"Invalid format: {fmt}. Allowed: JPG, PNG, HEIC",
        )

    width, height = image.size
    if not width or not height:
        return ValidationResult.reject(
            ErrorKind.MISSING_DIMENSIONS, "Could not determine image dimensions"
        )

    if width >= height:
        return ValidationResult.reject(
            ErrorKind.INVALID_ORIENTATION,
            "Image must be portrait orientation (height > width)",
        )

    return ValidationResult(
        valid=True,
        metadata=ImageMetadata(
            original_name=original_name,
            width=width,
            height=height,
            format=fmt,
        ),
    )


# =============================================================================
# COMPOSITION
# =============================================================================


def plan_foreground(
    src_width: int,
    src_height: int,
    canvas_width: int,
    canvas_height: int,
    scale_percent: int,
) -> ForegroundLayout:
    """
    Size the foreground to fit inside scale_percent of the canvas and center it.

    The foreground keeps the source aspect ratio, is never cropped and may be
    enlarged past its original resolution. Offsets use the rounded size, which
    can differ from the bounding box by a pixel.

    Raises:
        CompositionError: If the source has no usable dimensions
    """
    if src_width <= 0 or src_height <= 0:
        raise CompositionError("Failed to get foreground dimensions")

    max_width = round(canvas_width * scale_percent / 100)
    max_height = round(canvas_height * scale_percent / 100)
    factor = min(max_width / src_width, max_height / src_height)

    width = max(1, round(src_width * factor))
    height = max(1, round(src_height * factor))

    return ForegroundLayout(
        width=width,
        height=height,
        left=round((canvas_width - width) / 2),
        top=round((canvas_height - height) / 2),
    )


class ImageCompositor:
    """
    Renders blurred-backdrop composites at the preview or full canvas size.

    Holds only immutable configuration, so one instance can be shared by
    every worker thread.
    """

    def __init__(
        self,
        preview_size: Tuple[int, int] = (960, 540),
        full_size: Tuple[int, int] = (3840, 2160),
        jpeg_quality: int = 95,
    ):
        self.preview_size = preview_size
        self.full_size = full_size
        self.jpeg_quality = jpeg_quality

    def canvas_for(self, output_size: OutputSize) -> Tuple[int, int]:
        if output_size == OutputSize.PREVIEW:
            return self.preview_size
        return self.full_size

    def compose(self, data: bytes, settings: CompositionSettings) -> bytes:
        """
        Render the composite for an upload.

        Args:
            data: Raw upload bytes (HEIC is normalized here too)
            settings: Blur radius, foreground scale and target canvas

        Returns:
            Baseline JPEG bytes of exactly the target canvas size

        Raises:
            CompositionError: If any decode, resize or encode step fails
        """
        canvas_width, canvas_height = self.canvas_for(settings.output_size)

        try:
            source = Image.open(BytesIO(normalize(data)))
            source.load()
            if source.mode != "RGB":
                source = source.convert("RGB")

            background = ImageOps.fit(
                source,
                (canvas_width, canvas_height),
                method=Image.Resampling.LANCZOS,
                centering=(0.5, 0.5),
            )
            background = background.filter(
                ImageFilter.GaussianBlur(radius=settings.blur_radius)
            )

            layout = plan_foreground(
                source.width,
                source.height,
                canvas_width,
                canvas_height,
                settings.scale_percent,
            )
            foreground = source.resize(
                (layout.width, layout.height), Image.Resampling.LANCZOS
            )
            background.paste(foreground, (layout.left, layout.top))

            out = BytesIO()
            background.save(out, format="JPEG", quality=self.jpeg_quality)
            return out.getvalue()
        except CompositionError:
            raise
        except Exception as e:
            raise CompositionError(f"Composition failed: {e}") from e

    def preview_data_url(self, data: bytes, blur_radius: int, scale_percent: int) -> str:
        """Compose at preview size and wrap the JPEG in a data URL."""
        rendered = self.compose(
            data,
            CompositionSettings(
                blur_radius=blur_radius,
                scale_percent=scale_percent,
                output_size=OutputSize.PREVIEW,
            ),
        )
        return "data:image/jpeg;base64," + base64.b64encode(rendered).decode("ascii")
