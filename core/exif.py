# core/exif.py
"""Camera/exposure summary for the detail view.

Pillow reads EXIF from the formats it can open. Most RAW containers (NEF,
DNG, ARW, CR2, PEF, SRW) are TIFF structures, so when Pillow cannot open the
file as an image the TIFF header is parsed directly.
"""
import logging
import math
import os
import struct
from typing import Any, Optional, Tuple

from PIL import Image, ExifTags, UnidentifiedImageError

from core.errors import ExifError
from core.models import ExifInfo

logger = logging.getLogger(__name__)

# IFD0 offsets of a TIFF-based RAW sit near the start of the file.
HEADER_READ_SIZE = 1024 * 1024

_TIFF_MAGIC = (b"II*\x00", b"MM\x00*")

Base = ExifTags.Base


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="replace")
    text = str(value).strip("\x00 ").strip()
    return text or None


def _number(value: Any) -> Optional[float]:
    if isinstance(value, (tuple, list)):
        value = value[0] if value else None
    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError, ZeroDivisionError):
        return None
    return None if math.isnan(number) or math.isinf(number) else number


def _int(value: Any) -> Optional[int]:
    number = _number(value)
    return int(number) if number is not None else None


def format_shutter(seconds: float) -> str:
    if 0 < seconds < 1:
        return f"1/{round(1 / seconds)}s"
    return f"{seconds:g}s"


def format_aperture(f_number: float) -> str:
    return f"f/{round(f_number, 1):g}"


def format_focal_length(mm: float) -> str:
    return f"{round(mm, 1):g} mm"


def format_exposure_bias(ev: float) -> str:
    return f"{round(ev, 2):g} EV"


def _sub_ifd(exif: Image.Exif, image_path: str) -> dict:
    try:
        return exif.get_ifd(ExifTags.IFD.Exif)
    except (OSError, ValueError, KeyError, SyntaxError, struct.error) as e:
        logger.debug(f"No EXIF sub-IFD in {image_path}: {e}")
        return {}


def _load_exif(image_path: str) -> Tuple[Image.Exif, dict]:
    """IFD0 and the EXIF sub-IFD, both read before the file is closed."""
    try:
        with Image.open(image_path) as img:
            exif = img.getexif()
            return exif, _sub_ifd(exif, image_path)
    except FileNotFoundError as e:
        raise ExifError(f"{os.path.basename(image_path)}: file not found") from e
    except (UnidentifiedImageError, OSError, ValueError, SyntaxError) as e:
        logger.debug(f"Pillow cannot open {image_path} ({e}); parsing TIFF header")

    try:
        with open(image_path, "rb") as f:
            header = f.read(HEADER_READ_SIZE)
    except OSError as e:
        raise ExifError(f"{os.path.basename(image_path)}: {e}") from e

    if header[:4] not in _TIFF_MAGIC:
        raise ExifError(f"{os.path.basename(image_path)}: no EXIF container found")

    exif = Image.Exif()
    try:
        exif.load(header)
    except (OSError, ValueError, SyntaxError, struct.error) as e:
        raise ExifError(f"{os.path.basename(image_path)}: {e}") from e
    return exif, _sub_ifd(exif, image_path)


def extract_exif(image_path: str) -> ExifInfo:
    """Read the EXIF summary of *image_path*. Raises ExifError when none can be read."""
    exif, sub = _load_exif(image_path)
    if not exif:
        raise ExifError(f"{os.path.basename(image_path)}: no EXIF data")

    def lookup(tag: int):
        value = sub.get(tag)
        return value if value is not None else exif.get(tag)

    info = ExifInfo(
        camera_make=_text(exif.get(Base.Make)),
        camera_model=_text(exif.get(Base.Model)),
        lens_model=_text(lookup(Base.LensModel)),
        date_taken=_text(lookup(Base.DateTimeOriginal)),
        width=_int(lookup(Base.ExifImageWidth)),
        height=_int(lookup(Base.ExifImageHeight)),
        orientation=_int(exif.get(Base.Orientation)),
    )

    focal = _number(lookup(Base.FocalLength))
    if focal is not None:
        info.focal_length = format_focal_length(focal)
    f_number = _number(lookup(Base.FNumber))
    if f_number is not None:
        info.aperture = format_aperture(f_number)
    exposure = _number(lookup(Base.ExposureTime))
    if exposure is not None:
        info.shutter_speed = format_shutter(exposure)
    iso = _int(lookup(Base.ISOSpeedRatings))
    if iso is not None:
        info.iso = f"ISO {iso}"
    bias = _number(lookup(Base.ExposureBiasValue))
    if bias is not None:
        info.exposure_compensation = format_exposure_bias(bias)

    logger.debug(f"EXIF for {image_path}: {info}")
    return info

